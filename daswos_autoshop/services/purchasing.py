"""Settlement of approved purchases: debit first, then mark purchased"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from daswos_autoshop.domain.exceptions import (
    InsufficientBalanceError,
    InvalidStatusTransitionError,
    PaymentSettlementError,
    SettlementNotRecordedError,
    StorageError,
)
from daswos_autoshop.domain.ledger import SETTLED_BY_CARD, SETTLED_BY_KEY, Ledger
from daswos_autoshop.domain.models import (
    ALLOWED_TRANSITIONS,
    Policy,
    Product,
    Recommendation,
    RecommendationStatus,
    RejectionKind,
    Transaction,
    TransactionKind,
)
from daswos_autoshop.domain.ports import PaymentGateway, RecommendationStore
from daswos_autoshop.infrastructure.observability.logging import log_purchase
from daswos_autoshop.infrastructure.observability.metrics import (
    ledger_rejected_spend_counter,
    record_append,
    record_purchase,
    rejection_counter,
    settlement_reversal_counter,
)
from daswos_autoshop.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

REASON_SETTLEMENT_BALANCE = "insufficient balance at settlement"
REASON_SETTLEMENT_PAYMENT = "payment settlement failed"
REASON_CHANGED_DURING_SETTLEMENT = "recommendation changed during settlement"
REASON_SETTLEMENT_UNRECORDED = "payment settled but not recorded"


async def reverse_settlement(payments: PaymentGateway, user_id: str, amount: int, reference: Optional[str]) -> bool:
    """
    Give back a card payment the ledger could not record. Returns True when
    the provider confirmed the refund; otherwise the reference is logged for
    manual reconciliation.
    """
    try:
        result = await payments.refund(user_id, amount, reference) if reference else None
    except PaymentSettlementError as e:
        logger.error(f"Refund request failed: {e}", extra={"user_id": user_id, "reference": reference})
        result = None

    if result is not None and result.success:
        settlement_reversal_counter.labels(outcome="refunded").inc()
        logger.warning("Unrecorded card payment refunded", extra={"user_id": user_id, "reference": reference, "amount": amount})
        return True

    settlement_reversal_counter.labels(outcome="failed").inc()
    logger.error(
        "Card payment neither recorded nor refunded, needs reconciliation",
        extra={"user_id": user_id, "reference": reference, "amount": amount},
    )
    return False


@dataclass(frozen=True)
class PurchaseOutcome:
    success: bool
    reason: Optional[str] = None
    transaction: Optional[Transaction] = None
    recommendation: Optional[Recommendation] = None


class PurchaseExecutor:
    """
    Moves money for an approved recommendation and records the result.

    The ledger debit always happens before the status change. If the debit
    fails the recommendation is rejected; if the status change loses a race
    after a successful debit, the debit is compensated with a refund.
    """

    def __init__(
        self,
        ledger: Ledger,
        recommendations: RecommendationStore,
        payments: Optional[PaymentGateway] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ledger = ledger
        self.recommendations = recommendations
        self.payments = payments
        self.clock = clock

    def reject(
        self,
        recommendation: Recommendation,
        reason: str,
        kind: RejectionKind = RejectionKind.RETRYABLE,
    ) -> Optional[Recommendation]:
        """Reject if still open; a recommendation that already reached a terminal status is left alone"""
        rejection_counter.labels(reason=reason).inc()
        try:
            return self.recommendations.transition(
                recommendation.id,
                RecommendationStatus.REJECTED,
                ALLOWED_TRANSITIONS[RecommendationStatus.REJECTED],
                now=self.clock(),
                reason=reason,
                rejection_kind=kind,
            )
        except InvalidStatusTransitionError as e:
            logger.warning(
                f"Could not reject recommendation: {e}",
                extra={"recommendation_id": recommendation.id, "user_id": recommendation.user_id},
            )
            return None

    def _append(self, user_id: str, amount: int, kind: TransactionKind, description: str, **kwargs) -> Transaction:
        txn = self.ledger.append(user_id, amount, kind, description, **kwargs)
        record_append(kind.value)
        return txn

    async def _debit(self, recommendation: Recommendation, product: Product, policy: Policy, session_id: Optional[str]):
        metadata = {"product_id": product.id}
        if session_id:
            metadata["session_id"] = session_id

        if policy.use_coins:
            return self._append(
                recommendation.user_id,
                product.price,
                TransactionKind.SPEND,
                f"AutoShop purchase: {product.title}",
                metadata=metadata,
                related_recommendation_id=recommendation.id,
            )

        if self.payments is None or not policy.payment_method_ref:
            raise PaymentSettlementError("no payment method")
        settlement = await self.payments.settle(recommendation.user_id, product.price, policy.payment_method_ref)
        if not settlement.success:
            raise PaymentSettlementError(settlement.reason or "declined")

        card_metadata = {**metadata, SETTLED_BY_KEY: SETTLED_BY_CARD}
        try:
            self._append(
                recommendation.user_id,
                product.price,
                TransactionKind.PURCHASE,
                f"Card settlement for {product.title}",
                metadata=card_metadata,
                related_order_id=settlement.reference,
            )
        except StorageError as e:
            refunded = await reverse_settlement(self.payments, recommendation.user_id, product.price, settlement.reference)
            raise SettlementNotRecordedError(f"Card payment not recorded: {e}", settlement.reference, refunded) from e

        try:
            return self._append(
                recommendation.user_id,
                product.price,
                TransactionKind.SPEND,
                f"AutoShop purchase: {product.title}",
                metadata=card_metadata,
                related_recommendation_id=recommendation.id,
                related_order_id=settlement.reference,
            )
        except StorageError as e:
            # The credit landed: the user keeps the payment as coins, so the card is not refunded
            raise SettlementNotRecordedError(f"Card payment kept as coin credit: {e}", settlement.reference, False) from e

    async def execute(
        self,
        recommendation: Recommendation,
        product: Product,
        policy: Policy,
        session_id: Optional[str] = None,
    ) -> PurchaseOutcome:
        user_id = recommendation.user_id
        try:
            txn = await self._debit(recommendation, product, policy, session_id)
        except SettlementNotRecordedError as e:
            logger.error(f"Settled purchase not recorded: {e}", extra={"user_id": user_id, "recommendation_id": recommendation.id})
            rejected = self.reject(recommendation, REASON_SETTLEMENT_UNRECORDED)
            return PurchaseOutcome(success=False, reason=REASON_SETTLEMENT_UNRECORDED, recommendation=rejected)
        except InsufficientBalanceError:
            ledger_rejected_spend_counter.inc()
            rejected = self.reject(recommendation, REASON_SETTLEMENT_BALANCE)
            return PurchaseOutcome(success=False, reason=REASON_SETTLEMENT_BALANCE, recommendation=rejected)
        except PaymentSettlementError as e:
            logger.warning(f"Payment settlement failed: {e}", extra={"user_id": user_id, "recommendation_id": recommendation.id})
            rejected = self.reject(recommendation, REASON_SETTLEMENT_PAYMENT)
            return PurchaseOutcome(success=False, reason=REASON_SETTLEMENT_PAYMENT, recommendation=rejected)

        try:
            purchased = self.recommendations.transition(
                recommendation.id,
                RecommendationStatus.PURCHASED,
                ALLOWED_TRANSITIONS[RecommendationStatus.PURCHASED],
                now=self.clock(),
            )
        except InvalidStatusTransitionError:
            self._append(
                user_id,
                product.price,
                TransactionKind.REFUND,
                f"Refund: {product.title} no longer available for purchase",
                metadata={"product_id": product.id, "refunded_transaction_id": txn.id},
                related_recommendation_id=recommendation.id,
            )
            logger.warning(
                "Recommendation changed during settlement, debit refunded",
                extra={"user_id": user_id, "recommendation_id": recommendation.id},
            )
            return PurchaseOutcome(success=False, reason=REASON_CHANGED_DURING_SETTLEMENT, transaction=txn)

        record_purchase(product.price)
        log_purchase(
            user_id=user_id,
            recommendation_id=recommendation.id,
            product_id=product.id,
            amount=product.price,
            payment="coins" if policy.use_coins else "card",
            session_id=session_id,
        )
        return PurchaseOutcome(success=True, transaction=txn, recommendation=purchased)

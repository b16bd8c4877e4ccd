"""AutoShop facade - the operations exposed to the API layer"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from daswos_autoshop.domain.exceptions import (
    InvalidStatusTransitionError,
    PaymentSettlementError,
    ProductNotFoundError,
    RecommendationNotFoundError,
    SessionAlreadyActiveError,
    SessionPersistenceError,
    SettlementNotRecordedError,
    StorageError,
)
from daswos_autoshop.domain.ledger import Ledger, check_amount
from daswos_autoshop.domain.models import (
    ALLOWED_TRANSITIONS,
    AutoShopSession,
    OperationResult,
    Policy,
    Recommendation,
    RecommendationStatus,
    RejectionKind,
    SearchContext,
    SessionState,
    Transaction,
    TransactionKind,
)
from daswos_autoshop.domain.ports import CatalogGateway, PaymentGateway, PolicyStore, RecommendationStore
from daswos_autoshop.domain.recommendation import RecommendationEngine, removed_product_ids
from daswos_autoshop.infrastructure.observability.metrics import record_append
from daswos_autoshop.services.purchasing import PurchaseExecutor, reverse_settlement
from daswos_autoshop.services.scheduler import AutoShopScheduler
from daswos_autoshop.utils.date_utils import parse_duration, utcnow

logger = logging.getLogger(__name__)

HISTORY_STATUSES = (RecommendationStatus.PURCHASED, RecommendationStatus.ADDED_TO_CART)


def session_summary(session: AutoShopSession) -> Dict[str, Any]:
    return {
        "session_id": session.session_id,
        "state": session.state.value,
        "active": session.active,
        "start_time": session.start_time,
        "end_time": session.end_time,
        "spent_this_window": session.spent_this_window,
        "purchase_count_this_window": session.purchase_count_this_window,
        "last_cycle_at": session.last_cycle_at,
        "last_error": session.last_error,
    }


class AutoShopService:
    """Entry point for interactive callers; background work lives in the scheduler"""

    def __init__(
        self,
        ledger: Ledger,
        engine: RecommendationEngine,
        recommendations: RecommendationStore,
        policies: PolicyStore,
        catalog: CatalogGateway,
        scheduler: AutoShopScheduler,
        executor: PurchaseExecutor,
        payments: Optional[PaymentGateway] = None,
        default_duration: timedelta = timedelta(minutes=30),
        clock: Callable = utcnow,
    ):
        self.ledger = ledger
        self.engine = engine
        self.recommendations = recommendations
        self.policies = policies
        self.catalog = catalog
        self.scheduler = scheduler
        self.executor = executor
        self.payments = payments
        self.default_duration = default_duration
        self.clock = clock

    # ── Policy ────────────────────────────────────────────────────────────────

    def get_policy(self, user_id: str) -> Policy:
        return self.policies.get(user_id) or Policy()

    def update_policy(self, user_id: str, **changes: Any) -> Policy:
        """The only way a user's policy changes; running sessions keep their snapshot"""
        policy = self.get_policy(user_id).updated(**changes)
        return self.policies.save(user_id, policy)

    # ── AutoShop sessions ─────────────────────────────────────────────────────

    async def start_autoshop(
        self,
        user_id: str,
        duration_value: Optional[int] = None,
        duration_unit: str = "minutes",
        search_context: Optional[SearchContext] = None,
    ) -> OperationResult:
        policy = self.get_policy(user_id)
        if not policy.enabled:
            return OperationResult(success=False, reason="AutoShop is disabled in your settings")

        if policy.use_coins and self.ledger.balance(user_id) <= 0:
            return OperationResult(
                success=False,
                reason="You need DasWos Coins to use AutoShop. Please purchase some coins first.",
            )

        try:
            duration = parse_duration(duration_value, duration_unit) if duration_value is not None else self.default_duration
        except ValueError as e:
            return OperationResult(success=False, reason=str(e))

        try:
            session = await self.scheduler.start(user_id, policy, duration, search_context)
        except SessionAlreadyActiveError as e:
            return OperationResult(success=False, reason=str(e))
        except SessionPersistenceError as e:
            logger.error(f"AutoShop start failed: {e}", extra={"user_id": user_id})
            return OperationResult(success=False, reason="AutoShop session could not be saved")

        return OperationResult(success=True, reason="AutoShop started", data=session_summary(session))

    async def stop_autoshop(self, user_id: str) -> OperationResult:
        session = await self.scheduler.stop(user_id)
        if session is None:
            return OperationResult(success=True, reason="AutoShop was not running", data={"state": SessionState.IDLE.value})
        return OperationResult(success=True, reason="AutoShop stopped", data=session_summary(session))

    def get_autoshop_status(self, user_id: str) -> OperationResult:
        session = self.scheduler.status(user_id)
        pending = self.recommendations.list_by_user(user_id, [RecommendationStatus.PENDING])
        history = self.recommendations.list_by_user(user_id, HISTORY_STATUSES)
        data: Dict[str, Any] = {"state": SessionState.IDLE.value, "active": False}
        if session is not None:
            data = session_summary(session)
        data["scheduled"] = self.scheduler.is_scheduled(user_id)
        data["pending_count"] = len(pending)
        data["history_count"] = len(history)
        return OperationResult(success=True, data=data)

    # ── Recommendations ───────────────────────────────────────────────────────

    async def generate_recommendation(self, user_id: str, search_context: Optional[SearchContext] = None) -> Recommendation:
        """Create a pending recommendation outside any session. Raises NoMatchError."""
        policy = self.get_policy(user_id)
        excluded = removed_product_ids(self.recommendations, user_id)
        recommendation = await self.engine.generate(user_id, policy, search_context or SearchContext(), excluded)
        return self.recommendations.add(recommendation)

    def list_pending_recommendations(self, user_id: str) -> List[Recommendation]:
        return self.recommendations.list_by_user(user_id, [RecommendationStatus.PENDING])

    def list_purchase_history(self, user_id: str) -> List[Recommendation]:
        return self.recommendations.list_by_user(user_id, HISTORY_STATUSES)

    def _load(self, recommendation_id: str) -> Recommendation:
        recommendation = self.recommendations.get(recommendation_id)
        if recommendation is None:
            raise RecommendationNotFoundError(recommendation_id)
        return recommendation

    async def update_recommendation_status(
        self,
        recommendation_id: str,
        status: RecommendationStatus | str,
        reason: Optional[str] = None,
        permanent: bool = False,
    ) -> OperationResult:
        """
        Apply a user or administrator decision to a recommendation.

        ``purchased`` goes through the ledger like an autonomous purchase;
        ``rejected`` may be permanent (never shown again).

        Raises:
            RecommendationNotFoundError: unknown id
            InvalidStatusTransitionError: current status does not allow the change
            ProductNotFoundError: the product disappeared from the catalog
        """
        target = RecommendationStatus(status)
        recommendation = self._load(recommendation_id)

        if target == RecommendationStatus.PENDING or target not in ALLOWED_TRANSITIONS:
            raise InvalidStatusTransitionError(recommendation_id, recommendation.status.value, target.value)

        if target == RecommendationStatus.PURCHASED:
            return await self._purchase_manually(recommendation)

        if target == RecommendationStatus.REJECTED:
            kind = RejectionKind.PERMANENT if permanent else RejectionKind.RETRYABLE
            updated = self.recommendations.transition(
                recommendation_id,
                target,
                ALLOWED_TRANSITIONS[target],
                now=self.clock(),
                reason=reason or ("Permanently removed by user" if permanent else "Removed by user"),
                rejection_kind=kind,
            )
        else:
            updated = self.recommendations.transition(recommendation_id, target, ALLOWED_TRANSITIONS[target], now=self.clock())

        return OperationResult(success=True, data={"recommendation": updated})

    async def _purchase_manually(self, recommendation: Recommendation) -> OperationResult:
        if recommendation.status not in ALLOWED_TRANSITIONS[RecommendationStatus.PURCHASED]:
            raise InvalidStatusTransitionError(
                recommendation.id, recommendation.status.value, RecommendationStatus.PURCHASED.value
            )

        product = await self.catalog.get_product(recommendation.product_id)
        if product is None:
            raise ProductNotFoundError(recommendation.product_id)

        policy = self.get_policy(recommendation.user_id)
        if policy.use_coins and self.ledger.balance(recommendation.user_id) < product.price:
            # Leave the recommendation open so the user can top up and retry
            return OperationResult(success=False, reason="insufficient funds")

        outcome = await self.executor.execute(recommendation, product, policy)
        if not outcome.success:
            return OperationResult(success=False, reason=outcome.reason)
        return OperationResult(
            success=True,
            data={"recommendation": outcome.recommendation, "transaction": outcome.transaction},
        )

    def clear_pending_recommendations(self, user_id: str) -> int:
        """Permanently reject every pending recommendation; returns how many were cleared"""
        cleared = 0
        for recommendation in self.list_pending_recommendations(user_id):
            try:
                self.recommendations.transition(
                    recommendation.id,
                    RecommendationStatus.REJECTED,
                    ALLOWED_TRANSITIONS[RecommendationStatus.REJECTED],
                    now=self.clock(),
                    reason="Cleared by user",
                    rejection_kind=RejectionKind.PERMANENT,
                )
                cleared += 1
            except InvalidStatusTransitionError:
                # Settled by a background cycle in the meantime
                continue
        return cleared

    # ── Coins ─────────────────────────────────────────────────────────────────

    def get_balance(self, user_id: str) -> int:
        return self.ledger.balance(user_id)

    def list_transactions(self, user_id: str, limit: Optional[int] = None, since: Optional[datetime] = None) -> List[Transaction]:
        return self.ledger.history(user_id, limit=limit, since=since)

    async def purchase_coins(self, user_id: str, amount: int, payment_method_ref: str) -> Transaction:
        """
        Buy coins with a card.

        Raises:
            InvalidAmountError: amount is not a positive integer
            PaymentSettlementError: provider declined or is unavailable
            SettlementNotRecordedError: charged but the ledger is down; the charge is refunded
        """
        check_amount(amount)
        if self.payments is None:
            raise PaymentSettlementError("No payment provider configured")

        settlement = await self.payments.settle(user_id, amount, payment_method_ref)
        if not settlement.success:
            raise PaymentSettlementError(settlement.reason or "declined")

        try:
            txn = self.ledger.append(
                user_id,
                amount,
                TransactionKind.PURCHASE,
                "Purchase via card",
                related_order_id=settlement.reference,
            )
        except StorageError as e:
            refunded = await reverse_settlement(self.payments, user_id, amount, settlement.reference)
            raise SettlementNotRecordedError(f"Coin purchase not recorded: {e}", settlement.reference, refunded) from e
        record_append(txn.kind.value)
        return txn

    def grant_bonus(self, user_id: str, amount: int, reason: str = "Giveaway") -> Transaction:
        txn = self.ledger.append(user_id, amount, TransactionKind.BONUS, reason)
        record_append(txn.kind.value)
        return txn

    def top_up(self, user_id: str, amount: int, description: str = "Top-up", reference: Optional[str] = None) -> Transaction:
        """Record coins bought through an already-settled external payment"""
        txn = self.ledger.append(user_id, amount, TransactionKind.PURCHASE, description, related_order_id=reference)
        record_append(txn.kind.value)
        return txn

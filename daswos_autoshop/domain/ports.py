"""Interfaces the domain depends on; implemented in the infrastructure layer"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol

from daswos_autoshop.domain.models import (
    AutoShopSession,
    Policy,
    Product,
    Recommendation,
    RecommendationStatus,
    RejectionKind,
    SettlementResult,
    Transaction,
    TransactionKind,
)


class LedgerStore(Protocol):
    """Durable, append-only transaction log.

    ``append`` must perform the balance check for ``SPEND`` and the write as one
    atomic unit per user, raising ``InsufficientBalanceError`` without writing
    anything when the balance would go negative.
    """

    def append(
        self,
        user_id: str,
        amount: int,
        kind: TransactionKind,
        description: str,
        related_recommendation_id: Optional[str] = None,
        related_order_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Transaction: ...

    def balance(self, user_id: str) -> int: ...

    def history(self, user_id: str, limit: Optional[int] = None, since: Optional[datetime] = None) -> List[Transaction]: ...


class RecommendationStore(Protocol):
    def add(self, recommendation: Recommendation) -> Recommendation: ...

    def get(self, recommendation_id: str) -> Optional[Recommendation]: ...

    def transition(
        self,
        recommendation_id: str,
        target: RecommendationStatus,
        allowed_from: Iterable[RecommendationStatus],
        now: datetime,
        reason: Optional[str] = None,
        rejection_kind: Optional[RejectionKind] = None,
    ) -> Recommendation:
        """Move to ``target`` only if the current status is in ``allowed_from``.

        Raises ``InvalidStatusTransitionError`` otherwise.
        """
        ...

    def list_by_user(
        self,
        user_id: str,
        statuses: Optional[Iterable[RecommendationStatus]] = None,
        include_permanent: bool = False,
    ) -> List[Recommendation]: ...


class PolicyStore(Protocol):
    def get(self, user_id: str) -> Optional[Policy]: ...

    def save(self, user_id: str, policy: Policy) -> Policy: ...


class SessionStore(Protocol):
    def save(self, session: AutoShopSession) -> None: ...

    def get(self, user_id: str) -> Optional[AutoShopSession]: ...

    def list_active(self) -> List[AutoShopSession]: ...


class CatalogGateway(Protocol):
    """Read-only product catalog"""

    async def query_products(
        self,
        sphere: str,
        text_query: Optional[str] = None,
        category: Optional[str] = None,
    ) -> List[Product]: ...

    async def get_product(self, product_id: str) -> Optional[Product]: ...


class PaymentGateway(Protocol):
    """Opaque external settlement capability"""

    async def settle(self, user_id: str, amount: int, payment_method_ref: str) -> SettlementResult: ...

    async def refund(self, user_id: str, amount: int, reference: str) -> SettlementResult: ...

"""In-process stores used as the fallback backend and in tests"""

import threading
import uuid
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from daswos_autoshop.domain.exceptions import InsufficientBalanceError, InvalidStatusTransitionError, RecommendationNotFoundError
from daswos_autoshop.domain.models import (
    AutoShopSession,
    Policy,
    Product,
    Recommendation,
    RecommendationStatus,
    RejectionKind,
    SessionState,
    Transaction,
    TransactionKind,
)
from daswos_autoshop.utils.date_utils import utcnow


class _UserLocks:
    """One lock per user id, created on demand"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)

    def __call__(self, user_id: str) -> threading.Lock:
        with self._guard:
            return self._locks[user_id]


class InMemoryLedgerStore:
    """Append-only list per user; spends are checked and written under the user's lock"""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self._transactions: Dict[str, List[Transaction]] = defaultdict(list)
        self._lock_for = _UserLocks()

    def append(
        self,
        user_id: str,
        amount: int,
        kind: TransactionKind,
        description: str,
        related_recommendation_id: Optional[str] = None,
        related_order_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Transaction:
        with self._lock_for(user_id):
            log = self._transactions[user_id]
            if kind == TransactionKind.SPEND:
                available = sum(t.signed_amount for t in log)
                if amount > available:
                    raise InsufficientBalanceError(user_id, amount, available)

            txn = Transaction(
                id=str(uuid.uuid4()),
                user_id=user_id,
                amount=amount,
                kind=kind,
                description=description,
                created_at=self.clock(),
                related_recommendation_id=related_recommendation_id,
                related_order_id=related_order_id,
                metadata=dict(metadata or {}),
            )
            log.append(txn)
            return txn

    def record(self, txn: Transaction) -> None:
        """Store a transaction written elsewhere, keeping its id and timestamp. Repeats are ignored."""
        with self._lock_for(txn.user_id):
            log = self._transactions[txn.user_id]
            if any(t.id == txn.id for t in log):
                return
            log.append(txn)
            log.sort(key=lambda t: t.created_at)

    def balance(self, user_id: str) -> int:
        with self._lock_for(user_id):
            return sum(t.signed_amount for t in self._transactions[user_id])

    def history(self, user_id: str, limit: Optional[int] = None, since: Optional[datetime] = None) -> List[Transaction]:
        with self._lock_for(user_id):
            # Insertion order is chronological; reverse for newest first
            rows = [t for t in reversed(self._transactions[user_id]) if since is None or t.created_at >= since]
        return rows[:limit] if limit is not None else rows


class InMemoryRecommendationStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._items: Dict[str, Recommendation] = {}

    def add(self, recommendation: Recommendation) -> Recommendation:
        with self._lock:
            self._items[recommendation.id] = replace(recommendation)
            return replace(recommendation)

    def get(self, recommendation_id: str) -> Optional[Recommendation]:
        with self._lock:
            item = self._items.get(recommendation_id)
            return replace(item) if item else None

    def transition(
        self,
        recommendation_id: str,
        target: RecommendationStatus,
        allowed_from: Iterable[RecommendationStatus],
        now: datetime,
        reason: Optional[str] = None,
        rejection_kind: Optional[RejectionKind] = None,
    ) -> Recommendation:
        with self._lock:
            item = self._items.get(recommendation_id)
            if item is None:
                raise RecommendationNotFoundError(recommendation_id)
            if item.status not in set(allowed_from):
                raise InvalidStatusTransitionError(recommendation_id, item.status.value, target.value)

            item.status = target
            item.updated_at = now
            if target == RecommendationStatus.PURCHASED:
                item.purchased_at = now
            if target == RecommendationStatus.REJECTED:
                item.rejected_reason = reason
                item.rejection_kind = rejection_kind or RejectionKind.RETRYABLE
            return replace(item)

    def list_by_user(
        self,
        user_id: str,
        statuses: Optional[Iterable[RecommendationStatus]] = None,
        include_permanent: bool = False,
    ) -> List[Recommendation]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            rows = [
                replace(r)
                for r in self._items.values()
                if r.user_id == user_id
                and (wanted is None or r.status in wanted)
                and (include_permanent or r.rejection_kind != RejectionKind.PERMANENT)
            ]
        return sorted(rows, key=lambda r: r.created_at, reverse=True)


class InMemoryPolicyStore:
    def __init__(self):
        self._policies: Dict[str, Policy] = {}

    def get(self, user_id: str) -> Optional[Policy]:
        return self._policies.get(user_id)

    def save(self, user_id: str, policy: Policy) -> Policy:
        self._policies[user_id] = policy
        return policy


class InMemorySessionStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: Dict[str, AutoShopSession] = {}

    def save(self, session: AutoShopSession) -> None:
        with self._lock:
            self._sessions[session.user_id] = replace(session)

    def get(self, user_id: str) -> Optional[AutoShopSession]:
        with self._lock:
            session = self._sessions.get(user_id)
            return replace(session) if session else None

    def list_active(self) -> List[AutoShopSession]:
        with self._lock:
            return [replace(s) for s in self._sessions.values() if s.state == SessionState.ACTIVE]


class InMemoryCatalog:
    """Static product list implementing the catalog gateway"""

    def __init__(self, products: Iterable[Product] = ()):
        self._products: Dict[str, Product] = {p.id: p for p in products}

    def add(self, product: Product) -> None:
        self._products[product.id] = product

    async def query_products(
        self,
        sphere: str,
        text_query: Optional[str] = None,
        category: Optional[str] = None,
    ) -> List[Product]:
        # Sphere tiers are enforced upstream; a static list has no tiers
        products = list(self._products.values())
        if category:
            products = [p for p in products if p.category == category or category in p.tags]
        if text_query:
            needle = text_query.lower()
            products = [
                p
                for p in products
                if needle in p.title.lower() or needle in p.description.lower() or any(needle in t.lower() for t in p.tags)
            ]
        return products

    async def get_product(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)

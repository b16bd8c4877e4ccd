"""Primary/fallback strategy for storage and catalog backends"""

import logging
import threading
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Type, TypeVar

from daswos_autoshop.domain.exceptions import CatalogUnavailableError, StorageError
from daswos_autoshop.domain.models import Product, Transaction, TransactionKind
from daswos_autoshop.domain.ports import CatalogGateway, LedgerStore
from daswos_autoshop.infrastructure.memory.stores import InMemoryLedgerStore
from daswos_autoshop.infrastructure.observability.metrics import fallback_counter

T = TypeVar("T")


class FallbackStrategy:
    """
    Run an operation on the primary backend; on an infrastructure failure, run
    it on the secondary. Business errors raised by the primary propagate
    unchanged so a rejected spend is never retried elsewhere.
    """

    def __init__(self, name: str, recoverable: Tuple[Type[Exception], ...]):
        self.name = name
        self.recoverable = recoverable

    def execute(self, operation: str, primary_fn: Callable[[], T], fallback_fn: Callable[[], T]) -> T:
        try:
            return primary_fn()
        except self.recoverable as e:
            self._log_fallback(operation, e)
            return fallback_fn()

    async def execute_async(
        self,
        operation: str,
        primary_fn: Callable[[], Awaitable[T]],
        fallback_fn: Callable[[], Awaitable[T]],
    ) -> T:
        try:
            return await primary_fn()
        except self.recoverable as e:
            self._log_fallback(operation, e)
            return await fallback_fn()

    def _log_fallback(self, operation: str, error: Exception) -> None:
        fallback_counter.labels(backend=self.name, operation=operation).inc()
        logging.warning(
            f"Error in {operation}, using fallback {self.name}: {error}",
            extra={"step": "fallback", "backend": self.name, "operation": operation},
        )


class FallbackLedgerStore:
    """
    LedgerStore that writes only to the primary and mirrors it into a secondary.

    Appends never fall back: a write the primary cannot take raises
    ``StorageError``. The secondary is a read replica seeded from the primary's
    full history the first time a user is seen, then kept current with every
    successful append. Reads fall back to it only for users whose copy is
    complete; anyone else gets the primary's ``StorageError``.
    """

    def __init__(self, primary: LedgerStore, mirror: InMemoryLedgerStore):
        self.primary = primary
        self.mirror = mirror
        self.strategy = FallbackStrategy("ledger_store", (StorageError,))
        self._mirrored: Set[str] = set()
        self._mirror_lock = threading.Lock()

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
        txn = self.primary.append(
            user_id=user_id,
            amount=amount,
            kind=kind,
            description=description,
            related_recommendation_id=related_recommendation_id,
            related_order_id=related_order_id,
            metadata=metadata,
        )
        self._mirror(user_id, txn)
        return txn

    def balance(self, user_id: str) -> int:
        def primary_balance() -> int:
            balance = self.primary.balance(user_id)
            self._mirror(user_id)
            return balance

        return self.strategy.execute(
            "balance",
            primary_balance,
            lambda: self._replica(user_id).balance(user_id),
        )

    def history(self, user_id: str, limit: Optional[int] = None, since: Optional[datetime] = None) -> List[Transaction]:
        def primary_history() -> List[Transaction]:
            rows = self.primary.history(user_id, limit=limit, since=since)
            self._mirror(user_id)
            return rows

        return self.strategy.execute(
            "history",
            primary_history,
            lambda: self._replica(user_id).history(user_id, limit=limit, since=since),
        )

    def _mirror(self, user_id: str, txn: Optional[Transaction] = None) -> None:
        try:
            with self._mirror_lock:
                if user_id in self._mirrored:
                    if txn is not None:
                        self.mirror.record(txn)
                    return
                for row in reversed(self.primary.history(user_id)):
                    self.mirror.record(row)
                self._mirrored.add(user_id)
        except StorageError as e:
            # The primary already answered; the replica catches up on the next call
            logging.warning(f"Could not mirror ledger for user {user_id}: {e}", extra={"step": "mirror", "user_id": user_id})

    def _replica(self, user_id: str) -> InMemoryLedgerStore:
        if user_id not in self._mirrored:
            raise StorageError(f"No consistent ledger copy for user {user_id}")
        return self.mirror


class FallbackCatalogGateway:
    """CatalogGateway that prefers the primary and falls back on CatalogUnavailableError"""

    def __init__(self, primary: CatalogGateway, fallback: CatalogGateway):
        self.primary = primary
        self.fallback = fallback
        self.strategy = FallbackStrategy("catalog", (CatalogUnavailableError,))

    async def query_products(
        self,
        sphere: str,
        text_query: Optional[str] = None,
        category: Optional[str] = None,
    ) -> List[Product]:
        return await self.strategy.execute_async(
            "query_products",
            lambda: self.primary.query_products(sphere, text_query, category),
            lambda: self.fallback.query_products(sphere, text_query, category),
        )

    async def get_product(self, product_id: str) -> Optional[Product]:
        return await self.strategy.execute_async(
            "get_product",
            lambda: self.primary.get_product(product_id),
            lambda: self.fallback.get_product(product_id),
        )

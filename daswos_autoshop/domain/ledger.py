"""DasWos Coins ledger - append-only log of signed currency movements"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from daswos_autoshop.domain.exceptions import InvalidAmountError, InvalidKindError, LedgerConflictError
from daswos_autoshop.domain.models import SpendingSnapshot, Transaction, TransactionKind
from daswos_autoshop.domain.ports import LedgerStore
from daswos_autoshop.utils.date_utils import ensure_aware, start_of_day, start_of_hour, start_of_month, utcnow

logger = logging.getLogger(__name__)

# Metadata key marking a spend that was paid by card rather than coins
SETTLED_BY_KEY = "settled_by"
SETTLED_BY_CARD = "card"


def compute_balance(transactions: Iterable[Transaction]) -> int:
    """Signed sum: purchase, bonus and refund add; spend subtracts."""
    return sum(txn.signed_amount for txn in transactions)


def coerce_kind(kind: Any) -> TransactionKind:
    try:
        return TransactionKind(kind)
    except ValueError:
        raise InvalidKindError(f"Unknown transaction kind: {kind!r}") from None


def check_amount(amount: Any) -> int:
    # bool is an int subclass; True must not be accepted as 1 coin
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(f"Amount must be a positive integer, got {amount!r}")
    return amount


def summarize_spending(transactions: Iterable[Transaction], balance: int, now: datetime) -> SpendingSnapshot:
    """
    Derive rate-limit aggregates from history.

    Only spends linked to a recommendation count as purchases. Calendar
    windows are UTC: current hour, current day, current month. Coin totals
    exclude spends that were settled by card.
    """
    hour_start = start_of_hour(now)
    day_start = start_of_day(now)
    month_start = start_of_month(now)

    purchases_hour = purchases_day = purchases_month = 0
    coins_today = coins_overall = 0

    for txn in transactions:
        if txn.kind != TransactionKind.SPEND or txn.related_recommendation_id is None:
            continue
        created = ensure_aware(txn.created_at)
        paid_with_coins = txn.metadata.get(SETTLED_BY_KEY) != SETTLED_BY_CARD

        if paid_with_coins:
            coins_overall += txn.amount
        if created >= month_start:
            purchases_month += 1
        if created >= day_start:
            purchases_day += 1
            if paid_with_coins:
                coins_today += txn.amount
        if created >= hour_start:
            purchases_hour += 1

    return SpendingSnapshot(
        balance=balance,
        purchases_this_hour=purchases_hour,
        purchases_today=purchases_day,
        purchases_this_month=purchases_month,
        coins_spent_today=coins_today,
        coins_spent_overall=coins_overall,
    )


class Ledger:
    """
    The single path through which spendable balance changes.

    Argument validation happens here; the atomic balance check for spends is
    delegated to the store. Optimistic-concurrency conflicts reported by the
    store are retried a bounded number of times, re-reading the balance each
    time, so a losing spend ends in ``InsufficientBalanceError`` rather than a
    conflict when the winner drained the account.
    """

    def __init__(
        self,
        store: LedgerStore,
        max_conflict_retries: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.max_conflict_retries = max_conflict_retries
        self.clock = clock

    def append(
        self,
        user_id: str,
        amount: int,
        kind: TransactionKind | str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
        related_recommendation_id: Optional[str] = None,
        related_order_id: Optional[str] = None,
    ) -> Transaction:
        """
        Append a movement to the user's log.

        Raises:
            InvalidAmountError: amount is not a positive integer
            InvalidKindError: kind is not purchase, spend, refund or bonus
            InsufficientBalanceError: spend exceeds the current balance
        """
        amount = check_amount(amount)
        kind = coerce_kind(kind)

        attempt = 0
        while True:
            try:
                txn = self.store.append(
                    user_id=user_id,
                    amount=amount,
                    kind=kind,
                    description=description,
                    related_recommendation_id=related_recommendation_id,
                    related_order_id=related_order_id,
                    metadata=metadata,
                )
                break
            except LedgerConflictError:
                attempt += 1
                if attempt > self.max_conflict_retries:
                    raise
                logger.info(
                    "Ledger conflict, retrying append",
                    extra={"user_id": user_id, "attempt": attempt, "kind": kind.value},
                )

        logger.info(
            "Ledger append",
            extra={"user_id": user_id, "kind": kind.value, "amount": amount, "transaction_id": txn.id},
        )
        return txn

    def balance(self, user_id: str) -> int:
        return self.store.balance(user_id)

    def history(self, user_id: str, limit: Optional[int] = None, since: Optional[datetime] = None) -> List[Transaction]:
        """Transactions for the user, newest first, optionally only those at or after ``since``"""
        return self.store.history(user_id, limit=limit, since=since)

    def spending_snapshot(self, user_id: str, now: Optional[datetime] = None) -> SpendingSnapshot:
        now = now or self.clock()
        return summarize_spending(self.store.history(user_id), self.store.balance(user_id), now)

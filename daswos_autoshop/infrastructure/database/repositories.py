"""Data access layer for ledger, recommendations, policies and sessions"""

import uuid
from dataclasses import asdict
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional
from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from daswos_autoshop.infrastructure.database.models import (
    AutoShopSessionRecord,
    LedgerAccount,
    LedgerTransaction,
    ShopperPolicy,
    ShopperRecommendation,
)
from daswos_autoshop.domain.exceptions import (
    InsufficientBalanceError,
    InvalidStatusTransitionError,
    LedgerConflictError,
    RecommendationNotFoundError,
    StorageError,
)
from daswos_autoshop.domain.models import (
    AutoShopSession,
    Policy,
    PurchaseFrequency,
    PurchaseMode,
    Recommendation,
    RecommendationStatus,
    RejectionKind,
    SearchContext,
    SessionState,
    Transaction,
    TransactionKind,
)
from daswos_autoshop.utils.date_utils import ensure_aware, utcnow


def policy_to_document(policy: Policy) -> Dict[str, Any]:
    """Policy as a JSON-safe dict"""
    doc = asdict(policy)
    doc["preferred_categories"] = sorted(policy.preferred_categories)
    doc["avoid_tags"] = sorted(policy.avoid_tags)
    doc["purchase_mode"] = policy.purchase_mode.value
    return doc


def policy_from_document(doc: Dict[str, Any]) -> Policy:
    data = dict(doc)
    data["purchase_frequency"] = PurchaseFrequency(**(data.get("purchase_frequency") or {}))
    data["preferred_categories"] = frozenset(data.get("preferred_categories") or ())
    data["avoid_tags"] = frozenset(data.get("avoid_tags") or ())
    data["purchase_mode"] = PurchaseMode(data.get("purchase_mode", PurchaseMode.REFINED.value))
    known = Policy.__dataclass_fields__.keys()
    return Policy(**{k: v for k, v in data.items() if k in known})


class SqlLedgerStore:
    """
    Ledger store backed by ledger_account + ledger_transaction.

    A spend locks the user's account row (FOR UPDATE where supported), sums
    the log, inserts the transaction and bumps the account version with a
    conditional UPDATE. If another writer bumped the version first, the whole
    unit is rolled back and LedgerConflictError is raised for the caller to
    retry.
    """

    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    @staticmethod
    def _balance_query(db: Session, user_id: str) -> int:
        signed = case(
            (LedgerTransaction.kind == TransactionKind.SPEND.value, -LedgerTransaction.amount),
            else_=LedgerTransaction.amount,
        )
        total = db.query(func.coalesce(func.sum(signed), 0)).filter(LedgerTransaction.user_id == user_id).scalar()
        return int(total or 0)

    @staticmethod
    def _to_domain(row: LedgerTransaction) -> Transaction:
        return Transaction(
            id=row.id,
            user_id=row.user_id,
            amount=int(row.amount),
            kind=TransactionKind(row.kind),
            description=row.description,
            created_at=ensure_aware(row.created_at),
            related_recommendation_id=row.related_recommendation_id,
            related_order_id=row.related_order_id,
            metadata=dict(row.metadata_json or {}),
        )

    def _lock_account(self, db: Session, user_id: str) -> LedgerAccount:
        account = db.query(LedgerAccount).filter(LedgerAccount.user_id == user_id).with_for_update().first()
        if account is None:
            account = LedgerAccount(user_id=user_id, version=0)
            db.add(account)
            db.flush()
        return account

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
        try:
            with self.session_factory() as db:
                account = self._lock_account(db, user_id)
                expected_version = account.version

                if kind == TransactionKind.SPEND:
                    available = self._balance_query(db, user_id)
                    if amount > available:
                        db.rollback()
                        raise InsufficientBalanceError(user_id, amount, available)

                row = LedgerTransaction(
                    id=str(uuid.uuid4()),
                    user_id=user_id,
                    amount=amount,
                    kind=kind.value,
                    description=description,
                    related_recommendation_id=related_recommendation_id,
                    related_order_id=related_order_id,
                    metadata_json=dict(metadata or {}),
                    created_at=self.clock(),
                )
                db.add(row)

                updated = (
                    db.query(LedgerAccount)
                    .filter(LedgerAccount.user_id == user_id, LedgerAccount.version == expected_version)
                    .update({LedgerAccount.version: expected_version + 1}, synchronize_session=False)
                )
                if updated != 1:
                    db.rollback()
                    raise LedgerConflictError(f"Ledger account {user_id} changed during append")

                txn = self._to_domain(row)
                db.commit()
                return txn
        except IntegrityError as e:
            # Two first-time writers raced to create the account row
            raise LedgerConflictError(f"Ledger account {user_id} created concurrently") from e
        except SQLAlchemyError as e:
            raise StorageError(f"Ledger append failed: {e}") from e

    def balance(self, user_id: str) -> int:
        try:
            with self.session_factory() as db:
                return self._balance_query(db, user_id)
        except SQLAlchemyError as e:
            raise StorageError(f"Ledger balance failed: {e}") from e

    def history(self, user_id: str, limit: Optional[int] = None, since: Optional[datetime] = None) -> List[Transaction]:
        try:
            with self.session_factory() as db:
                query = db.query(LedgerTransaction).filter(LedgerTransaction.user_id == user_id)
                if since is not None:
                    query = query.filter(LedgerTransaction.created_at >= since)
                query = query.order_by(LedgerTransaction.created_at.desc())
                if limit is not None:
                    query = query.limit(limit)
                return [self._to_domain(row) for row in query.all()]
        except SQLAlchemyError as e:
            raise StorageError(f"Ledger history failed: {e}") from e


class RecommendationRepository:
    """Repository for recommendations with conditional status transitions"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @staticmethod
    def _to_domain(row: ShopperRecommendation) -> Recommendation:
        return Recommendation(
            id=row.id,
            user_id=row.user_id,
            product_id=row.product_id,
            reason=row.reason,
            confidence=row.confidence,
            status=RecommendationStatus(row.status),
            created_at=ensure_aware(row.created_at),
            updated_at=ensure_aware(row.updated_at),
            rejected_reason=row.rejected_reason,
            rejection_kind=RejectionKind(row.rejection_kind) if row.rejection_kind else None,
            purchased_at=ensure_aware(row.purchased_at) if row.purchased_at else None,
        )

    def add(self, recommendation: Recommendation) -> Recommendation:
        try:
            with self.session_factory() as db:
                db.add(
                    ShopperRecommendation(
                        id=recommendation.id,
                        user_id=recommendation.user_id,
                        product_id=recommendation.product_id,
                        reason=recommendation.reason,
                        confidence=recommendation.confidence,
                        status=recommendation.status.value,
                        created_at=recommendation.created_at,
                        updated_at=recommendation.updated_at,
                    )
                )
                db.commit()
            return recommendation
        except SQLAlchemyError as e:
            raise StorageError(f"Saving recommendation failed: {e}") from e

    def get(self, recommendation_id: str) -> Optional[Recommendation]:
        try:
            with self.session_factory() as db:
                row = db.get(ShopperRecommendation, recommendation_id)
                return self._to_domain(row) if row else None
        except SQLAlchemyError as e:
            raise StorageError(f"Loading recommendation failed: {e}") from e

    def transition(
        self,
        recommendation_id: str,
        target: RecommendationStatus,
        allowed_from: Iterable[RecommendationStatus],
        now: datetime,
        reason: Optional[str] = None,
        rejection_kind: Optional[RejectionKind] = None,
    ) -> Recommendation:
        values: Dict[Any, Any] = {
            ShopperRecommendation.status: target.value,
            ShopperRecommendation.updated_at: now,
        }
        if target == RecommendationStatus.PURCHASED:
            values[ShopperRecommendation.purchased_at] = now
        if target == RecommendationStatus.REJECTED:
            values[ShopperRecommendation.rejected_reason] = reason
            values[ShopperRecommendation.rejection_kind] = (rejection_kind or RejectionKind.RETRYABLE).value

        try:
            with self.session_factory() as db:
                updated = (
                    db.query(ShopperRecommendation)
                    .filter(
                        ShopperRecommendation.id == recommendation_id,
                        ShopperRecommendation.status.in_([s.value for s in allowed_from]),
                    )
                    .update(values, synchronize_session=False)
                )
                if updated != 1:
                    db.rollback()
                    row = db.get(ShopperRecommendation, recommendation_id)
                    if row is None:
                        raise RecommendationNotFoundError(recommendation_id)
                    raise InvalidStatusTransitionError(recommendation_id, row.status, target.value)
                db.commit()
                row = db.get(ShopperRecommendation, recommendation_id)
                return self._to_domain(row)
        except SQLAlchemyError as e:
            raise StorageError(f"Recommendation transition failed: {e}") from e

    def list_by_user(
        self,
        user_id: str,
        statuses: Optional[Iterable[RecommendationStatus]] = None,
        include_permanent: bool = False,
    ) -> List[Recommendation]:
        try:
            with self.session_factory() as db:
                query = db.query(ShopperRecommendation).filter(ShopperRecommendation.user_id == user_id)
                if statuses is not None:
                    query = query.filter(ShopperRecommendation.status.in_([s.value for s in statuses]))
                if not include_permanent:
                    query = query.filter(
                        (ShopperRecommendation.rejection_kind.is_(None))
                        | (ShopperRecommendation.rejection_kind != RejectionKind.PERMANENT.value)
                    )
                rows = query.order_by(ShopperRecommendation.created_at.desc()).all()
                return [self._to_domain(row) for row in rows]
        except SQLAlchemyError as e:
            raise StorageError(f"Listing recommendations failed: {e}") from e


class PolicyRepository:
    """Repository for per-user policy documents"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get(self, user_id: str) -> Optional[Policy]:
        try:
            with self.session_factory() as db:
                row = db.get(ShopperPolicy, user_id)
                return policy_from_document(row.settings) if row else None
        except SQLAlchemyError as e:
            raise StorageError(f"Loading policy failed: {e}") from e

    def save(self, user_id: str, policy: Policy) -> Policy:
        try:
            with self.session_factory() as db:
                db.merge(ShopperPolicy(user_id=user_id, settings=policy_to_document(policy), updated_at=utcnow()))
                db.commit()
            return policy
        except SQLAlchemyError as e:
            raise StorageError(f"Saving policy failed: {e}") from e


class SessionRepository:
    """Repository for AutoShop session snapshots, one row per user"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @staticmethod
    def _to_domain(row: AutoShopSessionRecord) -> AutoShopSession:
        context = row.search_context or {}
        return AutoShopSession(
            session_id=row.session_id,
            user_id=row.user_id,
            state=SessionState(row.state),
            start_time=ensure_aware(row.start_time),
            end_time=ensure_aware(row.end_time),
            settings=policy_from_document(row.settings),
            search_context=SearchContext(**context),
            spent_this_window=int(row.spent_this_window),
            purchase_count_this_window=row.purchase_count_this_window,
            last_cycle_at=ensure_aware(row.last_cycle_at) if row.last_cycle_at else None,
            last_error=row.last_error,
        )

    def save(self, session: AutoShopSession) -> None:
        try:
            with self.session_factory() as db:
                db.merge(
                    AutoShopSessionRecord(
                        user_id=session.user_id,
                        session_id=session.session_id,
                        state=session.state.value,
                        active=session.active,
                        start_time=session.start_time,
                        end_time=session.end_time,
                        settings=policy_to_document(session.settings),
                        search_context=asdict(session.search_context),
                        spent_this_window=session.spent_this_window,
                        purchase_count_this_window=session.purchase_count_this_window,
                        last_cycle_at=session.last_cycle_at,
                        last_error=session.last_error,
                    )
                )
                db.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Saving session failed: {e}") from e

    def get(self, user_id: str) -> Optional[AutoShopSession]:
        try:
            with self.session_factory() as db:
                row = db.get(AutoShopSessionRecord, user_id)
                return self._to_domain(row) if row else None
        except SQLAlchemyError as e:
            raise StorageError(f"Loading session failed: {e}") from e

    def list_active(self) -> List[AutoShopSession]:
        try:
            with self.session_factory() as db:
                rows = db.query(AutoShopSessionRecord).filter(AutoShopSessionRecord.active.is_(True)).all()
                return [self._to_domain(row) for row in rows]
        except SQLAlchemyError as e:
            raise StorageError(f"Listing sessions failed: {e}") from e

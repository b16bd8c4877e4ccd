"""SQLAlchemy ORM models for the ledger, recommendations, policies and sessions"""

import uuid
from sqlalchemy import Column, String, BigInteger, Boolean, DateTime, Integer, ForeignKey, Text, JSON, Index
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class LedgerAccount(Base):
    """One row per user; its version guards the balance check on spends"""

    __tablename__ = "ledger_account"

    user_id = Column(Text, primary_key=True)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class LedgerTransaction(Base):
    """Append-only coin movement; amount is positive, sign follows kind"""

    __tablename__ = "ledger_transaction"
    __table_args__ = (Index("ix_ledger_transaction_user_created", "user_id", "created_at"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(Text, ForeignKey("ledger_account.user_id"), nullable=False)
    amount = Column(BigInteger, nullable=False)
    kind = Column(Text, nullable=False)  # purchase | spend | refund | bonus
    description = Column(Text, nullable=False)
    related_recommendation_id = Column(String(36), nullable=True)
    related_order_id = Column(Text, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class ShopperRecommendation(Base):
    """Recommendation lifecycle record"""

    __tablename__ = "shopper_recommendation"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(Text, nullable=False, index=True)
    product_id = Column(Text, nullable=False)
    reason = Column(Text, nullable=False)
    confidence = Column(Integer, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    rejected_reason = Column(Text, nullable=True)
    rejection_kind = Column(Text, nullable=True)  # retryable | permanent
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    purchased_at = Column(DateTime(timezone=True), nullable=True)


class ShopperPolicy(Base):
    """Per-user autonomous-shopping settings document"""

    __tablename__ = "shopper_policy"

    user_id = Column(Text, primary_key=True)
    settings = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class AutoShopSessionRecord(Base):
    """Persisted AutoShop session so timers can resume after a restart"""

    __tablename__ = "autoshop_session"

    user_id = Column(Text, primary_key=True)
    session_id = Column(String(36), nullable=False)
    state = Column(Text, nullable=False)
    active = Column(Boolean, nullable=False, default=False, index=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    settings = Column(JSON, nullable=False)
    search_context = Column(JSON, nullable=True)
    spent_this_window = Column(BigInteger, nullable=False, default=0)
    purchase_count_this_window = Column(Integer, nullable=False, default=0)
    last_cycle_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)

"""Dependency injection for FastAPI endpoints"""

from datetime import timedelta
from functools import lru_cache

from fastapi import Request

from daswos_autoshop.config import settings
from daswos_autoshop.domain.ledger import Ledger
from daswos_autoshop.domain.recommendation import RecommendationEngine
from daswos_autoshop.infrastructure.clients.catalog import CatalogClient
from daswos_autoshop.infrastructure.clients.payment import PaymentClient
from daswos_autoshop.infrastructure.database.models import Base
from daswos_autoshop.infrastructure.database.repositories import (
    PolicyRepository,
    RecommendationRepository,
    SessionRepository,
    SqlLedgerStore,
)
from daswos_autoshop.infrastructure.database.session import SessionLocal, engine
from daswos_autoshop.infrastructure.fallback import FallbackCatalogGateway, FallbackLedgerStore
from daswos_autoshop.infrastructure.memory.stores import InMemoryCatalog, InMemoryLedgerStore
from daswos_autoshop.services.autoshop import AutoShopService
from daswos_autoshop.services.purchasing import PurchaseExecutor
from daswos_autoshop.services.scheduler import AutoShopScheduler


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


@lru_cache
def get_service() -> AutoShopService:
    """Wire the process-wide AutoShop service against the configured backends"""
    Base.metadata.create_all(bind=engine)

    ledger_store = SqlLedgerStore(SessionLocal)
    if settings.use_fallback_storage:
        ledger_store = FallbackLedgerStore(ledger_store, InMemoryLedgerStore())

    catalog = FallbackCatalogGateway(CatalogClient(), InMemoryCatalog())
    payments = PaymentClient()
    recommendations = RecommendationRepository(SessionLocal)

    ledger = Ledger(ledger_store, max_conflict_retries=settings.ledger_max_conflict_retries)
    recommendation_engine = RecommendationEngine(catalog, default_confidence=settings.random_mode_confidence)
    executor = PurchaseExecutor(ledger, recommendations, payments)
    scheduler = AutoShopScheduler(
        ledger,
        recommendation_engine,
        recommendations,
        SessionRepository(SessionLocal),
        executor,
        interval_seconds=settings.autoshop_cycle_interval_seconds,
    )

    return AutoShopService(
        ledger=ledger,
        engine=recommendation_engine,
        recommendations=recommendations,
        policies=PolicyRepository(SessionLocal),
        catalog=catalog,
        scheduler=scheduler,
        executor=executor,
        payments=payments,
        default_duration=timedelta(minutes=settings.autoshop_default_duration_minutes),
    )

"""Pytest fixtures for testing"""

import random
import pytest
from datetime import datetime, timedelta, timezone
from typing import Generator, List, Optional
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from daswos_autoshop.api.dependencies import get_service
from daswos_autoshop.api.main import create_app
from daswos_autoshop.domain.ledger import Ledger
from daswos_autoshop.domain.models import Policy, Product, SettlementResult
from daswos_autoshop.domain.recommendation import RecommendationEngine
from daswos_autoshop.infrastructure.database.models import Base
from daswos_autoshop.infrastructure.memory.stores import (
    InMemoryCatalog,
    InMemoryLedgerStore,
    InMemoryPolicyStore,
    InMemoryRecommendationStore,
    InMemorySessionStore,
)
from daswos_autoshop.services.autoshop import AutoShopService
from daswos_autoshop.services.purchasing import PurchaseExecutor
from daswos_autoshop.services.scheduler import AutoShopScheduler


class FakeClock:
    """Controllable clock; call it to read, advance() to move time forward"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakePaymentGateway:
    """Records settle() and refund() calls and answers with configurable results"""

    def __init__(self, result: Optional[SettlementResult] = None):
        self.result = result or SettlementResult(success=True, reference="pay_123")
        self.calls: List[tuple] = []
        self.refund_result = SettlementResult(success=True, reference="refund_123")
        self.refunds: List[tuple] = []

    async def settle(self, user_id: str, amount: int, payment_method_ref: str) -> SettlementResult:
        self.calls.append((user_id, amount, payment_method_ref))
        return self.result

    async def refund(self, user_id: str, amount: int, reference: str) -> SettlementResult:
        self.refunds.append((user_id, amount, reference))
        return self.refund_result


# ── Domain fixtures ───────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> FakeClock:
    # Mid-month, mid-day, on the hour: keeps calendar windows easy to reason about
    return FakeClock(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def products() -> List[Product]:
    """Sample catalog spanning trust scores, prices and categories"""
    return [
        Product(
            id="p_headphones",
            title="Wireless Headphones",
            price=300,
            trust_score=95,
            tags=frozenset({"electronics", "audio"}),
            category="electronics",
            description="Noise cancelling over-ear headphones",
        ),
        Product(
            id="p_kettle",
            title="Electric Kettle",
            price=150,
            trust_score=90,
            tags=frozenset({"kitchen"}),
            category="home",
            description="1.7L stainless steel kettle",
        ),
        Product(
            id="p_sketchy",
            title="Unbranded Charger",
            price=120,
            trust_score=40,
            tags=frozenset({"electronics"}),
            category="electronics",
        ),
        Product(
            id="p_tv",
            title="OLED Television",
            price=9000,
            trust_score=99,
            tags=frozenset({"electronics", "video"}),
            category="electronics",
        ),
        Product(
            id="p_sticker",
            title="Sticker Pack",
            price=20,
            trust_score=92,
            tags=frozenset({"stationery"}),
            category="office",
        ),
    ]


@pytest.fixture
def catalog(products: List[Product]) -> InMemoryCatalog:
    return InMemoryCatalog(products)


@pytest.fixture
def ledger_store(clock: FakeClock) -> InMemoryLedgerStore:
    return InMemoryLedgerStore(clock=clock)


@pytest.fixture
def ledger(ledger_store: InMemoryLedgerStore, clock: FakeClock) -> Ledger:
    return Ledger(ledger_store, clock=clock)


@pytest.fixture
def recommendation_store() -> InMemoryRecommendationStore:
    return InMemoryRecommendationStore()


@pytest.fixture
def policy_store() -> InMemoryPolicyStore:
    return InMemoryPolicyStore()


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def payments() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def engine(catalog: InMemoryCatalog, clock: FakeClock) -> RecommendationEngine:
    return RecommendationEngine(catalog, default_confidence=50, rng=random.Random(7), clock=clock)


@pytest.fixture
def executor(ledger, recommendation_store, payments, clock) -> PurchaseExecutor:
    return PurchaseExecutor(ledger, recommendation_store, payments, clock=clock)


@pytest.fixture
def scheduler(ledger, engine, recommendation_store, session_store, executor, clock) -> AutoShopScheduler:
    # Long interval: tests drive cycles through run_cycle()
    return AutoShopScheduler(
        ledger,
        engine,
        recommendation_store,
        session_store,
        executor,
        interval_seconds=3600,
        clock=clock,
    )


@pytest.fixture
def service(ledger, engine, recommendation_store, policy_store, catalog, scheduler, executor, payments, clock):
    return AutoShopService(
        ledger=ledger,
        engine=engine,
        recommendations=recommendation_store,
        policies=policy_store,
        catalog=catalog,
        scheduler=scheduler,
        executor=executor,
        payments=payments,
        clock=clock,
    )


@pytest.fixture
def shopping_policy() -> Policy:
    """Policy that approves anything in the default catalog's safe range"""
    return Policy(
        enabled=True,
        auto_purchase=True,
        confidence_threshold=0.4,
        preferred_categories=frozenset({"electronics"}),
    )


# ── Database fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def session_factory(tmp_path) -> Generator[sessionmaker, None, None]:
    """Fresh SQLite database per test"""
    db_engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=db_engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    finally:
        Base.metadata.drop_all(bind=db_engine)
        db_engine.dispose()


# ── API fixtures ──────────────────────────────────────────────────────────────


@pytest.fixture
def client(service: AutoShopService) -> Generator[TestClient, None, None]:
    """FastAPI test client wired to the in-memory service"""
    app = create_app()
    app.dependency_overrides[get_service] = lambda: service
    with TestClient(app) as test_client:
        yield test_client

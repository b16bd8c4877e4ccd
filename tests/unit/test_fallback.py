"""Unit tests for primary/fallback backend composition"""

import pytest
from daswos_autoshop.domain.exceptions import CatalogUnavailableError, InsufficientBalanceError, StorageError
from daswos_autoshop.domain.models import TransactionKind
from daswos_autoshop.infrastructure.fallback import FallbackCatalogGateway, FallbackLedgerStore, FallbackStrategy
from daswos_autoshop.infrastructure.memory.stores import InMemoryCatalog, InMemoryLedgerStore


class DownLedgerStore:
    """Primary whose backend is unreachable"""

    def append(self, **kwargs):
        raise StorageError("connection refused")

    def balance(self, user_id):
        raise StorageError("connection refused")

    def history(self, user_id, limit=None, since=None):
        raise StorageError("connection refused")


class DownCatalog:
    async def query_products(self, sphere, text_query=None, category=None):
        raise CatalogUnavailableError("timeout")

    async def get_product(self, product_id):
        raise CatalogUnavailableError("timeout")


def test_strategy_returns_primary_result_when_healthy():
    strategy = FallbackStrategy("test", (StorageError,))

    assert strategy.execute("op", lambda: "primary", lambda: "fallback") == "primary"


def test_strategy_falls_back_on_recoverable_error():
    strategy = FallbackStrategy("test", (StorageError,))

    def broken():
        raise StorageError("down")

    assert strategy.execute("op", broken, lambda: "fallback") == "fallback"


def test_strategy_propagates_other_errors():
    strategy = FallbackStrategy("test", (StorageError,))

    def refuses():
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        strategy.execute("op", refuses, lambda: "fallback")


class SwitchableLedgerStore(InMemoryLedgerStore):
    """Primary that can be taken down and brought back with its data intact"""

    def __init__(self):
        super().__init__()
        self.down = False

    def _check(self):
        if self.down:
            raise StorageError("connection refused")

    def append(self, **kwargs):
        self._check()
        return super().append(**kwargs)

    def balance(self, user_id):
        self._check()
        return super().balance(user_id)

    def history(self, user_id, limit=None, since=None):
        self._check()
        return super().history(user_id, limit=limit, since=since)


def test_ledger_appends_never_fall_back():
    mirror = InMemoryLedgerStore()
    store = FallbackLedgerStore(DownLedgerStore(), mirror)

    with pytest.raises(StorageError):
        store.append(user_id="u1", amount=100, kind=TransactionKind.PURCHASE, description="top-up")

    assert mirror.balance("u1") == 0


def test_ledger_balance_survives_outage_and_recovery():
    """Test credits made before, during and after an outage all count once"""
    primary = SwitchableLedgerStore()
    store = FallbackLedgerStore(primary, InMemoryLedgerStore())
    store.append(user_id="u1", amount=500, kind=TransactionKind.PURCHASE, description="top-up")

    primary.down = True
    with pytest.raises(StorageError):
        store.append(user_id="u1", amount=200, kind=TransactionKind.PURCHASE, description="during outage")
    assert store.balance("u1") == 500
    assert [t.amount for t in store.history("u1")] == [500]

    primary.down = False
    store.append(user_id="u1", amount=200, kind=TransactionKind.PURCHASE, description="retried")

    assert store.balance("u1") == 700
    primary.down = True
    assert store.balance("u1") == 700


def test_ledger_reads_without_a_complete_copy_raise():
    """Test a user never seen while the primary was up gets the storage error"""
    primary = SwitchableLedgerStore()
    primary.append(user_id="u1", amount=500, kind=TransactionKind.PURCHASE, description="written elsewhere")
    store = FallbackLedgerStore(primary, InMemoryLedgerStore())

    primary.down = True

    with pytest.raises(StorageError):
        store.balance("u1")


def test_ledger_mirror_is_seeded_from_existing_history():
    primary = SwitchableLedgerStore()
    primary.append(user_id="u1", amount=500, kind=TransactionKind.PURCHASE, description="written earlier")
    primary.append(user_id="u1", amount=120, kind=TransactionKind.SPEND, description="buy")
    store = FallbackLedgerStore(primary, InMemoryLedgerStore())

    assert store.balance("u1") == 380
    primary.down = True

    assert store.balance("u1") == 380
    assert [t.description for t in store.history("u1")] == ["buy", "written earlier"]


def test_business_errors_are_not_retried_on_fallback():
    """Test an overdraft refused by the primary is not attempted on the fallback"""
    primary = InMemoryLedgerStore()
    fallback = InMemoryLedgerStore()
    fallback.append(user_id="u1", amount=1000, kind=TransactionKind.PURCHASE, description="stale copy")
    store = FallbackLedgerStore(primary, fallback)

    with pytest.raises(InsufficientBalanceError):
        store.append(user_id="u1", amount=500, kind=TransactionKind.SPEND, description="buy")

    assert fallback.balance("u1") == 1000


async def test_catalog_falls_back_when_primary_is_down(products):
    gateway = FallbackCatalogGateway(DownCatalog(), InMemoryCatalog(products))

    results = await gateway.query_products("safesphere", category="home")

    assert [p.id for p in results] == ["p_kettle"]
    assert (await gateway.get_product("p_tv")).title == "OLED Television"

"""Unit tests for the purchase gate"""

import pytest
from datetime import datetime, timedelta, timezone
from daswos_autoshop.domain.models import (
    AutoShopSession,
    Policy,
    Product,
    PurchaseFrequency,
    Recommendation,
    RecommendationStatus,
    SessionState,
    SpendingSnapshot,
)
from daswos_autoshop.domain.validator import (
    REASON_AUTO_PURCHASE_DISABLED,
    REASON_INSUFFICIENT_FUNDS,
    REASON_LOW_CONFIDENCE,
    REASON_NO_PAYMENT_METHOD,
    REASON_PRICE_LIMIT,
    REASON_RATE_LIMIT,
    check_price,
    validate_purchase,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_recommendation(confidence: int = 90) -> Recommendation:
    return Recommendation(
        id="r1",
        user_id="u1",
        product_id="p1",
        reason="test",
        confidence=confidence,
        status=RecommendationStatus.PENDING,
        created_at=NOW,
        updated_at=NOW,
    )


def make_product(price: int = 300) -> Product:
    return Product(id="p1", title="Thing", price=price, trust_score=95)


@pytest.fixture
def policy() -> Policy:
    return Policy(enabled=True, auto_purchase=True, confidence_threshold=0.85)


@pytest.fixture
def rich() -> SpendingSnapshot:
    return SpendingSnapshot(balance=5000)


def test_approves_when_every_check_passes(policy, rich):
    result = validate_purchase(make_recommendation(), make_product(), policy, rich)

    assert result.approved is True
    assert result.reason is None


def test_low_confidence_rejected_regardless_of_price_and_balance(policy, rich):
    """Test confidence 80 against threshold 0.85"""
    result = validate_purchase(make_recommendation(confidence=80), make_product(price=10), policy, rich)

    assert result.approved is False
    assert result.reason == REASON_LOW_CONFIDENCE


def test_confidence_exactly_at_threshold_passes(policy, rich):
    result = validate_purchase(make_recommendation(confidence=85), make_product(), policy, rich)

    assert result.approved is True


def test_price_over_budget_rejected_even_with_large_balance(rich):
    """Test budget 1000 vs price 1200 with 5000 coins available"""
    policy = Policy(enabled=True, auto_purchase=True, budget_limit=1000, max_coins_per_item=5000)

    result = validate_purchase(make_recommendation(), make_product(price=1200), policy, rich)

    assert result.reason == REASON_PRICE_LIMIT


def test_auto_purchase_disabled_checked_first(rich):
    """Test the first failing check wins: disabled beats low confidence"""
    policy = Policy(enabled=True, auto_purchase=False)

    result = validate_purchase(make_recommendation(confidence=10), make_product(), policy, rich)

    assert result.reason == REASON_AUTO_PURCHASE_DISABLED


def test_price_checked_before_funds(policy):
    poor = SpendingSnapshot(balance=0)

    result = validate_purchase(make_recommendation(), make_product(price=9999), policy, poor)

    assert result.reason == REASON_PRICE_LIMIT


def test_funds_checked_before_rate_limits(policy):
    exhausted = SpendingSnapshot(balance=100, purchases_this_hour=5)

    result = validate_purchase(make_recommendation(), make_product(price=300), policy, exhausted)

    assert result.reason == REASON_INSUFFICIENT_FUNDS


def test_coin_cap_per_item(policy, rich):
    """Test coin payments are capped per item independently of the price limit"""
    capped = policy.updated(max_coins_per_item=200)

    assert validate_purchase(make_recommendation(), make_product(price=300), capped, rich).reason == REASON_PRICE_LIMIT

    by_card = capped.updated(use_coins=False, payment_method_ref="card_1")
    assert validate_purchase(make_recommendation(), make_product(price=300), by_card, rich).approved is True


@pytest.mark.parametrize(
    "snapshot",
    [
        SpendingSnapshot(balance=5000, purchases_this_hour=1, purchases_today=1, purchases_this_month=1),
        SpendingSnapshot(balance=5000, purchases_today=5, purchases_this_month=5),
        SpendingSnapshot(balance=5000, purchases_this_month=50),
        SpendingSnapshot(balance=5000, coins_spent_today=800),
        SpendingSnapshot(balance=5000, coins_spent_overall=9800),
    ],
    ids=["hourly", "daily", "monthly", "coins-per-day", "coins-overall"],
)
def test_rate_limits(policy, snapshot):
    """Test each frequency window and coin cap (default 1/5/50, 1000/day, 10000 overall)"""
    result = validate_purchase(make_recommendation(), make_product(price=300), policy, snapshot)

    assert result.reason == REASON_RATE_LIMIT


def test_custom_frequency_allows_more_per_hour(rich):
    policy = Policy(enabled=True, auto_purchase=True, purchase_frequency=PurchaseFrequency(hourly=3, daily=10, monthly=100))
    snapshot = SpendingSnapshot(balance=5000, purchases_this_hour=2, purchases_today=2, purchases_this_month=2)

    assert validate_purchase(make_recommendation(), make_product(), policy, snapshot).approved is True


def test_card_payment_requires_payment_method(rich):
    policy = Policy(enabled=True, auto_purchase=True, use_coins=False)

    result = validate_purchase(make_recommendation(), make_product(), policy, SpendingSnapshot(balance=0))

    assert result.reason == REASON_NO_PAYMENT_METHOD


def test_card_payment_ignores_coin_balance_and_caps():
    policy = Policy(enabled=True, auto_purchase=True, use_coins=False, payment_method_ref="card_1")
    snapshot = SpendingSnapshot(balance=0, coins_spent_today=5000, coins_spent_overall=50000)

    assert validate_purchase(make_recommendation(), make_product(price=900), policy, snapshot).approved is True


def test_session_window_budget(policy):
    """Test the remaining budget of a running session bounds the price"""
    session = AutoShopSession(
        session_id="s1",
        user_id="u1",
        state=SessionState.ACTIVE,
        start_time=NOW,
        end_time=NOW + timedelta(minutes=30),
        settings=policy,
        spent_this_window=4800,
    )

    assert check_price(make_product(price=300), policy, session) is False
    assert check_price(make_product(price=200), policy, session) is True
    assert check_price(make_product(price=300), policy) is True

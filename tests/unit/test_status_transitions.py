"""Unit tests for recommendation status transitions"""

import pytest
from daswos_autoshop.domain.exceptions import InvalidStatusTransitionError, RecommendationNotFoundError
from daswos_autoshop.domain.models import (
    ALLOWED_TRANSITIONS,
    Recommendation,
    RecommendationStatus,
    RejectionKind,
)
from daswos_autoshop.infrastructure.memory.stores import InMemoryRecommendationStore

PENDING = RecommendationStatus.PENDING
CART = RecommendationStatus.ADDED_TO_CART
PURCHASED = RecommendationStatus.PURCHASED
REJECTED = RecommendationStatus.REJECTED


@pytest.fixture
def store(clock) -> InMemoryRecommendationStore:
    store = InMemoryRecommendationStore()
    store.add(
        Recommendation(
            id="r1",
            user_id="u1",
            product_id="p1",
            reason="test",
            confidence=90,
            status=PENDING,
            created_at=clock(),
            updated_at=clock(),
        )
    )
    return store


def move(store, target, clock, **kwargs):
    return store.transition("r1", target, ALLOWED_TRANSITIONS[target], now=clock(), **kwargs)


@pytest.mark.parametrize(
    "path",
    [
        [CART],
        [PURCHASED],
        [REJECTED],
        [CART, PURCHASED],
        [CART, REJECTED],
    ],
)
def test_allowed_paths(store, clock, path):
    for target in path:
        rec = move(store, target, clock)

    assert rec.status == path[-1]


@pytest.mark.parametrize("terminal", [PURCHASED, REJECTED])
@pytest.mark.parametrize("target", [CART, PURCHASED, REJECTED])
def test_terminal_statuses_are_sinks(store, clock, terminal, target):
    move(store, terminal, clock)

    with pytest.raises(InvalidStatusTransitionError) as exc_info:
        move(store, target, clock)

    assert exc_info.value.current == terminal.value
    assert store.get("r1").status == terminal


def test_cart_cannot_be_added_twice(store, clock):
    move(store, CART, clock)

    with pytest.raises(InvalidStatusTransitionError):
        move(store, CART, clock)


def test_purchase_stamps_purchased_at(store, clock):
    clock.advance(minutes=3)
    rec = move(store, PURCHASED, clock)

    assert rec.purchased_at == clock()
    assert rec.updated_at == clock()


def test_unknown_recommendation(store, clock):
    with pytest.raises(RecommendationNotFoundError):
        store.transition("missing", REJECTED, ALLOWED_TRANSITIONS[REJECTED], now=clock())


def test_permanent_rejection_hidden_from_listings(store, clock):
    move(store, REJECTED, clock, reason="never again", rejection_kind=RejectionKind.PERMANENT)

    assert store.list_by_user("u1") == []
    hidden = store.list_by_user("u1", include_permanent=True)
    assert hidden[0].rejected_reason == "never again"
    assert hidden[0].rejection_kind == RejectionKind.PERMANENT


def test_rejection_defaults_to_retryable(store, clock):
    rec = move(store, REJECTED, clock, reason="too pricey")

    assert rec.rejection_kind == RejectionKind.RETRYABLE
    assert store.list_by_user("u1", [REJECTED])[0].id == "r1"

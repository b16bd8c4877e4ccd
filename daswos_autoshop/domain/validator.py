"""Purchase gate - stateless approve/reject decision for autonomous purchases"""

from daswos_autoshop.domain.models import (
    AutoShopSession,
    Policy,
    Product,
    Recommendation,
    SpendingSnapshot,
    ValidationResult,
)

REASON_AUTO_PURCHASE_DISABLED = "auto-purchase disabled"
REASON_LOW_CONFIDENCE = "confidence below threshold"
REASON_PRICE_LIMIT = "price exceeds limit"
REASON_INSUFFICIENT_FUNDS = "insufficient funds"
REASON_NO_PAYMENT_METHOD = "no payment method"
REASON_RATE_LIMIT = "rate limit exceeded"


def check_confidence(recommendation: Recommendation, policy: Policy) -> bool:
    return recommendation.confidence / 100 >= policy.confidence_threshold


def check_price(product: Product, policy: Policy, session: AutoShopSession | None = None) -> bool:
    """
    Price must fit the per-item cap and the budget.

    When a session is running, the budget still available in its window is
    what counts; coin payments are additionally capped per item.
    """
    if product.price > policy.max_price_per_item or product.price > policy.budget_limit:
        return False
    if policy.use_coins and product.price > policy.max_coins_per_item:
        return False
    if session is not None and session.spent_this_window + product.price > policy.budget_limit:
        return False
    return True


def check_rate_limits(product: Product, policy: Policy, spending: SpendingSnapshot) -> bool:
    frequency = policy.purchase_frequency
    if spending.purchases_this_hour + 1 > frequency.hourly:
        return False
    if spending.purchases_today + 1 > frequency.daily:
        return False
    if spending.purchases_this_month + 1 > frequency.monthly:
        return False

    if policy.use_coins:
        if spending.coins_spent_today + product.price > policy.max_coins_per_day:
            return False
        if spending.coins_spent_overall + product.price > policy.max_coins_overall:
            return False
    return True


def validate_purchase(
    recommendation: Recommendation,
    product: Product,
    policy: Policy,
    spending: SpendingSnapshot,
    session: AutoShopSession | None = None,
) -> ValidationResult:
    """
    Decide whether an autonomous purchase may proceed.

    Checks run in a fixed order and the first failure wins:
    1. auto-purchase enabled
    2. confidence / 100 >= threshold
    3. price within per-item cap and budget
    4. funds available (coin balance, or a card on file)
    5. hourly/daily/monthly counts and daily/overall coin caps

    This never moves money. The caller debits the ledger after an approval and
    only then marks the recommendation purchased.
    """
    if not policy.auto_purchase:
        return ValidationResult.reject(REASON_AUTO_PURCHASE_DISABLED)

    if not check_confidence(recommendation, policy):
        return ValidationResult.reject(REASON_LOW_CONFIDENCE)

    if not check_price(product, policy, session):
        return ValidationResult.reject(REASON_PRICE_LIMIT)

    if policy.use_coins:
        if spending.balance < product.price:
            return ValidationResult.reject(REASON_INSUFFICIENT_FUNDS)
    elif not policy.payment_method_ref:
        return ValidationResult.reject(REASON_NO_PAYMENT_METHOD)

    if not check_rate_limits(product, policy, spending):
        return ValidationResult.reject(REASON_RATE_LIMIT)

    return ValidationResult.approve()

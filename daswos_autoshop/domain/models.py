"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional


class TransactionKind(str, Enum):
    """Ledger movement kinds; amount is always positive, sign follows the kind"""

    PURCHASE = "purchase"
    SPEND = "spend"
    REFUND = "refund"
    BONUS = "bonus"


CREDIT_KINDS = frozenset({TransactionKind.PURCHASE, TransactionKind.BONUS, TransactionKind.REFUND})
DEBIT_KINDS = frozenset({TransactionKind.SPEND})


class RecommendationStatus(str, Enum):
    PENDING = "pending"
    ADDED_TO_CART = "added_to_cart"
    PURCHASED = "purchased"
    REJECTED = "rejected"


class RejectionKind(str, Enum):
    """Whether a rejected recommendation may be shown again"""

    RETRYABLE = "retryable"
    PERMANENT = "permanent"


# Statuses a recommendation may be in before moving to the key status.
# purchased and rejected are terminal sinks.
ALLOWED_TRANSITIONS: Dict[RecommendationStatus, FrozenSet[RecommendationStatus]] = {
    RecommendationStatus.ADDED_TO_CART: frozenset({RecommendationStatus.PENDING}),
    RecommendationStatus.PURCHASED: frozenset({RecommendationStatus.PENDING, RecommendationStatus.ADDED_TO_CART}),
    RecommendationStatus.REJECTED: frozenset({RecommendationStatus.PENDING, RecommendationStatus.ADDED_TO_CART}),
}

TERMINAL_STATUSES = frozenset({RecommendationStatus.PURCHASED, RecommendationStatus.REJECTED})


class SessionState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    EXPIRED = "expired"
    STOPPED = "stopped"
    BUDGET_EXHAUSTED = "budget_exhausted"


class PurchaseMode(str, Enum):
    REFINED = "refined"
    RANDOM = "random"


@dataclass(frozen=True)
class Transaction:
    """Immutable ledger entry"""

    id: str
    user_id: str
    amount: int
    kind: TransactionKind
    description: str
    created_at: datetime
    related_recommendation_id: Optional[str] = None
    related_order_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def signed_amount(self) -> int:
        return -self.amount if self.kind in DEBIT_KINDS else self.amount


@dataclass(frozen=True)
class Product:
    """Catalog product as seen by the purchasing engine"""

    id: str
    title: str
    price: int  # minor units, equal to DasWos Coins
    trust_score: int
    tags: FrozenSet[str] = frozenset()
    category: Optional[str] = None
    description: str = ""


@dataclass(frozen=True)
class PurchaseFrequency:
    """Maximum autonomous purchases per calendar window"""

    hourly: int = 1
    daily: int = 5
    monthly: int = 50


@dataclass(frozen=True)
class Policy:
    """Per-user configuration bounding autonomous purchases"""

    enabled: bool = False
    auto_purchase: bool = False
    confidence_threshold: float = 0.85  # 0-1, compared against confidence / 100
    max_price_per_item: int = 5000
    budget_limit: int = 5000
    min_item_price: int = 100
    max_coins_per_item: int = 500
    max_coins_per_day: int = 1000
    max_coins_overall: int = 10000
    purchase_frequency: PurchaseFrequency = field(default_factory=PurchaseFrequency)
    preferred_categories: FrozenSet[str] = frozenset()
    avoid_tags: FrozenSet[str] = frozenset()
    minimum_trust_score: int = 85
    purchase_mode: PurchaseMode = PurchaseMode.REFINED
    use_coins: bool = True
    payment_method_ref: Optional[str] = None

    def updated(self, **changes: Any) -> "Policy":
        return replace(self, **changes)


@dataclass
class Recommendation:
    """Candidate product selected for a user"""

    id: str
    user_id: str
    product_id: str
    reason: str
    confidence: int  # 0-100
    status: RecommendationStatus
    created_at: datetime
    updated_at: datetime
    rejected_reason: Optional[str] = None
    rejection_kind: Optional[RejectionKind] = None
    purchased_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class SearchContext:
    """What the engine should look for on this tick"""

    sphere: str = "safesphere"
    text_query: Optional[str] = None
    category: Optional[str] = None
    recent_searches: List[str] = field(default_factory=list)
    purchased_categories: List[str] = field(default_factory=list)


@dataclass
class AutoShopSession:
    """Per-user autonomous shopping state, owned by the scheduler"""

    session_id: str
    user_id: str
    state: SessionState
    start_time: datetime
    end_time: datetime
    settings: Policy
    search_context: SearchContext = field(default_factory=SearchContext)
    spent_this_window: int = 0
    purchase_count_this_window: int = 0
    last_cycle_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.state == SessionState.ACTIVE


@dataclass(frozen=True)
class SpendingSnapshot:
    """Balance and history aggregates the validator needs"""

    balance: int
    purchases_this_hour: int = 0
    purchases_today: int = 0
    purchases_this_month: int = 0
    coins_spent_today: int = 0
    coins_spent_overall: int = 0


@dataclass(frozen=True)
class ValidationResult:
    """Approve/Reject decision from the purchase gate"""

    approved: bool
    reason: Optional[str] = None

    @classmethod
    def approve(cls) -> "ValidationResult":
        return cls(approved=True)

    @classmethod
    def reject(cls, reason: str) -> "ValidationResult":
        return cls(approved=False, reason=reason)


class CycleOutcome(str, Enum):
    """Result of a single scheduler tick"""

    INACTIVE = "inactive"
    EXPIRED = "expired"
    BUDGET_EXHAUSTED = "budget_exhausted"
    NO_MATCH = "no_match"
    PURCHASED = "purchased"
    REJECTED = "rejected"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass(frozen=True)
class OperationResult:
    """Structured success/failure returned to interactive callers"""

    success: bool
    reason: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SettlementResult:
    """Outcome reported by the payment provider"""

    success: bool
    reference: Optional[str] = None
    reason: Optional[str] = None

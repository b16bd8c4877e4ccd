"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from daswos_autoshop.domain.models import (
    Policy,
    PurchaseFrequency,
    PurchaseMode,
    Recommendation,
    SearchContext,
    Transaction,
)


class SearchContextSchema(BaseModel):
    """What AutoShop should look for"""

    sphere: str = "safesphere"
    text_query: Optional[str] = None
    category: Optional[str] = None
    recent_searches: List[str] = Field(default_factory=list)
    purchased_categories: List[str] = Field(default_factory=list)

    def to_domain(self) -> SearchContext:
        return SearchContext(
            sphere=self.sphere,
            text_query=self.text_query,
            category=self.category,
            recent_searches=list(self.recent_searches),
            purchased_categories=list(self.purchased_categories),
        )


# ── AutoShop ──────────────────────────────────────────────────────────────────


class StartAutoShopRequest(BaseModel):
    """Request body for POST /v1/autoshop/start"""

    user_id: str = Field(..., min_length=1, description="User identifier")
    duration_value: Optional[int] = Field(None, gt=0, description="Session length; defaults to the configured duration")
    duration_unit: Literal["minutes", "hours", "days"] = "minutes"
    search_context: Optional[SearchContextSchema] = None


class UserRequest(BaseModel):
    user_id: str = Field(..., min_length=1, description="User identifier")


class OperationResponse(BaseModel):
    """Structured success/failure for session operations"""

    success: bool
    reason: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


# ── Recommendations ───────────────────────────────────────────────────────────


class RecommendationSchema(BaseModel):
    id: str
    user_id: str
    product_id: str
    reason: str
    confidence: int
    status: str
    created_at: datetime
    updated_at: datetime
    rejected_reason: Optional[str] = None
    rejection_kind: Optional[str] = None
    purchased_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, recommendation: Recommendation) -> "RecommendationSchema":
        return cls(
            id=recommendation.id,
            user_id=recommendation.user_id,
            product_id=recommendation.product_id,
            reason=recommendation.reason,
            confidence=recommendation.confidence,
            status=recommendation.status.value,
            created_at=recommendation.created_at,
            updated_at=recommendation.updated_at,
            rejected_reason=recommendation.rejected_reason,
            rejection_kind=recommendation.rejection_kind.value if recommendation.rejection_kind else None,
            purchased_at=recommendation.purchased_at,
        )


class RecommendationListResponse(BaseModel):
    user_id: str
    recommendations: List[RecommendationSchema]


class GenerateRecommendationRequest(BaseModel):
    """Request body for POST /v1/recommendations/generate"""

    user_id: str = Field(..., min_length=1)
    search_context: Optional[SearchContextSchema] = None


class StatusUpdateRequest(BaseModel):
    """Request body for PUT /v1/recommendations/{id}/status"""

    status: Literal["added_to_cart", "purchased", "rejected"]
    reason: Optional[str] = None
    permanent: bool = Field(False, description="Never show a rejected recommendation again")


class StatusUpdateResponse(BaseModel):
    success: bool
    reason: Optional[str] = None
    recommendation: Optional[RecommendationSchema] = None
    transaction_id: Optional[str] = None


class ClearPendingResponse(BaseModel):
    user_id: str
    cleared: int


# ── Coins ─────────────────────────────────────────────────────────────────────


class TransactionSchema(BaseModel):
    id: str
    user_id: str
    amount: int
    kind: str
    description: str
    created_at: datetime
    related_recommendation_id: Optional[str] = None
    related_order_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_domain(cls, txn: Transaction) -> "TransactionSchema":
        return cls(
            id=txn.id,
            user_id=txn.user_id,
            amount=txn.amount,
            kind=txn.kind.value,
            description=txn.description,
            created_at=txn.created_at,
            related_recommendation_id=txn.related_recommendation_id,
            related_order_id=txn.related_order_id,
            metadata=dict(txn.metadata),
        )


class BalanceResponse(BaseModel):
    user_id: str
    balance: int


class TransactionListResponse(BaseModel):
    user_id: str
    transactions: List[TransactionSchema]


class CoinPurchaseRequest(BaseModel):
    """Request body for POST /v1/coins/purchase"""

    user_id: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0, description="Coins to buy (1 coin = 1 minor currency unit)")
    payment_method_ref: str = Field(..., min_length=1)


class BonusRequest(BaseModel):
    """Request body for POST /v1/coins/bonus"""

    user_id: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)
    reason: str = "Giveaway"


# ── Policy ────────────────────────────────────────────────────────────────────


class PurchaseFrequencySchema(BaseModel):
    hourly: int = Field(1, ge=0)
    daily: int = Field(5, ge=0)
    monthly: int = Field(50, ge=0)


class PolicySchema(BaseModel):
    """A user's AutoShop settings"""

    enabled: bool
    auto_purchase: bool
    confidence_threshold: float
    max_price_per_item: int
    budget_limit: int
    min_item_price: int
    max_coins_per_item: int
    max_coins_per_day: int
    max_coins_overall: int
    purchase_frequency: PurchaseFrequencySchema
    preferred_categories: List[str]
    avoid_tags: List[str]
    minimum_trust_score: int
    purchase_mode: str
    use_coins: bool
    payment_method_ref: Optional[str] = None

    @classmethod
    def from_domain(cls, policy: Policy) -> "PolicySchema":
        return cls(
            enabled=policy.enabled,
            auto_purchase=policy.auto_purchase,
            confidence_threshold=policy.confidence_threshold,
            max_price_per_item=policy.max_price_per_item,
            budget_limit=policy.budget_limit,
            min_item_price=policy.min_item_price,
            max_coins_per_item=policy.max_coins_per_item,
            max_coins_per_day=policy.max_coins_per_day,
            max_coins_overall=policy.max_coins_overall,
            purchase_frequency=PurchaseFrequencySchema(
                hourly=policy.purchase_frequency.hourly,
                daily=policy.purchase_frequency.daily,
                monthly=policy.purchase_frequency.monthly,
            ),
            preferred_categories=sorted(policy.preferred_categories),
            avoid_tags=sorted(policy.avoid_tags),
            minimum_trust_score=policy.minimum_trust_score,
            purchase_mode=policy.purchase_mode.value,
            use_coins=policy.use_coins,
            payment_method_ref=policy.payment_method_ref,
        )


class PolicyUpdateRequest(BaseModel):
    """Partial update; omitted fields keep their current value"""

    enabled: Optional[bool] = None
    auto_purchase: Optional[bool] = None
    confidence_threshold: Optional[float] = Field(None, ge=0, le=1)
    max_price_per_item: Optional[int] = Field(None, gt=0)
    budget_limit: Optional[int] = Field(None, gt=0)
    min_item_price: Optional[int] = Field(None, ge=0)
    max_coins_per_item: Optional[int] = Field(None, gt=0)
    max_coins_per_day: Optional[int] = Field(None, gt=0)
    max_coins_overall: Optional[int] = Field(None, gt=0)
    purchase_frequency: Optional[PurchaseFrequencySchema] = None
    preferred_categories: Optional[List[str]] = None
    avoid_tags: Optional[List[str]] = None
    minimum_trust_score: Optional[int] = Field(None, ge=0, le=100)
    purchase_mode: Optional[Literal["refined", "random"]] = None
    use_coins: Optional[bool] = None
    payment_method_ref: Optional[str] = None

    def to_changes(self) -> Dict[str, Any]:
        """Translate the submitted fields into Policy attribute changes"""
        changes = self.model_dump(exclude_unset=True)
        if changes.get("purchase_frequency") is not None:
            changes["purchase_frequency"] = PurchaseFrequency(**changes["purchase_frequency"])
        for key in ("preferred_categories", "avoid_tags"):
            if changes.get(key) is not None:
                changes[key] = frozenset(changes[key])
        if changes.get("purchase_mode") is not None:
            changes["purchase_mode"] = PurchaseMode(changes["purchase_mode"])
        return {k: v for k, v in changes.items() if v is not None or k == "payment_method_ref"}

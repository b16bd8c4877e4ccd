"""Recommendation engine - filters the catalog and scores candidates for a user"""

import logging
import random
import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import AbstractSet, Callable, FrozenSet, List, Optional, Set

from daswos_autoshop.domain.exceptions import NoMatchError
from daswos_autoshop.domain.models import (
    Policy,
    Product,
    PurchaseMode,
    Recommendation,
    RecommendationStatus,
    RejectionKind,
    SearchContext,
)
from daswos_autoshop.domain.ports import CatalogGateway, RecommendationStore
from daswos_autoshop.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

RANDOM_REASON = "Selected by AutoShop"

_TOKEN_RE = re.compile(r"[a-z0-9]+")


@dataclass(frozen=True)
class Proposal:
    """A pending recommendation together with the product it points at"""

    recommendation: Recommendation
    product: Product


def _tokens(text: str) -> Set[str]:
    return set(_TOKEN_RE.findall(text.lower()))


def _product_terms(product: Product) -> Set[str]:
    terms = _tokens(product.title) | _tokens(product.description)
    for tag in product.tags:
        terms |= _tokens(tag)
    if product.category:
        terms |= _tokens(product.category)
    return terms


def matches_categories(product: Product, categories: frozenset) -> bool:
    if not categories:
        return False
    return bool(product.tags & categories) or product.category in categories


def filter_candidates(products: List[Product], policy: Policy, excluded: AbstractSet[str] = frozenset()) -> List[Product]:
    """
    Apply the hard safety filters, then the soft category preference.

    Hard: trust score at least the policy minimum, no avoided tags, price
    inside [min_item_price, max_price_per_item], and not among the
    ``excluded`` product ids (those the user removed for good).
    Soft: when preferred categories are set, keep only matching products
    unless nothing matches, in which case the unfiltered set is kept.
    """
    candidates = [
        p
        for p in products
        if p.id not in excluded
        and p.trust_score >= policy.minimum_trust_score
        and not (p.tags & policy.avoid_tags)
        and policy.min_item_price <= p.price <= policy.max_price_per_item
    ]

    if policy.preferred_categories:
        preferred = [p for p in candidates if matches_categories(p, policy.preferred_categories)]
        if preferred:
            return preferred
        logger.debug("No candidate matches preferred categories, keeping unfiltered set")

    return candidates


def removed_product_ids(recommendations: RecommendationStore, user_id: str) -> FrozenSet[str]:
    """Products the user rejected permanently; they are never proposed again"""
    rejected = recommendations.list_by_user(user_id, [RecommendationStatus.REJECTED], include_permanent=True)
    return frozenset(r.product_id for r in rejected if r.rejection_kind == RejectionKind.PERMANENT)


def has_scoring_signal(policy: Policy, context: SearchContext) -> bool:
    return bool(
        policy.preferred_categories
        or context.text_query
        or context.recent_searches
        or context.purchased_categories
    )


def score_product(product: Product, policy: Policy, context: SearchContext) -> float:
    """
    Confidence from 0.0 to 1.0 for a single candidate.

    Preference signals (only those present are averaged, by weight):
    - 35%: preferred category match
    - 35%: share of query terms found in the product text
    - 15%: overlap with recent searches
    - 15%: category previously purchased
    The preference average makes up 80% of the score; the remaining 20%
    comes from the trust score.
    """
    weighted: List[tuple[float, float]] = []

    if policy.preferred_categories:
        weighted.append((0.35, 1.0 if matches_categories(product, policy.preferred_categories) else 0.0))

    terms = _product_terms(product)
    if context.text_query:
        query_terms = _tokens(context.text_query)
        if query_terms:
            weighted.append((0.35, len(query_terms & terms) / len(query_terms)))

    if context.recent_searches:
        search_terms: Set[str] = set()
        for search in context.recent_searches:
            search_terms |= _tokens(search)
        if search_terms:
            weighted.append((0.15, min(len(search_terms & terms) / 3, 1.0)))

    if context.purchased_categories:
        weighted.append((0.15, 1.0 if product.category in context.purchased_categories else 0.0))

    if not weighted:
        preference = 0.0
    else:
        preference = sum(w * s for w, s in weighted) / sum(w for w, _ in weighted)

    trust = min(max(product.trust_score, 0), 100) / 100
    return round(0.8 * preference + 0.2 * trust, 3)


def describe_match(product: Product, policy: Policy, context: SearchContext) -> str:
    if matches_categories(product, policy.preferred_categories):
        matched = sorted((product.tags & policy.preferred_categories) or {product.category})
        return f"Matches your preferred categories: {', '.join(matched)}"
    if context.text_query:
        return f"Matches your search for '{context.text_query}'"
    if context.purchased_categories and product.category in context.purchased_categories:
        return f"Similar to your previous purchases in {product.category}"
    return "This product matches your preferences."


class RecommendationEngine:
    """Scores catalog candidates and emits pending recommendations"""

    def __init__(
        self,
        catalog: CatalogGateway,
        default_confidence: int = 50,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.catalog = catalog
        self.default_confidence = default_confidence
        self.rng = rng or random.Random()
        self.clock = clock

    async def candidates(
        self,
        policy: Policy,
        context: SearchContext,
        excluded: AbstractSet[str] = frozenset(),
    ) -> List[Product]:
        products = await self.catalog.query_products(context.sphere, context.text_query, context.category)
        return filter_candidates(products, policy, excluded)

    async def propose(
        self,
        user_id: str,
        policy: Policy,
        context: SearchContext,
        excluded: AbstractSet[str] = frozenset(),
    ) -> Proposal:
        """
        Pick one candidate and wrap it in a pending recommendation.

        Raises:
            NoMatchError: nothing survived filtering
            CatalogUnavailableError: catalog query failed
        """
        candidates = await self.candidates(policy, context, excluded)
        if not candidates:
            raise NoMatchError(f"No products match the current settings for user {user_id}")

        if policy.purchase_mode == PurchaseMode.RANDOM or not has_scoring_signal(policy, context):
            product = self.rng.choice(candidates)
            confidence = self.default_confidence
            reason = RANDOM_REASON
        else:
            # Shuffle first so ties are broken randomly
            shuffled = list(candidates)
            self.rng.shuffle(shuffled)
            product = max(shuffled, key=lambda p: score_product(p, policy, context))
            confidence = round(score_product(product, policy, context) * 100)
            reason = describe_match(product, policy, context)

        now = self.clock()
        recommendation = Recommendation(
            id=str(uuid.uuid4()),
            user_id=user_id,
            product_id=product.id,
            reason=reason,
            confidence=max(0, min(confidence, 100)),
            status=RecommendationStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        logger.info(
            "Recommendation generated",
            extra={
                "user_id": user_id,
                "recommendation_id": recommendation.id,
                "product_id": product.id,
                "confidence": recommendation.confidence,
                "candidate_count": len(candidates),
            },
        )
        return Proposal(recommendation=recommendation, product=product)

    async def generate(
        self,
        user_id: str,
        policy: Policy,
        context: SearchContext,
        excluded: AbstractSet[str] = frozenset(),
    ) -> Recommendation:
        proposal = await self.propose(user_id, policy, context, excluded)
        return proposal.recommendation

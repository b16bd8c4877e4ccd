"""/v1/recommendations - pending items, purchase history and status changes"""

from fastapi import APIRouter, Depends, Query

from daswos_autoshop.api.dependencies import get_service
from daswos_autoshop.api.v1.schemas import (
    ClearPendingResponse,
    GenerateRecommendationRequest,
    RecommendationListResponse,
    RecommendationSchema,
    StatusUpdateRequest,
    StatusUpdateResponse,
)
from daswos_autoshop.services.autoshop import AutoShopService

router = APIRouter()


@router.get("/recommendations", response_model=RecommendationListResponse)
def list_pending_recommendations(
    user_id: str = Query(..., min_length=1, description="User identifier"),
    service: AutoShopService = Depends(get_service),
):
    """Pending recommendations, newest first"""
    items = service.list_pending_recommendations(user_id)
    return RecommendationListResponse(
        user_id=user_id,
        recommendations=[RecommendationSchema.from_domain(r) for r in items],
    )


@router.get("/recommendations/history", response_model=RecommendationListResponse)
def list_purchase_history(
    user_id: str = Query(..., min_length=1, description="User identifier"),
    service: AutoShopService = Depends(get_service),
):
    """Recommendations the user bought or added to cart"""
    items = service.list_purchase_history(user_id)
    return RecommendationListResponse(
        user_id=user_id,
        recommendations=[RecommendationSchema.from_domain(r) for r in items],
    )


@router.post("/recommendations/generate", response_model=RecommendationSchema, status_code=201)
async def generate_recommendation(
    request_body: GenerateRecommendationRequest,
    service: AutoShopService = Depends(get_service),
):
    search_context = request_body.search_context.to_domain() if request_body.search_context else None
    recommendation = await service.generate_recommendation(request_body.user_id, search_context)
    return RecommendationSchema.from_domain(recommendation)


@router.put("/recommendations/{recommendation_id}/status", response_model=StatusUpdateResponse)
async def update_recommendation_status(
    recommendation_id: str,
    request_body: StatusUpdateRequest,
    service: AutoShopService = Depends(get_service),
):
    """
    Apply a decision to a recommendation.

    Returns:
        The updated recommendation; for purchases also the ledger transaction id.
        A purchase the ledger refuses comes back with success=false.
    """
    result = await service.update_recommendation_status(
        recommendation_id,
        request_body.status,
        reason=request_body.reason,
        permanent=request_body.permanent,
    )
    recommendation = result.data.get("recommendation")
    transaction = result.data.get("transaction")
    return StatusUpdateResponse(
        success=result.success,
        reason=result.reason,
        recommendation=RecommendationSchema.from_domain(recommendation) if recommendation else None,
        transaction_id=transaction.id if transaction else None,
    )


@router.delete("/recommendations", response_model=ClearPendingResponse)
def clear_pending_recommendations(
    user_id: str = Query(..., min_length=1, description="User identifier"),
    service: AutoShopService = Depends(get_service),
):
    """Permanently remove every pending recommendation"""
    cleared = service.clear_pending_recommendations(user_id)
    return ClearPendingResponse(user_id=user_id, cleared=cleared)

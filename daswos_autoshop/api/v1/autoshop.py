"""POST /v1/autoshop/start|stop, GET /v1/autoshop/status - AutoShop session control"""

import logging

from fastapi import APIRouter, Depends, Query, Request

from daswos_autoshop.api.dependencies import get_request_id, get_service
from daswos_autoshop.api.v1.schemas import OperationResponse, StartAutoShopRequest, UserRequest
from daswos_autoshop.services.autoshop import AutoShopService

router = APIRouter()


@router.post("/autoshop/start", response_model=OperationResponse)
async def start_autoshop(
    request_body: StartAutoShopRequest,
    request: Request,
    service: AutoShopService = Depends(get_service),
):
    """
    Start an autonomous shopping session.

    Flow:
    1. Load the user's policy (must be enabled)
    2. Check the coin balance when paying with coins
    3. Persist an active session and run the first cycle immediately
    4. Keep cycling on a fixed interval until the session ends
    """
    search_context = request_body.search_context.to_domain() if request_body.search_context else None
    result = await service.start_autoshop(
        request_body.user_id,
        duration_value=request_body.duration_value,
        duration_unit=request_body.duration_unit,
        search_context=search_context,
    )
    if not result.success:
        logging.info(
            f"AutoShop start refused: {result.reason}",
            extra={"request_id": get_request_id(request), "user_id": request_body.user_id},
        )
    return OperationResponse(success=result.success, reason=result.reason, data=result.data)


@router.post("/autoshop/stop", response_model=OperationResponse)
async def stop_autoshop(request_body: UserRequest, service: AutoShopService = Depends(get_service)):
    """Stop the user's session. Calling it twice is harmless."""
    result = await service.stop_autoshop(request_body.user_id)
    return OperationResponse(success=result.success, reason=result.reason, data=result.data)


@router.get("/autoshop/status", response_model=OperationResponse)
def get_autoshop_status(
    user_id: str = Query(..., min_length=1, description="User identifier"),
    service: AutoShopService = Depends(get_service),
):
    result = service.get_autoshop_status(user_id)
    return OperationResponse(success=result.success, reason=result.reason, data=result.data)

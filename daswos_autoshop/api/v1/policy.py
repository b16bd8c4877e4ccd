"""GET/PUT /v1/policy/{user_id} - AutoShop settings"""

from fastapi import APIRouter, Depends

from daswos_autoshop.api.dependencies import get_service
from daswos_autoshop.api.v1.schemas import PolicySchema, PolicyUpdateRequest
from daswos_autoshop.services.autoshop import AutoShopService

router = APIRouter()


@router.get("/policy/{user_id}", response_model=PolicySchema)
def get_policy(user_id: str, service: AutoShopService = Depends(get_service)):
    """Current settings; users who never saved any get the defaults"""
    return PolicySchema.from_domain(service.get_policy(user_id))


@router.put("/policy/{user_id}", response_model=PolicySchema)
def update_policy(user_id: str, request_body: PolicyUpdateRequest, service: AutoShopService = Depends(get_service)):
    """
    Update settings. Only the submitted fields change.

    A running session keeps the settings it started with.
    """
    policy = service.update_policy(user_id, **request_body.to_changes())
    return PolicySchema.from_domain(policy)

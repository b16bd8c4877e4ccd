"""/v1/coins - DasWos Coins balance, history, top-up and bonus"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from daswos_autoshop.api.dependencies import get_service
from daswos_autoshop.api.v1.schemas import (
    BalanceResponse,
    BonusRequest,
    CoinPurchaseRequest,
    TransactionListResponse,
    TransactionSchema,
)
from daswos_autoshop.services.autoshop import AutoShopService
from daswos_autoshop.utils.date_utils import ensure_aware

router = APIRouter()


@router.get("/coins/balance", response_model=BalanceResponse)
def get_balance(
    user_id: str = Query(..., min_length=1, description="User identifier"),
    service: AutoShopService = Depends(get_service),
):
    return BalanceResponse(user_id=user_id, balance=service.get_balance(user_id))


@router.get("/coins/transactions", response_model=TransactionListResponse)
def list_transactions(
    user_id: str = Query(..., min_length=1, description="User identifier"),
    limit: Optional[int] = Query(None, gt=0, le=500),
    since: Optional[datetime] = Query(None, description="Only transactions at or after this time"),
    service: AutoShopService = Depends(get_service),
):
    """Ledger history, newest first"""
    transactions = service.list_transactions(user_id, limit=limit, since=ensure_aware(since) if since else None)
    return TransactionListResponse(
        user_id=user_id,
        transactions=[TransactionSchema.from_domain(t) for t in transactions],
    )


@router.post("/coins/purchase", response_model=TransactionSchema, status_code=201)
async def purchase_coins(request_body: CoinPurchaseRequest, service: AutoShopService = Depends(get_service)):
    """Buy coins with a card; the ledger is credited only after the provider settles"""
    txn = await service.purchase_coins(request_body.user_id, request_body.amount, request_body.payment_method_ref)
    return TransactionSchema.from_domain(txn)


@router.post("/coins/bonus", response_model=TransactionSchema, status_code=201)
def grant_bonus(request_body: BonusRequest, service: AutoShopService = Depends(get_service)):
    txn = service.grant_bonus(request_body.user_id, request_body.amount, request_body.reason)
    return TransactionSchema.from_domain(txn)

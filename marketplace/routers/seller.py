from decimal import Decimal

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from marketplace.core.money import to_minor
from marketplace.core.pagination import page
from marketplace.core.roles import Action
from marketplace.deps import page_params, require
from marketplace.models.user import User
from marketplace.services import disputes as dispute_service
from marketplace.services import purchases as purchase_service
from marketplace.services import recharges as recharge_service

router = APIRouter()


class RechargeRequest(BaseModel):
    amount: Decimal = Field(gt=0, decimal_places=2)
    payment_method: str
    voucher_url: str | None = None
    external_transaction_id: str | None = None


class PurchaseRequest(BaseModel):
    product_id: str


class OpenDisputeRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=2000)


@router.post("/wallet/recharge", status_code=status.HTTP_201_CREATED)
async def seller_recharge(body: RechargeRequest, user: User = Depends(require(Action.RECHARGE_WALLET))):
    """Report a payment to be credited once a validator confirms it."""
    r = await recharge_service.create_recharge(
        user,
        to_minor(body.amount),
        body.payment_method,
        voucher_url=body.voucher_url,
        external_transaction_id=body.external_transaction_id,
    )
    return recharge_service.recharge_to_dict(r)


@router.get("/wallet/recharges")
async def seller_recharges(
    paging: tuple[int, int] = Depends(page_params),
    user: User = Depends(require(Action.RECHARGE_WALLET)),
):
    """My recharge history."""
    limit, offset = paging
    items, total = await recharge_service.list_for_user(user.id, limit=limit, offset=offset)
    return page([recharge_service.recharge_to_dict(r) for r in items], total, limit, offset)


@router.post("/purchases", status_code=status.HTTP_201_CREATED)
async def seller_purchase(body: PurchaseRequest, user: User = Depends(require(Action.PURCHASE))):
    """Buy one unit of a product."""
    purchase = await purchase_service.purchase_product(user, body.product_id)
    return purchase_service.purchase_to_dict(purchase)


@router.get("/purchases")
async def seller_purchases(
    paging: tuple[int, int] = Depends(page_params),
    user: User = Depends(require(Action.PURCHASE)),
):
    limit, offset = paging
    items, total = await purchase_service.list_for_seller(user.id, limit=limit, offset=offset)
    return page([purchase_service.purchase_to_dict(p) for p in items], total, limit, offset)


@router.get("/purchases/{purchase_id}")
async def seller_purchase_detail(purchase_id: str, user: User = Depends(require(Action.PURCHASE))):
    """Purchase with decrypted credentials; buyer only."""
    purchase = await purchase_service.get_purchase_for_buyer(purchase_id, user)
    out = purchase_service.purchase_to_dict(purchase)
    out["credentials"] = await purchase_service.credentials_for(purchase)
    return out


@router.post("/purchases/{purchase_id}/dispute", status_code=status.HTTP_201_CREATED)
async def seller_open_dispute(
    purchase_id: str,
    body: OpenDisputeRequest,
    user: User = Depends(require(Action.OPEN_DISPUTE)),
):
    d = await dispute_service.open_dispute(purchase_id, user, body.reason, body.description)
    return dispute_service.dispute_to_dict(d)


@router.get("/disputes")
async def seller_disputes(
    status: str | None = None,
    paging: tuple[int, int] = Depends(page_params),
    user: User = Depends(require(Action.OPEN_DISPUTE)),
):
    limit, offset = paging
    items, total = await dispute_service.list_disputes(seller_id=user.id, status=status, limit=limit, offset=offset)
    return page([dispute_service.dispute_to_dict(d) for d in items], total, limit, offset)

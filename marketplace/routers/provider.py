from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from marketplace.core.money import to_minor
from marketplace.core.pagination import page
from marketplace.core.roles import Action
from marketplace.deps import page_params, require
from marketplace.models.user import User
from marketplace.services import disputes as dispute_service
from marketplace.services import products as product_service
from marketplace.services import withdrawals as withdrawal_service

router = APIRouter()


class WithdrawRequest(BaseModel):
    amount: Decimal = Field(gt=0, decimal_places=2)
    payment_method: str = Field(min_length=1, max_length=50)
    payment_details: dict[str, Any] = Field(default_factory=dict)
    notes: str | None = Field(default=None, max_length=500)


class ProfileSlotIn(BaseModel):
    profile_name: str
    pin: str = ""


class AccountIn(BaseModel):
    email: str
    password: str
    platform_type: str | None = None
    profiles: list[ProfileSlotIn] = Field(default_factory=list)


class CreateProductRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    category: str
    image_url: str | None = None
    price: Decimal = Field(gt=0, decimal_places=2)
    duration_days: int = Field(default=30, gt=0)
    is_renewable: bool = False
    accounts: list[AccountIn] = Field(default_factory=list)
    license_keys: str | None = None
    activation_type: str = "single"


class UpdateProductRequest(BaseModel):
    name: str | None = Field(default=None, max_length=200)
    description: str | None = None
    image_url: str | None = None
    is_active: bool | None = None
    price: Decimal | None = Field(default=None, gt=0, decimal_places=2)
    duration_days: int | None = Field(default=None, gt=0)


@router.post("/earnings/withdraw", status_code=status.HTTP_201_CREATED)
async def provider_withdraw(body: WithdrawRequest, user: User = Depends(require(Action.REQUEST_WITHDRAWAL))):
    """Request a payout; funds leave the wallet when a validator completes it."""
    w = await withdrawal_service.request_withdrawal(
        user,
        to_minor(body.amount),
        body.payment_method,
        payment_details=body.payment_details,
        notes=body.notes,
    )
    return withdrawal_service.withdrawal_to_dict(w)


@router.get("/earnings/withdrawals")
async def provider_withdrawals(
    paging: tuple[int, int] = Depends(page_params),
    user: User = Depends(require(Action.REQUEST_WITHDRAWAL)),
):
    limit, offset = paging
    items, total = await withdrawal_service.list_for_user(user.id, limit=limit, offset=offset)
    return page([withdrawal_service.withdrawal_to_dict(w) for w in items], total, limit, offset)


@router.post("/products", status_code=status.HTTP_201_CREATED)
async def provider_create_product(body: CreateProductRequest, user: User = Depends(require(Action.MANAGE_PRODUCTS))):
    """Create a product with its default variant and inventory."""
    product, units = await product_service.create_product(
        user,
        body.name,
        body.category,
        to_minor(body.price),
        description=body.description,
        image_url=body.image_url,
        duration_days=body.duration_days,
        is_renewable=body.is_renewable,
        accounts=[a.model_dump() for a in body.accounts],
        license_keys=body.license_keys,
        activation_type=body.activation_type,
    )
    out = product_service.product_to_dict(product, await product_service.stock_for(product))
    out["units_created"] = units
    return out


@router.get("/products")
async def provider_products(
    category: str | None = None,
    search: str | None = None,
    paging: tuple[int, int] = Depends(page_params),
    user: User = Depends(require(Action.MANAGE_PRODUCTS)),
):
    limit, offset = paging
    items, total = await product_service.list_products(
        provider_id=user.id, category=category, search=search, limit=limit, offset=offset
    )
    out = [product_service.product_to_dict(p, await product_service.stock_for(p)) for p in items]
    return page(out, total, limit, offset)


@router.get("/products/{product_id}")
async def provider_product(product_id: str, user: User = Depends(require(Action.MANAGE_PRODUCTS))):
    product = await product_service.get_owned_product(product_id, user)
    return product_service.product_to_dict(product, await product_service.stock_for(product))


@router.put("/products/{product_id}")
async def provider_update_product(
    product_id: str,
    body: UpdateProductRequest,
    user: User = Depends(require(Action.MANAGE_PRODUCTS)),
):
    fields = body.model_dump(exclude_unset=True)
    if "price" in fields:
        price = fields.pop("price")
        if price is not None:
            fields["price_minor"] = to_minor(price)
    product = await product_service.update_product(product_id, user, fields)
    return product_service.product_to_dict(product)


@router.delete("/products/{product_id}")
async def provider_delete_product(product_id: str, user: User = Depends(require(Action.MANAGE_PRODUCTS))):
    """Delete a product and its inventory; refused once anything was sold."""
    await product_service.delete_product(product_id, user)
    return {"status": "deleted", "id": product_id}


@router.delete("/inventory/{account_id}")
async def provider_delete_inventory(account_id: str, user: User = Depends(require(Action.MANAGE_PRODUCTS))):
    """Remove an account whose profiles were never sold."""
    await product_service.delete_inventory_account(account_id, user)
    return {"status": "deleted", "id": account_id}


@router.get("/disputes")
async def provider_disputes(
    status: str | None = None,
    paging: tuple[int, int] = Depends(page_params),
    user: User = Depends(require(Action.VIEW_OWN_DISPUTES)),
):
    limit, offset = paging
    items, total = await dispute_service.list_disputes(provider_id=user.id, status=status, limit=limit, offset=offset)
    return page([dispute_service.dispute_to_dict(d) for d in items], total, limit, offset)

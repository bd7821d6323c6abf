from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from marketplace.core.money import to_minor
from marketplace.core.pagination import page
from marketplace.deps import get_current_user, page_params
from marketplace.models.user import User
from marketplace.services import wallets as wallet_service

router = APIRouter()


class TransferRequest(BaseModel):
    recipient_email: str
    amount: Decimal = Field(gt=0, decimal_places=2)
    note: str = Field(default="", max_length=200)


@router.get("/balance")
async def wallet_balance(user: User = Depends(get_current_user)):
    """Current wallet balance."""
    wallet = await wallet_service.get_or_create_wallet(user.id)
    return wallet_service.wallet_to_dict(wallet)


@router.get("/transactions")
async def wallet_transactions(
    type: str | None = None,
    paging: tuple[int, int] = Depends(page_params),
    user: User = Depends(get_current_user),
):
    """Ledger rows for my wallet, newest first."""
    limit, offset = paging
    wallet = await wallet_service.get_or_create_wallet(user.id)
    items, total = await wallet_service.list_transactions(wallet.id, limit=limit, offset=offset, type=type)
    return page([wallet_service.transaction_to_dict(t) for t in items], total, limit, offset)


@router.post("/transfer")
async def wallet_transfer(body: TransferRequest, user: User = Depends(get_current_user)):
    """Send funds to another user by email."""
    entry = await wallet_service.transfer_to_user(user, body.recipient_email, to_minor(body.amount), body.note)
    return wallet_service.transaction_to_dict(entry)

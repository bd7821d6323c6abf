from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from marketplace.core.money import format_minor, to_minor
from marketplace.core.pagination import page
from marketplace.core.roles import Action
from marketplace.deps import page_params, require
from marketplace.models.user import User
from marketplace.models.validator import ValidatorFundEntry
from marketplace.services import recharges as recharge_service
from marketplace.services import validator_funds as fund_service
from marketplace.services import withdrawals as withdrawal_service

router = APIRouter()


class ApproveRechargeRequest(BaseModel):
    external_transaction_id: str | None = None


class RejectRequest(BaseModel):
    reason: str = ""


class RejectRechargeRequest(BaseModel):
    reason: str = ""
    status: str = "cancelled"


class CompleteWithdrawalRequest(BaseModel):
    confirm: bool = False


class FundTransferRequest(BaseModel):
    commission: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    payment_method: str = Field(min_length=1, max_length=50)
    holder_name: str | None = None
    payment_time: datetime | None = None
    voucher_url: str | None = None
    payment_details: dict[str, Any] = Field(default_factory=dict)


# --- recharges ---


@router.get("/recharges")
async def validator_recharges(
    status: str = "pending",
    sort_by: str = "created_at",
    sort_order: str = "desc",
    paging: tuple[int, int] = Depends(page_params),
    user: User = Depends(require(Action.VALIDATE_RECHARGES)),
):
    """Recharges awaiting validation (status=all for every recharge)."""
    limit, offset = paging
    items, total = await recharge_service.list_recharges(status, sort_by, sort_order, limit=limit, offset=offset)
    return page([recharge_service.recharge_to_dict(r) for r in items], total, limit, offset)


@router.put("/recharges/{recharge_id}/approve")
async def validator_approve_recharge(
    recharge_id: str,
    body: ApproveRechargeRequest | None = None,
    user: User = Depends(require(Action.VALIDATE_RECHARGES)),
):
    """Credit the wallet and record the collected funds."""
    r, balance_after = await recharge_service.approve_recharge(
        recharge_id, user, external_transaction_id=body.external_transaction_id if body else None
    )
    out = recharge_service.recharge_to_dict(r)
    out["new_wallet_balance"] = format_minor(balance_after)
    return out


@router.put("/recharges/{recharge_id}/reject")
async def validator_reject_recharge(
    recharge_id: str,
    body: RejectRechargeRequest,
    user: User = Depends(require(Action.VALIDATE_RECHARGES)),
):
    r = await recharge_service.reject_recharge(recharge_id, user, body.reason, status=body.status)
    return recharge_service.recharge_to_dict(r)


# --- withdrawals ---


@router.get("/withdrawals")
async def validator_withdrawals(
    status: str | None = None,
    paging: tuple[int, int] = Depends(page_params),
    user: User = Depends(require(Action.PROCESS_WITHDRAWALS)),
):
    limit, offset = paging
    items, total = await withdrawal_service.list_withdrawals(status, limit=limit, offset=offset)
    return page([withdrawal_service.withdrawal_to_dict(w) for w in items], total, limit, offset)


@router.post("/withdrawals/{withdrawal_id}/approve")
async def validator_approve_withdrawal(withdrawal_id: str, user: User = Depends(require(Action.PROCESS_WITHDRAWALS))):
    w = await withdrawal_service.approve_withdrawal(withdrawal_id, user)
    return withdrawal_service.withdrawal_to_dict(w)


@router.post("/withdrawals/{withdrawal_id}/reject")
async def validator_reject_withdrawal(
    withdrawal_id: str,
    body: RejectRequest,
    user: User = Depends(require(Action.PROCESS_WITHDRAWALS)),
):
    w = await withdrawal_service.reject_withdrawal(withdrawal_id, user, body.reason)
    return withdrawal_service.withdrawal_to_dict(w)


@router.post("/withdrawals/{withdrawal_id}/complete")
async def validator_complete_withdrawal(
    withdrawal_id: str,
    body: CompleteWithdrawalRequest,
    user: User = Depends(require(Action.PROCESS_WITHDRAWALS)),
):
    """Pay out an approved withdrawal; requires confirm=true."""
    w = await withdrawal_service.complete_withdrawal(withdrawal_id, user, body.confirm)
    return withdrawal_service.withdrawal_to_dict(w)


# --- funds owed to the admin ---


@router.get("/fund")
async def validator_fund(user: User = Depends(require(Action.TRANSFER_FUNDS))):
    """Pending collected funds not yet handed over."""
    return await fund_service.get_fund_summary(user)


@router.post("/fund/transfer", status_code=status.HTTP_201_CREATED)
async def validator_fund_transfer(body: FundTransferRequest, user: User = Depends(require(Action.TRANSFER_FUNDS))):
    t = await fund_service.create_transfer(
        user,
        to_minor(body.commission),
        body.payment_method,
        holder_name=body.holder_name,
        payment_time=body.payment_time,
        voucher_url=body.voucher_url,
        payment_details=body.payment_details,
    )
    count = await ValidatorFundEntry.find(ValidatorFundEntry.transfer_id == t.id).count()
    return fund_service.transfer_to_dict(t, entries_count=count)


@router.get("/fund/transfers")
async def validator_fund_transfers(
    status: str | None = None,
    paging: tuple[int, int] = Depends(page_params),
    user: User = Depends(require(Action.TRANSFER_FUNDS)),
):
    limit, offset = paging
    items, total = await fund_service.list_transfers(validator_id=user.id, status=status, limit=limit, offset=offset)
    return page([fund_service.transfer_to_dict(t) for t in items], total, limit, offset)

from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from marketplace.core import audit
from marketplace.core.money import to_minor
from marketplace.core.pagination import page
from marketplace.core.roles import Action, Role
from marketplace.deps import page_params, require
from marketplace.models.platform_config import AdjustmentType
from marketplace.models.user import User
from marketplace.services import platform as platform_service
from marketplace.services import pricing as pricing_service
from marketplace.services import providers as provider_service
from marketplace.services import recharges as recharge_service
from marketplace.services import referrals as referral_service
from marketplace.services import users as user_service
from marketplace.services import validator_funds as fund_service
from marketplace.services import validators as validator_service
from marketplace.services import wallets as wallet_service
from marketplace.services import withdrawals as withdrawal_service
from marketplace.services.common import parse_id

router = APIRouter()


class ApproveAffiliateRequest(BaseModel):
    tier: str = "bronze"


class UpdateAffiliateRequest(BaseModel):
    status: str | None = None
    tier: str | None = None


class RejectRequest(BaseModel):
    reason: str = ""


class ApproveValidatorRequest(BaseModel):
    country: str = Field(min_length=2, max_length=2)


class PricingRequest(BaseModel):
    distributor_markup: Decimal = Field(ge=0, decimal_places=2)
    distributor_markup_type: AdjustmentType = "percentage"
    platform_fee: Decimal = Field(ge=0, decimal_places=2)
    platform_fee_type: AdjustmentType = "percentage"


class ReferralFeeRequest(BaseModel):
    approval_fee: Decimal = Field(ge=0, decimal_places=2)


class RoleRequest(BaseModel):
    role: Role


class WalletStatusRequest(BaseModel):
    status: str


# --- affiliates ---


@router.get("/affiliate/profiles")
async def admin_affiliate_profiles(
    status: str | None = None,
    tier: str | None = None,
    search: str | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    paging: tuple[int, int] = Depends(page_params),
    user: User = Depends(require(Action.MANAGE_AFFILIATES)),
):
    """Affiliate profiles with programme-wide totals."""
    limit, offset = paging
    return await referral_service.list_profiles(status, tier, search, sort_by, sort_order, limit=limit, offset=offset)


@router.put("/affiliate/profiles/{profile_id}")
async def admin_update_affiliate(
    profile_id: str,
    body: UpdateAffiliateRequest,
    user: User = Depends(require(Action.MANAGE_AFFILIATES)),
):
    """Set status (e.g. suspend or reactivate) and/or tier."""
    profile = await referral_service.update_profile(profile_id, user, status=body.status, tier=body.tier)
    return referral_service.profile_to_dict(profile)


@router.get("/affiliate/applications")
async def admin_affiliate_applications(
    status: str | None = None,
    search: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    paging: tuple[int, int] = Depends(page_params),
    user: User = Depends(require(Action.MANAGE_AFFILIATES)),
):
    limit, offset = paging
    return await referral_service.list_applications(status, search, date_from, date_to, limit=limit, offset=offset)


@router.put("/affiliate/applications/{profile_id}/approve")
async def admin_approve_affiliate(
    profile_id: str,
    body: ApproveAffiliateRequest | None = None,
    user: User = Depends(require(Action.MANAGE_AFFILIATES)),
):
    profile = await referral_service.approve_application(profile_id, user, tier=body.tier if body else "bronze")
    return referral_service.profile_to_dict(profile)


@router.put("/affiliate/applications/{profile_id}/reject")
async def admin_reject_affiliate(
    profile_id: str,
    body: RejectRequest,
    user: User = Depends(require(Action.MANAGE_AFFILIATES)),
):
    profile = await referral_service.reject_application(profile_id, user, body.reason)
    return referral_service.profile_to_dict(profile)


# --- validator transfers ---


@router.get("/validator-transfers")
async def admin_validator_transfers(
    status: str | None = None,
    paging: tuple[int, int] = Depends(page_params),
    user: User = Depends(require(Action.MANAGE_VALIDATOR_TRANSFERS)),
):
    limit, offset = paging
    items, total = await fund_service.list_transfers(status=status, limit=limit, offset=offset)
    return page([fund_service.transfer_to_dict(t) for t in items], total, limit, offset)


@router.put("/validator-transfers/{transfer_id}/approve")
async def admin_approve_transfer(transfer_id: str, user: User = Depends(require(Action.MANAGE_VALIDATOR_TRANSFERS))):
    t = await fund_service.approve_transfer(transfer_id, user)
    return fund_service.transfer_to_dict(t)


@router.put("/validator-transfers/{transfer_id}/reject")
async def admin_reject_transfer(
    transfer_id: str,
    body: RejectRequest,
    user: User = Depends(require(Action.MANAGE_VALIDATOR_TRANSFERS)),
):
    """Reject and release the batched entries back to pending."""
    t = await fund_service.reject_transfer(transfer_id, user, body.reason)
    return fund_service.transfer_to_dict(t)


# --- configuration ---


@router.get("/pricing")
async def admin_get_pricing(user: User = Depends(require(Action.MANAGE_PRICING))):
    return pricing_service.config_to_dict(await pricing_service.get_active_config())


@router.put("/pricing")
async def admin_put_pricing(body: PricingRequest, user: User = Depends(require(Action.MANAGE_PRICING))):
    """Save a new pricing version; the previous one is deactivated."""
    config = await pricing_service.update_config(
        user,
        body.distributor_markup,
        body.distributor_markup_type,
        body.platform_fee,
        body.platform_fee_type,
    )
    return pricing_service.config_to_dict(config)


@router.get("/settings/referral-fee")
async def admin_get_referral_fee(user: User = Depends(require(Action.MANAGE_PRICING))):
    return referral_service.fee_config_to_dict(await referral_service.get_active_fee_config())


@router.put("/settings/referral-fee")
async def admin_put_referral_fee(body: ReferralFeeRequest, user: User = Depends(require(Action.MANAGE_PRICING))):
    config = await referral_service.set_fee(to_minor(body.approval_fee), user)
    return referral_service.fee_config_to_dict(config)


# --- payment validators and providers ---


@router.get("/payment-validators")
async def admin_payment_validators(
    status: str | None = None,
    paging: tuple[int, int] = Depends(page_params),
    user: User = Depends(require(Action.MANAGE_VALIDATORS)),
):
    limit, offset = paging
    return await validator_service.list_validators(status, limit=limit, offset=offset)


@router.put("/payment-validators/{profile_id}/approve")
async def admin_approve_validator(
    profile_id: str,
    body: ApproveValidatorRequest,
    user: User = Depends(require(Action.MANAGE_VALIDATORS)),
):
    """Approve and assign a country no other approved validator holds."""
    profile = await validator_service.approve_validator(profile_id, user, body.country)
    return validator_service.validator_to_dict(profile)


@router.put("/payment-validators/{profile_id}/reject")
async def admin_reject_validator(
    profile_id: str,
    body: RejectRequest,
    user: User = Depends(require(Action.MANAGE_VALIDATORS)),
):
    profile = await validator_service.reject_validator(profile_id, user, body.reason)
    return validator_service.validator_to_dict(profile)


@router.put("/payment-validators/{profile_id}/suspend")
async def admin_suspend_validator(profile_id: str, user: User = Depends(require(Action.MANAGE_VALIDATORS))):
    """Suspend an approved validator, or reactivate a suspended one."""
    profile = await validator_service.suspend_validator(profile_id, user)
    return validator_service.validator_to_dict(profile)


@router.get("/providers")
async def admin_providers(
    status: str | None = None,
    paging: tuple[int, int] = Depends(page_params),
    user: User = Depends(require(Action.MANAGE_PROVIDERS)),
):
    limit, offset = paging
    items, total = await provider_service.list_providers(status, limit=limit, offset=offset)
    return page([provider_service.provider_to_dict(p) for p in items], total, limit, offset)


@router.put("/providers/{profile_id}/approve")
async def admin_approve_provider(profile_id: str, user: User = Depends(require(Action.MANAGE_PROVIDERS))):
    profile = await provider_service.approve_provider(profile_id, user)
    return provider_service.provider_to_dict(profile)


@router.put("/providers/{profile_id}/reject")
async def admin_reject_provider(
    profile_id: str,
    body: RejectRequest,
    user: User = Depends(require(Action.MANAGE_PROVIDERS)),
):
    profile = await provider_service.reject_provider(profile_id, user, body.reason)
    return provider_service.provider_to_dict(profile)


# --- oversight ---


@router.get("/users")
async def admin_users(
    role: str | None = None,
    search: str | None = None,
    paging: tuple[int, int] = Depends(page_params),
    user: User = Depends(require(Action.VIEW_PLATFORM)),
):
    limit, offset = paging
    items, total = await user_service.list_users(role, search, limit=limit, offset=offset)
    return page([user_service.user_to_dict(u) for u in items], total, limit, offset)


@router.put("/users/{user_id}/role")
async def admin_set_role(user_id: str, body: RoleRequest, user: User = Depends(require(Action.VIEW_PLATFORM))):
    target = await user_service.set_role(user_id, body.role, user)
    return user_service.user_to_dict(target)


@router.put("/wallets/{wallet_id}/status")
async def admin_wallet_status(
    wallet_id: str,
    body: WalletStatusRequest,
    user: User = Depends(require(Action.VIEW_PLATFORM)),
):
    """Freeze, reactivate or close a wallet."""
    wallet = await wallet_service.set_status(parse_id(wallet_id, "Wallet"), body.status, actor_id=str(user.id))
    return wallet_service.wallet_to_dict(wallet)


@router.get("/transactions")
async def admin_transactions(
    wallet_id: str | None = None,
    type: str | None = None,
    related_entity_type: str | None = None,
    paging: tuple[int, int] = Depends(page_params),
    user: User = Depends(require(Action.VIEW_PLATFORM)),
):
    limit, offset = paging
    items, total = await platform_service.list_transactions(
        parse_id(wallet_id, "Wallet") if wallet_id else None,
        type,
        related_entity_type,
        limit=limit,
        offset=offset,
    )
    return page([wallet_service.transaction_to_dict(t) for t in items], total, limit, offset)


@router.get("/withdrawals")
async def admin_withdrawals(
    status: str | None = None,
    paging: tuple[int, int] = Depends(page_params),
    user: User = Depends(require(Action.VIEW_PLATFORM)),
):
    limit, offset = paging
    items, total = await withdrawal_service.list_withdrawals(status, limit=limit, offset=offset)
    return page([withdrawal_service.withdrawal_to_dict(w) for w in items], total, limit, offset)


@router.get("/recharges")
async def admin_recharges(
    status: str = "all",
    paging: tuple[int, int] = Depends(page_params),
    user: User = Depends(require(Action.VIEW_PLATFORM)),
):
    limit, offset = paging
    items, total = await recharge_service.list_recharges(status, limit=limit, offset=offset)
    return page([recharge_service.recharge_to_dict(r) for r in items], total, limit, offset)


@router.get("/stats")
async def admin_stats(user: User = Depends(require(Action.VIEW_PLATFORM))):
    """Counts, wallet totals and pending queues."""
    return await platform_service.platform_stats()


@router.get("/audit-logs")
async def admin_audit_logs(
    entity_type: str | None = None,
    entity_id: str | None = None,
    user_id: str | None = None,
    event_type: str | None = None,
    paging: tuple[int, int] = Depends(page_params),
    user: User = Depends(require(Action.VIEW_PLATFORM)),
):
    """Audit trail, newest first."""
    limit, offset = paging
    items, total = await audit.list_events(entity_type, entity_id, user_id, event_type, limit=limit, offset=offset)
    return page([audit.event_to_dict(e) for e in items], total, limit, offset)

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from marketplace.core.pagination import page
from marketplace.core.roles import Action
from marketplace.deps import get_current_user, page_params, require
from marketplace.models.user import User
from marketplace.services import referrals as referral_service

router = APIRouter()


class AffiliateApplication(BaseModel):
    application_note: str = Field(max_length=500)


class RejectReferralRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def affiliate_register(body: AffiliateApplication, user: User = Depends(get_current_user)):
    """Apply to the affiliate programme."""
    profile = await referral_service.register_affiliate(user, body.application_note)
    return referral_service.profile_to_dict(profile)


@router.get("/me")
async def affiliate_me(user: User = Depends(get_current_user)):
    profile = await referral_service.get_profile_for_user(user.id)
    return referral_service.profile_to_dict(profile)


@router.get("/referrals")
async def affiliate_referrals(
    approval_status: str | None = None,
    paging: tuple[int, int] = Depends(page_params),
    user: User = Depends(require(Action.MANAGE_REFERRALS)),
):
    limit, offset = paging
    items, total = await referral_service.list_referrals(user.id, approval_status, limit=limit, offset=offset)
    return page([referral_service.referral_to_dict(r) for r in items], total, limit, offset)


@router.post("/referrals/{referral_id}/approve")
async def affiliate_approve_referral(referral_id: str, user: User = Depends(require(Action.MANAGE_REFERRALS))):
    """Approve a referral; charges the active approval fee to my wallet."""
    return await referral_service.approve_referral(referral_id, user)


@router.post("/referrals/{referral_id}/reject")
async def affiliate_reject_referral(
    referral_id: str,
    body: RejectReferralRequest | None = None,
    user: User = Depends(require(Action.MANAGE_REFERRALS)),
):
    referral = await referral_service.reject_referral(referral_id, user, body.reason if body else None)
    return referral_service.referral_to_dict(referral)

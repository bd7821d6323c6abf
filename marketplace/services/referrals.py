"""Affiliate programme: applications, referral codes, and the referral approval fee."""

import re
import secrets
import string
from datetime import datetime, time
from typing import Any

from beanie import PydanticObjectId
from beanie.odm.operators.update.general import Inc, Set
from beanie.odm.queries.update import UpdateResponse
from pymongo.errors import DuplicateKeyError

from marketplace.core.exceptions import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from marketplace.core.logging import get_logger
from marketplace.core.money import format_minor
from marketplace.core.roles import Role
from marketplace.db.init import transaction
from marketplace.models.affiliate import AffiliateProfile, Referral
from marketplace.models.platform_config import ReferralApprovalConfig
from marketplace.models.user import User
from marketplace.services import wallets as wallet_service
from marketplace.services.common import clean_reason, iso, oid, parse_id

log = get_logger(__name__)

PROFILE_STATUSES = ("pending", "approved", "rejected", "active", "suspended")
TIERS = ("bronze", "silver", "gold", "platinum")
PROFILE_SORT_FIELDS = {
    "total_earnings": "total_earnings_minor",
    "total_referrals": "total_referrals",
    "active_referrals": "active_referrals",
    "created_at": "created_at",
}
_CODE_ALPHABET = string.ascii_uppercase + string.digits


def _generate_code() -> str:
    return "AFF-" + "".join(secrets.choice(_CODE_ALPHABET) for _ in range(5))


# --- approval fee configuration ---


async def get_active_fee_config(session=None) -> ReferralApprovalConfig | None:
    return await ReferralApprovalConfig.find(
        ReferralApprovalConfig.is_active == True,  # noqa: E712
        session=session,
    ).sort(-ReferralApprovalConfig.version).first_or_none()


async def set_fee(approval_fee_minor: int, admin: User) -> ReferralApprovalConfig:
    """Deactivate the current record and insert the next version."""
    if approval_fee_minor < 0:
        raise BadRequestError("Approval fee cannot be negative")
    async with transaction() as session:
        current = await get_active_fee_config(session=session)
        await ReferralApprovalConfig.find(
            ReferralApprovalConfig.is_active == True,  # noqa: E712
            session=session,
        ).update(Set({ReferralApprovalConfig.is_active: False}), session=session)
        config = ReferralApprovalConfig(
            approval_fee_minor=approval_fee_minor,
            version=(current.version + 1) if current else 1,
            created_by=admin.id,
        )
        await config.insert(session=session)
        from marketplace.core.audit import log_event
        await log_event(
            str(admin.id),
            "referral_fee_updated",
            "referral_approval_config",
            str(config.id),
            {"approval_fee_minor": approval_fee_minor, "version": config.version},
            session=session,
        )
    log.info("referral_fee_updated", version=config.version, approval_fee_minor=approval_fee_minor)
    return config


def fee_config_to_dict(config: ReferralApprovalConfig | None) -> dict:
    if config is None:
        return {"approval_fee": None, "version": None, "is_active": False}
    return {
        "id": str(config.id),
        "approval_fee": format_minor(config.approval_fee_minor),
        "version": config.version,
        "is_active": config.is_active,
        "effective_from": iso(config.effective_from),
    }


# --- affiliate applications ---


async def register_affiliate(user: User, application_note: str) -> AffiliateProfile:
    note = clean_reason(application_note, "application note")
    existing = await AffiliateProfile.find_one(AffiliateProfile.user_id == user.id)
    if existing:
        raise ConflictError("You already have an affiliate profile", details={"status": existing.status})
    for _ in range(10):
        profile = AffiliateProfile(user_id=user.id, referral_code=_generate_code(), application_note=note)
        try:
            await profile.insert()
        except DuplicateKeyError:
            continue
        from marketplace.core.audit import log_event
        await log_event(str(user.id), "affiliate_applied", "affiliate_profile", str(profile.id), {})
        log.info("affiliate_applied", profile_id=str(profile.id), user_id=str(user.id))
        return profile
    raise BadRequestError("Could not generate unique referral code")


async def get_profile(profile_id: str | PydanticObjectId) -> AffiliateProfile:
    profile = await AffiliateProfile.get(parse_id(profile_id, "Affiliate profile"))
    if not profile:
        raise NotFoundError("Affiliate profile not found")
    return profile


async def get_profile_for_user(user_id: PydanticObjectId) -> AffiliateProfile:
    profile = await AffiliateProfile.find_one(AffiliateProfile.user_id == user_id)
    if not profile:
        raise NotFoundError("Affiliate profile not found")
    return profile


async def approve_application(profile_id: str, admin: User, tier: str = "bronze") -> AffiliateProfile:
    if tier not in TIERS:
        raise BadRequestError(f"Invalid tier: {tier}", details={"allowed": list(TIERS)})
    profile = await get_profile(profile_id)
    if profile.status in ("approved", "active"):
        raise ConflictError("Affiliate profile is already approved", details={"status": profile.status})
    now = datetime.utcnow()
    profile.status = "approved"
    profile.tier = tier
    profile.approved_by = admin.id
    profile.approved_at = now
    profile.rejection_reason = None
    profile.updated_at = now
    await profile.save()
    user = await User.get(profile.user_id)
    if user and user.role == Role.USER:
        user.role = Role.AFFILIATE
        user.updated_at = now
        await user.save()
    from marketplace.core.audit import log_event
    await log_event(str(admin.id), "affiliate_approved", "affiliate_profile", str(profile.id), {"tier": tier})
    log.info("affiliate_approved", profile_id=str(profile.id), tier=tier)
    return profile


async def reject_application(profile_id: str, admin: User, reason: str | None) -> AffiliateProfile:
    text = clean_reason(reason, "rejection reason")
    profile = await get_profile(profile_id)
    if profile.status != "pending":
        raise ConflictError(f"Cannot reject an application that is {profile.status}", details={"status": profile.status})
    profile.status = "rejected"
    profile.rejection_reason = text
    profile.updated_at = datetime.utcnow()
    await profile.save()
    from marketplace.core.audit import log_event
    await log_event(str(admin.id), "affiliate_rejected", "affiliate_profile", str(profile.id), {"reason": text})
    log.info("affiliate_rejected", profile_id=str(profile.id))
    return profile


async def update_profile(
    profile_id: str,
    admin: User,
    status: str | None = None,
    tier: str | None = None,
) -> AffiliateProfile:
    """
    Admin override of status and tier. A suspended affiliate keeps the role but its
    code stops resolving and its pending referrals cannot be approved.
    """
    if status is None and tier is None:
        raise BadRequestError("No valid fields to update")
    if status is not None and status not in PROFILE_STATUSES:
        raise BadRequestError(f"Invalid status: {status}", details={"allowed": list(PROFILE_STATUSES)})
    if tier is not None and tier not in TIERS:
        raise BadRequestError(f"Invalid tier: {tier}", details={"allowed": list(TIERS)})
    profile = await get_profile(profile_id)
    now = datetime.utcnow()
    changes: dict[str, Any] = {}
    if status is not None and status != profile.status:
        changes["status"] = {"from": profile.status, "to": status}
        if status in ("approved", "active") and profile.approved_at is None:
            profile.approved_by = admin.id
            profile.approved_at = now
        profile.status = status
    if tier is not None and tier != profile.tier:
        changes["tier"] = {"from": profile.tier, "to": tier}
        profile.tier = tier
    profile.updated_at = now
    await profile.save()
    if profile.status in ("approved", "active"):
        user = await User.get(profile.user_id)
        if user and user.role == Role.USER:
            user.role = Role.AFFILIATE
            user.updated_at = now
            await user.save()
    from marketplace.core.audit import log_event
    await log_event(str(admin.id), "affiliate_updated", "affiliate_profile", str(profile.id), changes)
    log.info("affiliate_updated", profile_id=str(profile.id), status=profile.status, tier=profile.tier)
    return profile


async def _users_by_id(user_ids: list[PydanticObjectId]) -> dict[PydanticObjectId, User]:
    from beanie.operators import In
    users = await User.find(In(User.id, user_ids)).to_list() if user_ids else []
    return {u.id: u for u in users}


async def _search_filter(search: str):
    """Match the referral code, or the affiliate's name or email."""
    from beanie.operators import In, Or, RegEx
    pattern = re.escape(search.strip())
    users = await User.find(
        Or(RegEx(User.name, pattern, options="i"), RegEx(User.email, pattern, options="i"))
    ).to_list()
    return Or(
        RegEx(AffiliateProfile.referral_code, pattern, options="i"),
        In(AffiliateProfile.user_id, [u.id for u in users]),
    )


async def list_applications(
    status: str | None = None,
    search: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = 10,
    offset: int = 0,
) -> dict[str, Any]:
    filters = []
    if status:
        if status not in PROFILE_STATUSES:
            raise BadRequestError(f"Invalid status: {status}")
        filters.append(AffiliateProfile.status == status)
    if date_from:
        filters.append(AffiliateProfile.created_at >= date_from)
    if date_to:
        if date_to.time() == time(0):
            date_to = datetime.combine(date_to.date(), time.max)
        filters.append(AffiliateProfile.created_at <= date_to)
    if search and search.strip():
        filters.append(await _search_filter(search))
    total = await AffiliateProfile.find(*filters).count()
    profiles = await AffiliateProfile.find(*filters).sort(-AffiliateProfile.created_at).skip(offset).limit(limit).to_list()
    users = await _users_by_id([p.user_id for p in profiles])
    summary = {s: await AffiliateProfile.find(AffiliateProfile.status == s).count() for s in PROFILE_STATUSES}
    return {
        "items": [profile_to_dict(p, users.get(p.user_id)) for p in profiles],
        "total": total,
        "limit": limit,
        "offset": offset,
        "summary": summary,
    }


async def list_profiles(
    status: str | None = None,
    tier: str | None = None,
    search: str | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    limit: int = 10,
    offset: int = 0,
) -> dict[str, Any]:
    filters = []
    if status:
        filters.append(AffiliateProfile.status == status)
    if tier:
        filters.append(AffiliateProfile.tier == tier)
    if search and search.strip():
        filters.append(await _search_filter(search))
    field = PROFILE_SORT_FIELDS.get(sort_by, "created_at")
    sort = [(field, 1 if sort_order == "asc" else -1)]
    total = await AffiliateProfile.find(*filters).count()
    profiles = await AffiliateProfile.find(*filters).sort(sort).skip(offset).limit(limit).to_list()
    users = await _users_by_id([p.user_id for p in profiles])

    all_profiles = await AffiliateProfile.find_all().to_list()
    summary = {
        "total_affiliates": len(all_profiles),
        "active_affiliates": sum(1 for p in all_profiles if p.status in ("approved", "active")),
        "total_earnings_paid": format_minor(sum(p.paid_balance_minor for p in all_profiles)),
        "pending_payments": format_minor(sum(p.pending_balance_minor for p in all_profiles)),
        "total_referrals": sum(p.total_referrals for p in all_profiles),
        "active_referrals": sum(p.active_referrals for p in all_profiles),
    }
    return {
        "items": [profile_to_dict(p, users.get(p.user_id)) for p in profiles],
        "total": total,
        "limit": limit,
        "offset": offset,
        "summary": summary,
    }


def conversion_rate(profile: AffiliateProfile) -> str:
    if profile.total_referrals <= 0:
        return "0.00"
    return f"{profile.active_referrals * 100 / profile.total_referrals:.2f}"


def profile_to_dict(profile: AffiliateProfile, user: User | None = None) -> dict:
    out = {
        "id": str(profile.id),
        "user_id": str(profile.user_id),
        "referral_code": profile.referral_code,
        "status": profile.status,
        "tier": profile.tier,
        "total_earnings": format_minor(profile.total_earnings_minor),
        "pending_balance": format_minor(profile.pending_balance_minor),
        "paid_balance": format_minor(profile.paid_balance_minor),
        "total_referrals": profile.total_referrals,
        "active_referrals": profile.active_referrals,
        "conversion_rate": conversion_rate(profile),
        "application_note": profile.application_note,
        "rejection_reason": profile.rejection_reason,
        "approved_by": oid(profile.approved_by),
        "approved_at": iso(profile.approved_at),
        "created_at": iso(profile.created_at),
    }
    if user is not None:
        out["user"] = {"id": str(user.id), "name": user.name, "email": user.email, "role": user.role.value}
    return out


# --- referrals ---


async def resolve_referral_code(code: str | None) -> AffiliateProfile | None:
    """Profile for a sign-up referral code; only approved or active affiliates can refer."""
    code = (code or "").strip().upper()
    if not code:
        return None
    profile = await AffiliateProfile.find_one(AffiliateProfile.referral_code == code)
    if not profile or profile.status not in ("approved", "active"):
        raise BadRequestError("Invalid referral code")
    return profile


async def attach_referral(profile: AffiliateProfile, referred_user: User) -> Referral:
    """Record a sign-up under an affiliate; waits for the affiliate's approval."""
    if profile.user_id == referred_user.id:
        raise BadRequestError("Cannot use your own referral code")
    referral = Referral(
        affiliate_id=profile.id,
        affiliate_user_id=profile.user_id,
        referred_user_id=referred_user.id,
        referral_code=profile.referral_code,
    )
    await referral.insert()
    await AffiliateProfile.find_one(AffiliateProfile.id == profile.id).update(Inc({AffiliateProfile.total_referrals: 1}))
    log.info("referral_attached", referral_id=str(referral.id), affiliate_id=str(profile.id))
    return referral


async def get_referral(referral_id: str | PydanticObjectId, session=None) -> Referral:
    referral = await Referral.get(parse_id(referral_id, "Referral"), session=session)
    if not referral:
        raise NotFoundError("Referral not found")
    return referral


async def _transition(referral_id: PydanticObjectId, from_status: str, fields: dict[str, Any], session=None) -> Referral:
    updated = await Referral.find_one(
        Referral.id == referral_id,
        Referral.approval_status == from_status,
        session=session,
    ).update(Set(fields), session=session, response_type=UpdateResponse.NEW_DOCUMENT)
    if updated is None:
        current = await get_referral(referral_id, session=session)
        raise ConflictError(
            f"Referral is {current.approval_status}, expected {from_status}",
            details={"approval_status": current.approval_status},
        )
    return updated


def _ensure_owner(referral: Referral, affiliate_user: User) -> None:
    if referral.affiliate_user_id != affiliate_user.id:
        raise ForbiddenError("You do not have permission to manage this referral")


async def approve_referral(referral_id: str, affiliate_user: User) -> dict[str, Any]:
    """
    Charge the active approval fee (affiliate wallet -> admin wallet) and mark the referral approved.
    Every check runs before the first write; on insufficient balance nothing changes.
    """
    referral = await get_referral(referral_id)
    _ensure_owner(referral, affiliate_user)
    profile = await get_profile(referral.affiliate_id)
    if profile.status not in ("approved", "active"):
        raise ForbiddenError(f"Affiliate account is {profile.status}")
    if referral.approval_status != "pending":
        raise ConflictError(
            f"Cannot approve a referral that is {referral.approval_status}",
            details={"approval_status": referral.approval_status},
        )
    config = await get_active_fee_config()
    if config is None:
        raise BadRequestError("No active referral approval configuration found")
    fee = config.approval_fee_minor
    affiliate_wallet = await wallet_service.get_or_create_wallet(affiliate_user.id)
    admin_wallet = await wallet_service.get_admin_wallet()
    if fee > 0:
        wallet_service.ensure_active(affiliate_wallet)
        wallet_service.ensure_active(admin_wallet)
        wallet_service.ensure_covers(affiliate_wallet, fee)
    previous = {"affiliate": affiliate_wallet.balance_minor, "admin": admin_wallet.balance_minor}

    async with transaction() as session:
        now = datetime.utcnow()
        referral = await _transition(
            referral.id,
            "pending",
            {
                Referral.approval_status: "approved",
                Referral.status: "active",
                Referral.approval_fee_minor: fee,
                Referral.approved_at: now,
            },
            session=session,
        )
        outgoing = None
        if fee > 0:
            try:
                outgoing, _ = await wallet_service.transfer(
                    affiliate_wallet.id,
                    admin_wallet.id,
                    fee,
                    description="Referral approval fee",
                    related_entity_type="referral_approval",
                    related_entity_id=str(referral.id),
                    metadata={
                        "referral_id": str(referral.id),
                        "referred_user_id": str(referral.referred_user_id),
                        "approval_config_id": str(config.id),
                    },
                    idempotency_key=f"referral-approval:{referral.id}",
                    session=session,
                )
            except Exception:
                if session is None:
                    await _transition(
                        referral.id,
                        "approved",
                        {
                            Referral.approval_status: "pending",
                            Referral.status: "pending",
                            Referral.approval_fee_minor: None,
                            Referral.approved_at: None,
                        },
                    )
                raise
            referral = await _transition(
                referral.id,
                "approved",
                {Referral.approval_transaction_id: outgoing.id},
                session=session,
            )
        await AffiliateProfile.find_one(AffiliateProfile.id == referral.affiliate_id, session=session).update(
            Inc({AffiliateProfile.active_referrals: 1}),
            session=session,
        )
        from marketplace.core.audit import log_event
        await log_event(
            str(affiliate_user.id),
            "referral_approved",
            "referral",
            str(referral.id),
            {"approval_fee_minor": fee, "transaction_id": oid(outgoing.id if outgoing else None)},
            session=session,
        )
    log.info("referral_approved", referral_id=str(referral.id), approval_fee_minor=fee)
    affiliate_after = await wallet_service.get_wallet(affiliate_wallet.id)
    admin_after = await wallet_service.get_wallet(admin_wallet.id)
    return {
        "referral": referral_to_dict(referral),
        "transaction": {
            "id": str(outgoing.id),
            "type": outgoing.type,
            "amount": format_minor(outgoing.amount_minor),
            "description": outgoing.description,
        } if outgoing else None,
        "affiliate_wallet": {
            "id": str(affiliate_wallet.id),
            "previous_balance": format_minor(previous["affiliate"]),
            "new_balance": format_minor(affiliate_after.balance_minor),
        },
        "admin_wallet": {
            "id": str(admin_wallet.id),
            "previous_balance": format_minor(previous["admin"]),
            "new_balance": format_minor(admin_after.balance_minor),
        },
    }


async def reject_referral(referral_id: str, affiliate_user: User, reason: str | None = None) -> Referral:
    referral = await get_referral(referral_id)
    _ensure_owner(referral, affiliate_user)
    if referral.approval_status != "pending":
        raise ConflictError(
            f"Cannot reject a referral that is {referral.approval_status}",
            details={"approval_status": referral.approval_status},
        )
    referral = await _transition(
        referral.id,
        "pending",
        {
            Referral.approval_status: "rejected",
            Referral.status: "inactive",
            Referral.rejected_at: datetime.utcnow(),
            Referral.rejection_reason: (reason or "").strip() or None,
        },
    )
    from marketplace.core.audit import log_event
    await log_event(str(affiliate_user.id), "referral_rejected", "referral", str(referral.id), {})
    log.info("referral_rejected", referral_id=str(referral.id))
    return referral


async def list_referrals(
    affiliate_user_id: PydanticObjectId,
    approval_status: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Referral], int]:
    filters = [Referral.affiliate_user_id == affiliate_user_id]
    if approval_status:
        filters.append(Referral.approval_status == approval_status)
    total = await Referral.find(*filters).count()
    items = await Referral.find(*filters).sort(-Referral.created_at).skip(offset).limit(limit).to_list()
    return items, total


def referral_to_dict(referral: Referral, referred_user: User | None = None) -> dict:
    out = {
        "id": str(referral.id),
        "affiliate_id": str(referral.affiliate_id),
        "referred_user_id": str(referral.referred_user_id),
        "referral_code": referral.referral_code,
        "status": referral.status,
        "approval_status": referral.approval_status,
        "approval_fee": format_minor(referral.approval_fee_minor),
        "approval_transaction_id": oid(referral.approval_transaction_id),
        "approved_at": iso(referral.approved_at),
        "rejected_at": iso(referral.rejected_at),
        "rejection_reason": referral.rejection_reason,
        "created_at": iso(referral.created_at),
    }
    if referred_user is not None:
        out["referred_user"] = {"id": str(referred_user.id), "name": referred_user.name, "email": referred_user.email}
    return out

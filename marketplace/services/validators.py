"""
Admin review of payment validator applications; each approved validator covers one country.

The payment_validator role follows the profile: approval or reactivation grants it,
rejection or suspension takes it back.
"""

from datetime import datetime

from marketplace.core.exceptions import BadRequestError, ConflictError, NotFoundError
from marketplace.core.logging import get_logger
from marketplace.core.roles import Role
from marketplace.models.user import User
from marketplace.models.validator import PaymentValidatorProfile
from marketplace.services.common import clean_reason, iso, oid, parse_id

log = get_logger(__name__)

STATUSES = ("pending", "approved", "rejected", "suspended")


async def get_profile(profile_id: str) -> PaymentValidatorProfile:
    profile = await PaymentValidatorProfile.get(parse_id(profile_id, "Payment validator"))
    if not profile:
        raise NotFoundError("Payment validator not found")
    return profile


def _country(code: str | None) -> str:
    c = (code or "").strip().upper()
    if len(c) != 2 or not c.isalpha():
        raise BadRequestError("Country must be a 2-letter ISO code")
    return c


async def _ensure_country_free(profile: PaymentValidatorProfile, code: str) -> None:
    taken = await PaymentValidatorProfile.find_one(
        PaymentValidatorProfile.status == "approved",
        PaymentValidatorProfile.assigned_country == code,
    )
    if taken and taken.id != profile.id:
        raise ConflictError(f"Country {code} already has an approved validator", details={"country": code})


async def _sync_user(profile: PaymentValidatorProfile, active: bool, country: str | None) -> None:
    user = await User.get(profile.user_id)
    if not user:
        return
    if active and user.role == Role.USER:
        user.role = Role.PAYMENT_VALIDATOR
    elif not active and user.role == Role.PAYMENT_VALIDATOR:
        user.role = Role.USER
    user.country_code = country
    user.updated_at = datetime.utcnow()
    await user.save()


async def approve_validator(profile_id: str, admin: User, country: str) -> PaymentValidatorProfile:
    code = _country(country)
    profile = await get_profile(profile_id)
    if profile.status == "approved":
        raise ConflictError("Payment validator is already approved")
    await _ensure_country_free(profile, code)
    now = datetime.utcnow()
    profile.status = "approved"
    profile.assigned_country = code
    profile.rejection_reason = None
    profile.approved_by = admin.id
    profile.approved_at = now
    await profile.save()
    await _sync_user(profile, active=True, country=code)
    from marketplace.core.audit import log_event
    await log_event(str(admin.id), "validator_approved", "payment_validator", str(profile.id), {"country": code})
    log.info("validator_approved", profile_id=str(profile.id), country=code)
    return profile


async def reject_validator(profile_id: str, admin: User, reason: str | None) -> PaymentValidatorProfile:
    text = clean_reason(reason, "rejection reason")
    profile = await get_profile(profile_id)
    if profile.status == "rejected":
        raise ConflictError("Payment validator is already rejected")
    profile.status = "rejected"
    profile.rejection_reason = text
    profile.assigned_country = None
    await profile.save()
    await _sync_user(profile, active=False, country=None)
    from marketplace.core.audit import log_event
    await log_event(str(admin.id), "validator_rejected", "payment_validator", str(profile.id), {"reason": text})
    log.info("validator_rejected", profile_id=str(profile.id))
    return profile


async def suspend_validator(profile_id: str, admin: User) -> PaymentValidatorProfile:
    """Toggle an approved validator to suspended, or a suspended one back to approved."""
    profile = await get_profile(profile_id)
    if profile.status == "approved":
        profile.status = "suspended"
        active = False
    elif profile.status == "suspended":
        if profile.assigned_country:
            await _ensure_country_free(profile, profile.assigned_country)
        profile.status = "approved"
        active = True
    else:
        raise ConflictError(f"Cannot suspend a validator that is {profile.status}", details={"status": profile.status})
    await profile.save()
    await _sync_user(profile, active=active, country=profile.assigned_country)
    event = "validator_reactivated" if active else "validator_suspended"
    from marketplace.core.audit import log_event
    await log_event(str(admin.id), event, "payment_validator", str(profile.id), {"country": profile.assigned_country})
    log.info(event, profile_id=str(profile.id))
    return profile


async def list_validators(status: str | None = None, limit: int = 20, offset: int = 0) -> dict:
    filters = []
    if status:
        if status not in STATUSES:
            raise BadRequestError(f"Invalid status: {status}")
        filters.append(PaymentValidatorProfile.status == status)
    total = await PaymentValidatorProfile.find(*filters).count()
    profiles = (
        await PaymentValidatorProfile.find(*filters)
        .sort(-PaymentValidatorProfile.created_at)
        .skip(offset)
        .limit(limit)
        .to_list()
    )
    counts = {s: await PaymentValidatorProfile.find(PaymentValidatorProfile.status == s).count() for s in STATUSES}
    return {
        "items": [validator_to_dict(p) for p in profiles],
        "total": total,
        "limit": limit,
        "offset": offset,
        "summary": counts,
    }


def validator_to_dict(p: PaymentValidatorProfile) -> dict:
    return {
        "id": str(p.id),
        "user_id": str(p.user_id),
        "status": p.status,
        "assigned_country": p.assigned_country,
        "rejection_reason": p.rejection_reason,
        "approved_by": oid(p.approved_by),
        "approved_at": iso(p.approved_at),
        "created_at": iso(p.created_at),
    }

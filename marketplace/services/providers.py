"""Admin review of provider applications."""

from datetime import datetime

from marketplace.core.exceptions import BadRequestError, ConflictError, NotFoundError
from marketplace.core.logging import get_logger
from marketplace.models.provider_profile import ProviderProfile
from marketplace.models.user import User
from marketplace.services.common import clean_reason, iso, oid, parse_id

log = get_logger(__name__)

STATUSES = ("pending", "approved", "rejected", "suspended")


async def get_profile(profile_id: str) -> ProviderProfile:
    profile = await ProviderProfile.get(parse_id(profile_id, "Provider"))
    if not profile:
        raise NotFoundError("Provider not found")
    return profile


async def approve_provider(profile_id: str, admin: User) -> ProviderProfile:
    profile = await get_profile(profile_id)
    if profile.status == "approved":
        raise ConflictError("Provider is already approved")
    profile.status = "approved"
    profile.rejection_reason = None
    profile.approved_by = admin.id
    profile.approved_at = datetime.utcnow()
    await profile.save()
    from marketplace.core.audit import log_event
    await log_event(str(admin.id), "provider_approved", "provider", str(profile.id), {})
    log.info("provider_approved", profile_id=str(profile.id))
    return profile


async def reject_provider(profile_id: str, admin: User, reason: str | None) -> ProviderProfile:
    text = clean_reason(reason, "rejection reason")
    profile = await get_profile(profile_id)
    if profile.status == "rejected":
        raise ConflictError("Provider is already rejected")
    profile.status = "rejected"
    profile.rejection_reason = text
    await profile.save()
    from marketplace.core.audit import log_event
    await log_event(str(admin.id), "provider_rejected", "provider", str(profile.id), {"reason": text})
    log.info("provider_rejected", profile_id=str(profile.id))
    return profile


async def list_providers(status: str | None = None, limit: int = 20, offset: int = 0) -> tuple[list[ProviderProfile], int]:
    filters = []
    if status:
        if status not in STATUSES:
            raise BadRequestError(f"Invalid status: {status}")
        filters.append(ProviderProfile.status == status)
    total = await ProviderProfile.find(*filters).count()
    items = await ProviderProfile.find(*filters).sort(-ProviderProfile.created_at).skip(offset).limit(limit).to_list()
    return items, total


def provider_to_dict(p: ProviderProfile) -> dict:
    return {
        "id": str(p.id),
        "user_id": str(p.user_id),
        "business_name": p.business_name,
        "status": p.status,
        "rejection_reason": p.rejection_reason,
        "approved_by": oid(p.approved_by),
        "approved_at": iso(p.approved_at),
        "created_at": iso(p.created_at),
    }

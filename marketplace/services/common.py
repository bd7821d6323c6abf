"""Small helpers shared by the workflow services."""

from beanie import PydanticObjectId
from bson.errors import InvalidId

from marketplace.core.config import get_settings
from marketplace.core.exceptions import BadRequestError, NotFoundError


def parse_id(value: str | PydanticObjectId, what: str = "Resource") -> PydanticObjectId:
    """Path ids that are not ObjectIds cannot exist, so they read as not found."""
    if isinstance(value, PydanticObjectId):
        return value
    try:
        return PydanticObjectId(value)
    except (InvalidId, TypeError) as e:
        raise NotFoundError(f"{what} not found") from e


def clean_reason(reason: str | None, field: str = "reason") -> str:
    """Trim a rejection reason and enforce its length bounds."""
    settings = get_settings()
    text = (reason or "").strip()
    if not text:
        raise BadRequestError(f"A {field} is required")
    if len(text) < settings.rejection_reason_min:
        raise BadRequestError(
            f"The {field} must be at least {settings.rejection_reason_min} characters",
            details={"field": field},
        )
    if len(text) > settings.rejection_reason_max:
        raise BadRequestError(
            f"The {field} must be at most {settings.rejection_reason_max} characters",
            details={"field": field},
        )
    return text


def iso(dt) -> str | None:
    return dt.isoformat() if dt else None


def oid(value) -> str | None:
    return str(value) if value else None

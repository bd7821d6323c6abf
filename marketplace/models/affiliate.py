from datetime import datetime
from typing import Literal

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field

AffiliateTier = Literal["bronze", "silver", "gold", "platinum"]


class AffiliateProfile(Document):
    user_id: Indexed(PydanticObjectId, unique=True)
    referral_code: Indexed(str, unique=True)
    status: Literal["pending", "approved", "rejected", "active", "suspended"] = "pending"
    tier: AffiliateTier = "bronze"
    total_earnings_minor: int = 0
    pending_balance_minor: int = 0
    paid_balance_minor: int = 0
    total_referrals: int = 0
    active_referrals: int = 0
    application_note: str | None = None
    rejection_reason: str | None = None
    approved_by: PydanticObjectId | None = None
    approved_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "affiliate_profiles"
        indexes = [[("status", 1), ("created_at", -1)]]


class Referral(Document):
    """A user who signed up with an affiliate's code, waiting on the affiliate's approval."""
    affiliate_id: PydanticObjectId  # AffiliateProfile id
    affiliate_user_id: PydanticObjectId
    referred_user_id: PydanticObjectId
    referral_code: str
    status: Literal["pending", "active", "inactive"] = "pending"
    approval_status: Literal["pending", "approved", "rejected"] = "pending"
    approval_fee_minor: int | None = None
    approval_transaction_id: PydanticObjectId | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "referrals"
        indexes = [
            [("affiliate_user_id", 1), ("created_at", -1)],
            [("referred_user_id", 1)],
        ]

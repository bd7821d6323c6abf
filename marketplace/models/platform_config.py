from datetime import datetime
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import Field

AdjustmentType = Literal["percentage", "fixed"]


class ReferralApprovalConfig(Document):
    """Versioned; at most one record is active."""
    approval_fee_minor: int
    is_active: bool = True
    version: int = 1
    effective_from: datetime = Field(default_factory=datetime.utcnow)
    created_by: PydanticObjectId | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "referral_approval_configs"
        indexes = [[("is_active", 1), ("version", -1)]]


class PricingConfig(Document):
    """Versioned; markup is charged to sellers, fee is withheld from providers.

    For percentage types the value is stored in basis points (1500 = 15%); for
    fixed types it is minor units.
    """
    distributor_markup: int
    distributor_markup_type: AdjustmentType = "percentage"
    platform_fee: int
    platform_fee_type: AdjustmentType = "percentage"
    is_active: bool = True
    version: int = 1
    created_by: PydanticObjectId | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "pricing_configs"
        indexes = [[("is_active", 1), ("version", -1)]]

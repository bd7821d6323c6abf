from datetime import datetime
from typing import Any, Literal

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field


class PaymentValidatorProfile(Document):
    user_id: Indexed(PydanticObjectId, unique=True)
    status: Literal["pending", "approved", "rejected", "suspended"] = "pending"
    assigned_country: str | None = None
    application_note: str | None = None
    rejection_reason: str | None = None
    approved_by: PydanticObjectId | None = None
    approved_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "payment_validator_profiles"
        indexes = [[("status", 1), ("assigned_country", 1)]]


class ValidatorFundEntry(Document):
    """Money a validator collected off-platform for an approved recharge; owed to the admin."""
    validator_id: PydanticObjectId
    recharge_id: PydanticObjectId
    amount_minor: int
    status: Literal["pending", "transferred"] = "pending"
    transfer_id: PydanticObjectId | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "validator_fund_entries"
        indexes = [
            [("validator_id", 1), ("status", 1)],
            [("transfer_id", 1)],
        ]


class ValidatorTransfer(Document):
    validator_id: PydanticObjectId
    total_minor: int
    commission_minor: int
    transfer_minor: int
    payment_method: str
    holder_name: str | None = None
    payment_time: datetime | None = None
    voucher_url: str | None = None
    payment_details: dict[str, Any] = Field(default_factory=dict)
    status: Literal["pending", "approved", "rejected"] = "pending"
    rejection_reason: str | None = None
    processed_by: PydanticObjectId | None = None
    processed_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "validator_transfers"
        indexes = [
            [("validator_id", 1), ("created_at", -1)],
            [("status", 1), ("created_at", -1)],
        ]

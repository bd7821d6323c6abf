from datetime import datetime
from typing import Any, Literal

from beanie import Document, PydanticObjectId
from pydantic import Field


class WithdrawalRequest(Document):
    wallet_id: PydanticObjectId
    user_id: PydanticObjectId
    amount_minor: int
    payment_method: str
    payment_details: dict[str, Any] = Field(default_factory=dict)
    status: Literal["pending", "approved", "rejected", "completed"] = "pending"
    notes: str | None = None
    rejection_reason: str | None = None
    transaction_id: PydanticObjectId | None = None
    requested_at: datetime = Field(default_factory=datetime.utcnow)
    processed_by: PydanticObjectId | None = None
    processed_at: datetime | None = None
    completed_at: datetime | None = None

    class Settings:
        name = "withdrawal_requests"
        indexes = [
            [("user_id", 1), ("requested_at", -1)],
            [("status", 1), ("requested_at", -1)],
        ]

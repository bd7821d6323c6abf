from datetime import datetime
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import Field

ResolutionType = Literal["refund_seller", "favor_provider", "partial_refund", "no_action"]


class Dispute(Document):
    purchase_id: PydanticObjectId
    seller_id: PydanticObjectId
    provider_id: PydanticObjectId
    conciliator_id: PydanticObjectId | None = None
    opened_by: PydanticObjectId
    reason: str
    description: str = ""
    status: Literal["open", "under_review", "resolved", "closed"] = "open"
    resolution: str | None = None
    resolution_type: ResolutionType | None = None
    partial_refund_percentage: float | None = None
    refund_minor: int | None = None
    refund_transaction_id: PydanticObjectId | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    assigned_at: datetime | None = None
    resolved_at: datetime | None = None
    closed_at: datetime | None = None

    class Settings:
        name = "disputes"
        indexes = [
            [("purchase_id", 1)],
            [("status", 1), ("created_at", 1)],
            [("conciliator_id", 1), ("status", 1)],
        ]


class DisputeMessage(Document):
    dispute_id: PydanticObjectId
    sender_id: PydanticObjectId
    message: str
    is_internal: bool = False  # conciliator-only note
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "dispute_messages"
        indexes = [[("dispute_id", 1), ("created_at", 1)]]

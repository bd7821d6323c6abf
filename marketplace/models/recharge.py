from datetime import datetime
from typing import Any, Literal

from beanie import Document, PydanticObjectId
from pydantic import Field

PAYMENT_METHODS = ("yape", "plin", "binance", "bank_transfer", "credit_card", "paypal", "crypto", "mock")


class Recharge(Document):
    wallet_id: PydanticObjectId
    user_id: PydanticObjectId
    amount_minor: int
    payment_method: str
    payment_gateway: str | None = None
    external_transaction_id: str | None = None
    voucher_url: str | None = None
    status: Literal["pending", "completed", "failed", "cancelled"] = "pending"
    metadata: dict[str, Any] = Field(default_factory=dict)
    processed_by: PydanticObjectId | None = None
    rejection_reason: str | None = None
    transaction_id: PydanticObjectId | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None

    class Settings:
        name = "recharges"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("status", 1), ("created_at", -1)],
        ]

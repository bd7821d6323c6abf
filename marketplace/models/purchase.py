from datetime import datetime
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import Field


class Purchase(Document):
    seller_id: PydanticObjectId
    provider_id: PydanticObjectId
    product_id: PydanticObjectId
    product_name: str
    variant_name: str
    amount_minor: int  # what the seller paid
    base_price_minor: int
    markup_minor: int
    platform_fee_minor: int
    provider_earnings_minor: int
    status: Literal["completed", "refunded", "partially_refunded"] = "completed"
    inventory_account_id: PydanticObjectId | None = None
    slot_index: int | None = None
    inventory_license_id: PydanticObjectId | None = None
    transaction_id: PydanticObjectId | None = None
    refunded_minor: int = 0
    expires_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "purchases"
        indexes = [
            [("seller_id", 1), ("created_at", -1)],
            [("provider_id", 1), ("created_at", -1)],
        ]

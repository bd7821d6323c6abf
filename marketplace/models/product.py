from datetime import datetime
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import BaseModel, Field

# Categories delivered as shared account profiles; "license" is delivered as a key
STREAMING_CATEGORIES = ("netflix", "spotify", "hbo", "disney", "prime", "youtube", "streaming", "ai", "other")
LICENSE_CATEGORY = "license"
CATEGORIES = STREAMING_CATEGORIES + (LICENSE_CATEGORY,)


class ProductVariant(BaseModel):
    name: str = "Standard"
    price_minor: int
    duration_days: int = 30
    is_renewable: bool = False


class Product(Document):
    provider_id: PydanticObjectId
    name: str
    description: str = ""
    category: str
    image_url: str | None = None
    is_active: bool = True
    variants: list[ProductVariant] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "products"
        indexes = [
            [("provider_id", 1), ("created_at", -1)],
            [("category", 1), ("is_active", 1)],
        ]


class AccountSlot(BaseModel):
    profile_name: str
    pin: str = ""  # encrypted
    status: Literal["available", "sold"] = "available"
    purchase_id: PydanticObjectId | None = None


class InventoryAccount(Document):
    product_id: PydanticObjectId
    provider_id: PydanticObjectId
    email: str
    password: str  # encrypted
    platform_type: str
    slots: list[AccountSlot] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "inventory_accounts"
        indexes = [[("product_id", 1)]]

    def has_sold_slot(self) -> bool:
        return any(s.status == "sold" for s in self.slots)


class InventoryLicense(Document):
    product_id: PydanticObjectId
    provider_id: PydanticObjectId
    license_key: str  # encrypted
    activation_type: str = "single"
    status: Literal["available", "sold"] = "available"
    purchase_id: PydanticObjectId | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "inventory_licenses"
        indexes = [[("product_id", 1), ("status", 1)]]

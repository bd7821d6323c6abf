from datetime import datetime
from typing import Literal

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field


class ProviderProfile(Document):
    user_id: Indexed(PydanticObjectId, unique=True)
    business_name: str = ""
    status: Literal["pending", "approved", "rejected", "suspended"] = "pending"
    application_note: str | None = None
    rejection_reason: str | None = None
    approved_by: PydanticObjectId | None = None
    approved_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "provider_profiles"
        indexes = [[("status", 1)]]

from datetime import datetime
from typing import Literal

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field


class Wallet(Document):
    """One per user; balance only changes through services.wallets."""
    user_id: Indexed(PydanticObjectId, unique=True)
    balance_minor: int = 0
    currency: str = "USD"
    status: Literal["active", "frozen", "closed"] = "active"
    # Bumped on every balance write; conditional updates match on it
    version: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "wallets"

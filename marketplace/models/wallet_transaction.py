from datetime import datetime
from typing import Any, Literal
from uuid import uuid4

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field


def generated_key() -> str:
    """Key for rows written without a caller-supplied idempotency key."""
    return f"auto:{uuid4().hex}"


class WalletTransaction(Document):
    """Append-only ledger row. amount_minor is always positive; direction comes from source/destination."""
    wallet_id: PydanticObjectId
    type: Literal["credit", "debit", "transfer"]
    amount_minor: int
    balance_after_minor: int
    source_wallet_id: PydanticObjectId | None = None
    destination_wallet_id: PydanticObjectId | None = None
    related_entity_type: str | None = None  # withdrawal, recharge, referral, purchase, dispute
    related_entity_id: str | None = None
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: Indexed(str, unique=True) = Field(default_factory=generated_key)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "wallet_transactions"
        indexes = [
            [("wallet_id", 1), ("created_at", -1)],
            [("related_entity_type", 1), ("related_entity_id", 1)],
        ]

    def signed_amount(self) -> int:
        if self.destination_wallet_id == self.wallet_id:
            return self.amount_minor
        return -self.amount_minor

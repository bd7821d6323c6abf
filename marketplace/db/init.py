from contextlib import asynccontextmanager
from typing import AsyncIterator

import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession

from marketplace.core.config import get_settings
from marketplace.models import (
    AffiliateProfile,
    AuditLog,
    Dispute,
    DisputeMessage,
    InventoryAccount,
    InventoryLicense,
    PaymentValidatorProfile,
    PricingConfig,
    Product,
    ProviderProfile,
    Purchase,
    Recharge,
    Referral,
    ReferralApprovalConfig,
    User,
    ValidatorFundEntry,
    ValidatorTransfer,
    Wallet,
    WalletTransaction,
    WithdrawalRequest,
)

DOCUMENT_MODELS = [
    User,
    Wallet,
    WalletTransaction,
    Recharge,
    WithdrawalRequest,
    AffiliateProfile,
    Referral,
    ReferralApprovalConfig,
    PricingConfig,
    PaymentValidatorProfile,
    ValidatorFundEntry,
    ValidatorTransfer,
    ProviderProfile,
    Product,
    InventoryAccount,
    InventoryLicense,
    Purchase,
    Dispute,
    DisputeMessage,
    AuditLog,
]

_client: AsyncIOMotorClient | None = None


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(client: AsyncIOMotorClient | None = None) -> None:
    """Connect and register documents. Tests pass an in-memory client."""
    global _client
    settings = get_settings()
    if client is None:
        # Atlas in Docker: tlsCAFile + tlsDisableOCSPEndpointCheck avoid TLSV1_ALERT_INTERNAL_ERROR
        kwargs = {}
        if _use_tls(settings.mongodb_uri):
            kwargs["tlsCAFile"] = certifi.where()
            kwargs["tlsDisableOCSPEndpointCheck"] = True
        client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
    _client = client
    database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)


@asynccontextmanager
async def transaction() -> AsyncIterator[AsyncIOMotorClientSession | None]:
    """Unit of work for multi-document mutations.

    Yields a session inside a started transaction when MONGODB_TRANSACTIONS is
    on (replica set required); otherwise yields None and writes run unwrapped.
    """
    settings = get_settings()
    if not settings.mongodb_transactions or _client is None:
        yield None
        return
    async with await _client.start_session() as session:
        async with session.start_transaction():
            yield session

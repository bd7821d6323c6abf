import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

# In-memory Mongo; no server needed
os.environ.setdefault("MONGODB_DB_NAME", "marketplace_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-min-32-characters-long")
os.environ.setdefault("ENCRYPTION_KEY", "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff")
os.environ.setdefault("MONGODB_TRANSACTIONS", "false")

from marketplace.core.roles import Role  # noqa: E402
from marketplace.core.security import hash_password  # noqa: E402

PASSWORD = "correct-horse-battery"
_PASSWORD_HASH = hash_password(PASSWORD)


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[AsyncMongoMockClient, None]:
    """Fresh in-memory database per test."""
    from marketplace.db.init import init_db
    client = AsyncMongoMockClient()
    await init_db(client)
    yield client


@pytest_asyncio.fixture
async def client(db) -> AsyncGenerator[AsyncClient, None]:
    from marketplace.main import app
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_user(db):
    """Factory: user with a role and an optional opening balance (cents, credited through the ledger)."""
    from marketplace.models.user import User
    from marketplace.services import wallets as wallet_service

    counter = {"n": 0}

    async def _make(role: Role = Role.SELLER, balance_minor: int = 0, email: str | None = None) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"{role.value}{counter['n']}@example.com",
            password_hash=_PASSWORD_HASH,
            name=f"{role.value} {counter['n']}",
            role=role,
        )
        await user.insert()
        wallet = await wallet_service.get_or_create_wallet(user.id)
        if balance_minor:
            await wallet_service.credit(wallet.id, balance_minor, description="opening balance")
        return user

    return _make


@pytest_asyncio.fixture
async def admin(make_user):
    return await make_user(Role.ADMIN, email="admin@example.com")


@pytest.fixture
def auth_headers():
    from marketplace.services.users import token_for

    def _headers(user) -> dict[str, str]:
        return {"Authorization": f"Bearer {token_for(user)}"}

    return _headers

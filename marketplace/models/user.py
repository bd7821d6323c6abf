from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field

from marketplace.core.roles import Role


class User(Document):
    email: Indexed(str, unique=True)
    password_hash: str = ""
    name: str = ""
    role: Role = Role.USER
    country_code: str | None = None  # set for payment validators on approval
    is_active: bool = True
    session_version: int = 0
    last_login_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "users"
        indexes = [[("role", 1)]]

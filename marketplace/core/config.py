from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]


def _parse_cors_origins(v: Any) -> List[str]:
    try:
        if v is None or v == "":
            return _DEFAULT_CORS.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return _DEFAULT_CORS.copy()
        if s.startswith("["):
            import json
            out = json.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()
    except ValueError:
        return _DEFAULT_CORS.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="marketplace", alias="MONGODB_DB_NAME")
    # Multi-document transactions need a replica set; off for standalone servers
    mongodb_transactions: bool = Field(default=False, alias="MONGODB_TRANSACTIONS")

    # JWT bearer tokens
    jwt_secret: str = Field(default="", alias="JWT_SECRET")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    jwt_expire_minutes: int = Field(default=7 * 24 * 60, alias="JWT_EXPIRE_MINUTES")

    # Field encryption: 64 hex chars (AES-256-GCM); legacy Fernet key for v1 values
    encryption_key: str = Field(default="", alias="ENCRYPTION_KEY")
    legacy_fernet_key: str = Field(default="", alias="LEGACY_FERNET_KEY")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))

    @property
    def jwt_signing_key(self) -> str:
        return self.jwt_secret or self.secret_key

    # Wallets
    default_currency: str = Field(default="USD", alias="DEFAULT_CURRENCY")
    wallet_update_retries: int = Field(default=5, alias="WALLET_UPDATE_RETRIES")

    # Workflow text limits
    rejection_reason_min: int = 10
    rejection_reason_max: int = 500
    dispute_resolution_min: int = 20


@lru_cache
def get_settings() -> Settings:
    return Settings()

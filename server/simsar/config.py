import os
import secrets
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

CASCADE_SCOPES = ("offer_accept", "all")


@dataclass
class Settings:
    # Database
    database_url: str

    # Redis (affiliation notifications)
    redis_url: str

    # Server
    port: int
    app_base_url: str

    # Auth
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 30

    # Affiliation
    invite_expiry_days: int = 7
    offer_expiry_days: int = 14
    cascade_scope: str = "offer_accept"
    notifications_enabled: bool = True


# Global settings instance
_settings: Optional[Settings] = None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_settings() -> Settings:
    global _settings
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "")
    if not database_url:
        raise ValueError("DATABASE_URL environment variable is required")

    # JWT settings
    jwt_secret_key = os.getenv("JWT_SECRET_KEY", "")
    if not jwt_secret_key:
        # Generate a default for development, but warn
        jwt_secret_key = secrets.token_urlsafe(32)
        print("[WARNING] JWT_SECRET_KEY not set. Using random key (sessions won't persist across restarts)")

    cascade_scope = os.getenv("AFFILIATION_CASCADE_SCOPE", "offer_accept").strip().lower()
    if cascade_scope not in CASCADE_SCOPES:
        raise ValueError(
            f"AFFILIATION_CASCADE_SCOPE must be one of {', '.join(CASCADE_SCOPES)}, got '{cascade_scope}'"
        )

    _settings = Settings(
        database_url=database_url.strip().strip('"'),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        port=int(os.getenv("PORT", "8000")),
        app_base_url=os.getenv("APP_BASE_URL", "http://localhost:3000"),
        jwt_secret_key=jwt_secret_key,
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        jwt_access_token_expire_minutes=int(os.getenv("JWT_ACCESS_TOKEN_EXPIRE_MINUTES", "30")),
        invite_expiry_days=int(os.getenv("INVITE_EXPIRY_DAYS", "7")),
        offer_expiry_days=int(os.getenv("OFFER_EXPIRY_DAYS", "14")),
        cascade_scope=cascade_scope,
        notifications_enabled=_env_bool("NOTIFICATIONS_ENABLED", True),
    )
    return _settings


def get_settings() -> Settings:
    """Get the loaded settings. Must call load_settings() first."""
    global _settings
    if _settings is None:
        raise RuntimeError("Settings not initialized. Call load_settings() first.")
    return _settings

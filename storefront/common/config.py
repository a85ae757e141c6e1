import os
from dataclasses import dataclass


def _get_bool(env_name: str, default: bool = False) -> bool:
    val = os.getenv(env_name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass
class Settings:
    # App
    APP_HOST: str = os.getenv("APP_HOST", "0.0.0.0")
    APP_PORT: int = int(os.getenv("APP_PORT", "8000"))
    APP_DEBUG: bool = _get_bool("APP_DEBUG", False)
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    INSTANCE_ID: str = os.getenv("INSTANCE_ID", "unknown")

    # Database (SQLite file next to the working directory by default)
    DB_URL: str = os.getenv("DB_URL", "sqlite+aiosqlite:///./storefront.db")

    # Shop
    CURRENCY: str = os.getenv("CURRENCY", "USD")

    # Defaults for seeding
    SEED_ON_STARTUP: bool = _get_bool("SEED_ON_STARTUP", False)
    DEFAULT_ADMIN_NAME: str = os.getenv("DEFAULT_ADMIN_NAME", "Admin User")
    DEFAULT_ADMIN_EMAIL: str = os.getenv("DEFAULT_ADMIN_EMAIL", "admin@example.com")
    DEFAULT_ADMIN_PASSWORD: str = os.getenv("DEFAULT_ADMIN_PASSWORD", "admin123")


settings = Settings()

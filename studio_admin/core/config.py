"""
Centralized application configuration backed by environment variables.
Every tunable of the studio (rates, closure windows, chatbot limits) lives here.
"""
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Immutable configuration schema backed by environment variables."""

    APP_NAME: str = "Studio Admin"
    VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Any SQLAlchemy URL; PostgreSQL in production, SQLite for local runs
    DATABASE_URL: str = "sqlite:///./studio_admin.db"

    SECRET_KEY: str = "your-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 720

    LOG_LEVEL: str = "INFO"

    # Shared secrets for scheduled triggers and the emergency unfreeze endpoint
    CRON_SECRET: str = "change-me-cron-secret"
    EMERGENCY_UNFREEZE_SECRET: str = "change-me-emergency-secret"

    # Rates used when no rate row is configured
    DEFAULT_USD_COP: float = 3900.0
    DEFAULT_EUR_USD: float = 1.01
    DEFAULT_GBP_USD: float = 1.20
    RATE_SOURCE_TIMEOUT_SECONDS: float = 10.0

    DEFAULT_MODEL_PERCENTAGE: float = 80.0
    ADVANCE_MAX_RATIO: float = 0.90

    BUSINESS_TIMEZONE: str = "America/Bogota"
    EARLY_FREEZE_TIMEZONE: str = "Europe/Berlin"
    EARLY_FREEZE_PLATFORMS: List[str] = [
        "superfoon",
        "livecreator",
        "mdh",
        "777",
        "xmodels",
        "big7",
        "mondo",
        "vx",
        "babestation",
        "dirtyfans",
    ]
    EARLY_FREEZE_TOLERANCE_MINUTES: int = 5
    FULL_CLOSURE_WINDOW_MINUTES: int = 15
    CLOSURE_SUMMARY_WAIT_SECONDS: float = 0.0

    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.0-flash"
    CHATBOT_MODE: str = "secure_extended"  # ultra_safe | secure_extended
    CHATBOT_ENABLE_ESCALATION: bool = True
    CHATBOT_SESSION_MINUTES: int = 15
    CHATBOT_MAX_MSGS: int = 30
    CHAT_RETENTION_HOURS: int = 24

    SHOP_FUNDS_RATIO: float = 0.90

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


settings = Settings()

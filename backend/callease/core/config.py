"""Application configuration using Pydantic settings."""

from typing import Any, Literal

from pydantic import PostgresDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "CallEase API"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 3001
    RELOAD: bool = False

    # Database
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "callease"
    DATABASE_URL: PostgresDsn | str | None = None

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def assemble_db_connection(cls, v: str | None, info: Any) -> str:
        """Build database URL from components if not provided."""
        if isinstance(v, str):
            return v

        data = info.data
        return str(
            PostgresDsn.build(
                scheme="postgresql+asyncpg",
                username=data.get("POSTGRES_USER"),
                password=data.get("POSTGRES_PASSWORD"),
                host=data.get("POSTGRES_SERVER"),
                port=data.get("POSTGRES_PORT"),
                path=f"{data.get('POSTGRES_DB') or ''}",
            ),
        )

    # Security
    SECRET_KEY: str = "change-this-to-a-random-secret-key-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    OAUTH_STATE_EXPIRE_MINUTES: int = 10

    # Frontend / CORS
    FRONTEND_URL: str = "http://localhost:5174"
    CORS_ORIGINS: list[str] = ["http://localhost:5174"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list[str] = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
    CORS_ALLOW_HEADERS: list[str] = ["Content-Type", "Authorization"]

    # Google OAuth
    GOOGLE_CLIENT_ID: str | None = None
    GOOGLE_CLIENT_SECRET: str | None = None
    GOOGLE_CALLBACK_URL: str = "http://localhost:3001/auth/google/callback"
    GOOGLE_AUTH_URL: str = "https://accounts.google.com/o/oauth2/v2/auth"
    GOOGLE_TOKEN_URL: str = "https://oauth2.googleapis.com/token"  # noqa: S105
    GOOGLE_USERINFO_URL: str = "https://openidconnect.googleapis.com/v1/userinfo"

    # Voice provider (Vapi)
    VAPI_API_KEY: str | None = None
    VAPI_BASE_URL: str = "https://api.vapi.ai"
    VAPI_PHONE_NUMBER_ID: str | None = None
    OUTBOUND_VAPI_ASSISTANT_ID: str | None = None
    VAPI_INBOUND_ASSISTANT_ID: str | None = None

    # Payments (Stripe)
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = None
    STRIPE_BASE_URL: str = "https://api.stripe.com/v1"
    STRIPE_WEBHOOK_TOLERANCE: int = 300  # Max signature age in seconds
    STRIPE_PLAN_PRICES: dict[str, str] = {
        "starter": "price_1R5b8BHrl8FAmdkYtODHPJcF",
        "pro": "price_1R5b9nHrl8FAmdkY051fcwxw",
        "growth": "price_1R5b98Hrl8FAmdkYYLMdMUGg",
        "agency": "price_1R5bA7Hrl8FAmdkYsCqSAwgm",
    }

    # CRM (GoHighLevel)
    GHL_API_KEY: str | None = None
    GHL_API_VERSION: str = "2021-07-28"
    GHL_BASE_URL: str = "https://rest.gohighlevel.com/v1"
    GHL_CIRCUIT_FAILURE_THRESHOLD: int = 5  # Failures before circuit opens
    GHL_CIRCUIT_RECOVERY_TIMEOUT: int = 60  # Seconds before circuit recovery
    CRM_SYNC_QUEUE_SIZE: int = 1000

    # External Service Timeouts (seconds)
    VAPI_TIMEOUT: float = 10.0
    STRIPE_TIMEOUT: float = 15.0
    GHL_TIMEOUT: float = 15.0
    GOOGLE_API_TIMEOUT: float = 15.0

    # Retry Configuration (idempotent OAuth requests only)
    MAX_RETRIES: int = 3
    RETRY_BACKOFF_FACTOR: float = 2.0

    # Feature flags
    ENABLE_PROMETHEUS_METRICS: bool = True
    ENABLE_CRM_SYNC: bool = True

    # Call handling policy
    # team_inbox: any authenticated user may answer/reject an inbound call
    # owner_only: only the call owner or an admin may answer/reject
    CALL_ANSWER_POLICY: Literal["team_inbox", "owner_only"] = "team_inbox"
    CALL_REGISTRY_MAX_ENTRIES: int = 5000

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True


settings = Settings()

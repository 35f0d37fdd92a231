"""Configuration settings using pydantic-settings."""
import logging
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

# Export .env into the process so the OpenAI SDK can pick up OPENAI_API_KEY
load_dotenv()

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Telegram Bot
    BOT_TOKEN: str = Field(default="", description="Telegram Bot API token")
    ADMIN_ID: Optional[int] = Field(
        default=None,
        description="Telegram ID allowed to grant and revoke Pro access"
    )

    # Database
    DATABASE_PATH: str = Field(
        default="data/study_helper.db",
        description="Path to SQLite database file"
    )

    # LLM (any OpenAI-compatible endpoint)
    LLM_BASE_URL: Optional[str] = Field(
        default=None,
        description="Base URL of an OpenAI-compatible API (None = api.openai.com)"
    )
    LLM_API_KEY: Optional[str] = Field(
        default=None,
        description="API key; falls back to OPENAI_API_KEY when unset"
    )
    LLM_MODEL: str = Field(default="gpt-4o-mini", description="Model for text generation")
    LLM_VISION_MODEL: str = Field(
        default="gpt-4o-mini",
        description="Model for reading photographed handwriting"
    )
    LLM_JSON_MODE: bool = Field(
        default=True,
        description="Request response_format=json_object (disable for servers without it)"
    )
    LLM_TIMEOUT: float = Field(default=120.0, description="LLM request timeout in seconds")

    # Text limits sent to the model
    SOURCE_TEXT_LIMIT: int = Field(default=15000, description="Max chars of material for quizzes")
    GRADING_CONTEXT_LIMIT: int = Field(default=5000, description="Max chars of reference for grading")
    BLUEPRINT_TEXT_LIMIT: int = Field(default=10000, description="Max chars of material for blueprints")

    # Study rules
    MAX_QUESTIONS: int = Field(default=50, description="Upper bound of questions per quiz")
    MAX_SAVED_MATERIALS: int = Field(default=10, description="Recent materials kept per user")
    MIN_PASTED_TEXT_LENGTH: int = Field(default=50, description="Minimum pasted text length")
    HANDWRITING_RETRIES: int = Field(
        default=2,
        description="Photo retries per theory question when no handwriting is found"
    )
    PASS_SCORE: int = Field(default=70, description="Theory score counted as correct")
    MAX_UPLOAD_BYTES: int = Field(
        default=20 * 1024 * 1024,
        description="Largest document the bot will download"
    )

    # Usage limits
    FREE_DAILY_QUOTA: int = Field(default=3, description="Generations per day for free users")
    UPGRADE_URL: str = Field(
        default="https://paystack.com/pay/study-helper-pro",
        description="Payment page shown when the free quota is used up"
    )

    # Payments (Paystack webhook)
    PAYSTACK_SECRET_KEY: str = Field(default="", description="Paystack secret key")
    WEBHOOK_ENABLED: bool = Field(default=False, description="Serve the payment webhook")
    WEBHOOK_HOST: str = Field(default="0.0.0.0", description="Webhook bind address")
    WEBHOOK_PORT: int = Field(default=8080, description="Webhook port")
    WEBHOOK_PATH: str = Field(default="/paystack/webhook", description="Webhook route")
    SUBSCRIPTION_DAYS: int = Field(default=30, description="Pro period bought by one charge")

    # Logging
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    LOG_FILE: str = Field(
        default="data/logs/bot.log",
        description="Path to log file"
    )

    class Config:
        """Pydantic config."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


# Global settings instance
settings = Settings()

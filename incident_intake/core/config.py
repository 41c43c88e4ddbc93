"""
Application settings.
Loaded from environment variables (and .env when present).
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Settings loaded from .env"""

    # App
    APP_NAME: str = "Incident Intake"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # WhatsApp Cloud API
    # WHATSAPP_APP_SECRET enables X-Hub-Signature-256 checks on POST when set
    WHATSAPP_VERIFY_TOKEN: str = ""
    WHATSAPP_ACCESS_TOKEN: str = ""
    WHATSAPP_PHONE_NUMBER_ID: str = ""
    WHATSAPP_APP_SECRET: str = ""
    META_GRAPH_API_VERSION: str = "v21.0"

    # Media
    MEDIA_STORAGE_DIR: str = "media"
    MEDIA_MAX_BYTES: int = 16 * 1024 * 1024

    # AI providers (an empty key disables that provider)
    ANTHROPIC_API_KEY: str = ""
    CLAUDE_MODEL: str = "claude-3-5-haiku-20241022"

    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.0-flash-exp"
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"

    DEEPSEEK_API_KEY: str = ""
    DEEPSEEK_MODEL: str = "deepseek-chat"
    DEEPSEEK_BASE_URL: str = "https://api.deepseek.com"

    KIMI_API_KEY: str = ""
    KIMI_MODEL: str = "moonshot-v1-8k"
    KIMI_BASE_URL: str = "https://api.moonshot.cn/v1"

    # Comma-separated, first = preferred. Mock is always the last resort.
    AI_PROVIDER_PRIORITY: str = "claude,gemini,deepseek,kimi"

    # Per-provider rate limits / cost guard
    AI_REQUESTS_PER_MINUTE: int = 60
    AI_REQUESTS_PER_HOUR: int = 3600
    AI_TOKENS_PER_MINUTE: int = 200_000
    AI_TOKENS_PER_DAY: int = 10_000_000
    AI_MAX_COST_PER_HOUR: float = 10.0
    AI_MAX_COST_PER_DAY: float = 100.0

    # Timeouts (seconds)
    AI_TIMEOUT_SECONDS: float = 30.0
    AI_STREAM_TIMEOUT_SECONDS: float = 60.0
    AI_HEALTH_TIMEOUT_SECONDS: float = 5.0

    # Classifier
    CLASSIFIER_MAX_TOKENS: int = 500
    CLASSIFIER_TEMPERATURE: float = 0.3

    # Free messaging window (Meta customer service window)
    FREE_WINDOW_HOURS: int = 24

    @property
    def is_production(self) -> bool:
        """True when running in production."""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def provider_priority(self) -> list[str]:
        """
        Provider names in priority order.

        Unknown names are kept; the factory logs and skips them.
        """
        return [
            name.strip().lower()
            for name in self.AI_PROVIDER_PRIORITY.split(",")
            if name.strip()
        ]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore unrelated variables in .env


class ClassifierConfig:
    """Constants of the incident classifier."""

    SUBCATEGORY_MAX_CHARS: int = 100
    LOCATION_MAX_CHARS: int = 100
    NOTES_MAX_CHARS: int = 500

    DEFAULT_SUBCATEGORY: str = "General Issue"
    DEFAULT_LOCATION: str = "Unknown Location"
    DEFAULT_NOTES: str = "No additional details provided"


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings."""
    return Settings()


settings = get_settings()

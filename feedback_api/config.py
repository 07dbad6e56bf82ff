"""Application configuration via environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # App
    debug: bool = False
    environment: str = "development"

    # CORS: every site embedding the widget must be listed; defaults are local dev
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:8000",
    ]

    # Rate limiting (per client identity, fixed window)
    rate_limit_max: int = 10
    rate_limit_window_seconds: float = 60.0
    rate_limit_max_identities: int = 10_000

    # Submissions
    max_screenshot_bytes: int = 5 * 1024 * 1024

    # Generative AI classification (OpenAI-compatible API).
    # An empty key disables classification entirely.
    ai_api_key: str = ""
    ai_openai_endpoint: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    ai_model: str = "gemini-2.5-flash-lite"
    ai_timeout_seconds: float = 20.0

    # Azure Blob Storage
    azure_storage_account: str = "feedbacklayerstorage"
    azure_storage_connection_string: str = ""  # local dev / Azurite
    azure_feedback_container: str = "feedback"
    azure_screenshot_container: str = "feedback-screenshots"

    # Azure User-Assigned Managed Identity (used when no connection string)
    managed_identity_client_id: str = ""

    # Email notifications (Resend). Both key and recipient must be set.
    resend_api_key: str = ""
    resend_from_email: str = "feedback@yourdomain.com"
    feedback_notify_email: str = ""
    notification_drain_timeout_seconds: float = 10.0

    model_config = {"env_file": ".env", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    return Settings()

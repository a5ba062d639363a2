"""Configuration management for the document intake engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Pick up a local .env when one is readable
try:
    load_dotenv()
except (PermissionError, OSError):
    # Unreadable .env (e.g. sandboxed container); rely on the real environment
    pass


class Settings(BaseSettings):
    """Intake engine settings, read from the environment and .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Environment
    INTAKE_ENV: str = Field(default="dev", description="Environment: dev, staging, prod, test")

    # Anthropic configuration (optional: without a key every AI call degrades)
    ANTHROPIC_API_KEY: str | None = Field(default=None, description="Anthropic API key")
    CLASSIFY_MODEL: str = Field(
        default="claude-haiku-4-5-20251001", description="Model for document classification"
    )
    EXTRACT_MODEL: str = Field(
        default="claude-haiku-4-5-20251001",
        description="Model for memory detection and document-request extraction",
    )
    CHAT_MODEL: str = Field(default="claude-sonnet-4-20250514", description="Model for chat turns")
    SYNTHESIS_MODEL: str = Field(
        default="claude-sonnet-4-20250514", description="Model for notes synthesis"
    )
    CHAT_MAX_TOKENS: int = Field(default=2048, description="Max tokens for a chat reply")
    CHAT_HISTORY_WINDOW: int = Field(
        default=10, description="Number of prior chat messages sent with a turn"
    )
    LLM_TIMEOUT_SECONDS: float = Field(default=60.0, description="Per-request LLM timeout")
    LLM_MAX_RETRIES: int = Field(
        default=2, description="SDK-level retries for transient LLM transport errors"
    )

    # Upload limits and storage
    MAX_UPLOAD_BYTES: int = Field(default=20_000_000, description="Max file upload size in bytes")
    MAX_DOCUMENT_TEXT_CHARS: int = Field(
        default=4000, description="Max extracted characters sent for classification"
    )
    UPLOAD_DIR: str = Field(default="uploads", description="Directory for stored upload files")

    # Repository backend
    REPOSITORY_BACKEND: str = Field(default="memory", description="Repository: memory or supabase")
    SUPABASE_URL: str | None = Field(default=None, description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str | None = Field(
        default=None, description="Supabase service role key"
    )

    # Progress broadcasting
    PROGRESS_QUEUE_SIZE: int = Field(
        default=64, description="Per-listener buffered progress events before the listener is dropped"
    )


@lru_cache
def get_settings() -> Settings:
    """
    Return the process-wide settings, built on first use.

    Returns:
        Settings instance

    Raises:
        ValidationError: If environment variables fail validation
    """
    return Settings()

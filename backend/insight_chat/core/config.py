"""
Centralized configuration management.

All application configuration is loaded and validated here.
"""
import os
import logging
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class Settings(BaseModel):
    """Application settings with validation."""

    # File upload settings
    max_file_size_mb: int = Field(default=50, ge=1, le=1000, description="Maximum upload size in MB")

    # Rate limiting
    rate_limit_per_minute: int = Field(default=10, ge=1, le=1000, description="Rate limit per minute per IP")

    # Request timeout
    request_timeout_seconds: int = Field(default=300, ge=1, le=3600, description="Request timeout in seconds")

    # CORS
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    # Completion service
    ai_provider: str = Field(default="gemini", description="Structured-completion provider: gemini or groq")
    gemini_model: str = Field(default="gemini-2.5-flash", description="Gemini model to use")
    groq_model: str = Field(default="llama-3.3-70b-versatile", description="Groq model to use")
    analysis_temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    pre_analysis_temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    summary_temperature: float = Field(default=0.2, ge=0.0, le=2.0)

    # Retry policy for quota-class failures
    max_retries: int = Field(default=3, ge=1, le=10, description="Maximum completion attempts")
    retry_base_delay_seconds: float = Field(default=1.0, ge=0.0, le=60.0, description="Backoff base delay")

    # Conversation memory
    history_char_threshold: int = Field(default=4000, ge=200, le=200000, description="Transcript size that triggers summarization")
    recent_turns_kept: int = Field(default=4, ge=1, le=50, description="Turns kept verbatim once summarizing")

    # Prompt sampling
    prompt_sample_lines: int = Field(default=200, ge=1, le=5000, description="CSV data lines sent with a question")
    quick_sample_lines: int = Field(default=20, ge=1, le=200, description="CSV data lines sent for pre-analysis")
    response_language: str = Field(default="English", description="Language the model must answer in")

    # Sessions and transcripts
    session_ttl_seconds: int = Field(default=3600, ge=60, le=86400, description="Idle session lifetime")
    storage_backend: str = Field(default="memory", description="Transcript store: memory or redis")
    redis_url: Optional[str] = Field(default=None, description="Redis URL for the redis transcript store")

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}, got '{v}'")
        return v.upper()

    @field_validator('ai_provider')
    @classmethod
    def validate_ai_provider(cls, v: str) -> str:
        valid = ["gemini", "groq"]
        if v.lower() not in valid:
            raise ValueError(f"AI_PROVIDER must be one of {valid}, got '{v}'")
        return v.lower()

    @field_validator('storage_backend')
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        valid = ["memory", "redis"]
        if v.lower() not in valid:
            raise ValueError(f"STORAGE_BACKEND must be one of {valid}, got '{v}'")
        return v.lower()

    @property
    def max_file_size_bytes(self) -> int:
        """Get max file size in bytes."""
        return self.max_file_size_mb * 1024 * 1024

    @property
    def allowed_origins_list(self) -> List[str]:
        """Get allowed origins as a list."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        return cls(
            max_file_size_mb=int(os.getenv("MAX_FILE_SIZE_MB", "50")),
            rate_limit_per_minute=int(os.getenv("RATE_LIMIT_PER_MINUTE", "10")),
            request_timeout_seconds=int(os.getenv("REQUEST_TIMEOUT_SECONDS", "300")),
            allowed_origins=os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            ai_provider=os.getenv("AI_PROVIDER", "gemini"),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
            groq_model=os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile"),
            analysis_temperature=float(os.getenv("ANALYSIS_TEMPERATURE", "0.3")),
            pre_analysis_temperature=float(os.getenv("PRE_ANALYSIS_TEMPERATURE", "0.2")),
            summary_temperature=float(os.getenv("SUMMARY_TEMPERATURE", "0.2")),
            max_retries=int(os.getenv("MAX_RETRIES", "3")),
            retry_base_delay_seconds=float(os.getenv("RETRY_BASE_DELAY_SECONDS", "1.0")),
            history_char_threshold=int(os.getenv("HISTORY_CHAR_THRESHOLD", "4000")),
            recent_turns_kept=int(os.getenv("RECENT_TURNS_KEPT", "4")),
            prompt_sample_lines=int(os.getenv("PROMPT_SAMPLE_LINES", "200")),
            quick_sample_lines=int(os.getenv("QUICK_SAMPLE_LINES", "20")),
            response_language=os.getenv("RESPONSE_LANGUAGE", "English"),
            session_ttl_seconds=int(os.getenv("SESSION_TTL_SECONDS", "3600")),
            storage_backend=os.getenv("STORAGE_BACKEND", "memory"),
            redis_url=os.getenv("REDIS_URL") or None,
        )


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
        logger.info("Configuration loaded and validated successfully")
    return _settings


def reload_settings() -> Settings:
    """Reload settings (useful for testing)."""
    global _settings
    _settings = None
    return get_settings()

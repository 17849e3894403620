"""Configuration management for the alert escalation caller."""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from alertcall.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings with validation."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Alert Escalation Caller"
    VERSION: str = "0.1.0"
    DEBUG: bool = Field(default=False, description="Enable debug mode")
    ENVIRONMENT: str = Field(default="development", description="Environment")

    # API Configuration
    API_V1_STR: str = "/api/v1"
    HOST: str = Field(default="0.0.0.0", description="Host to bind")
    PORT: int = Field(default=8000, description="Port to bind")
    PUBLIC_BASE_URL: str = Field(
        default="http://localhost:8000",
        description="Externally reachable base URL used in provider callbacks"
    )

    # Database
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./alertcall.db",
        description="Database connection URL"
    )

    # Twilio Voice
    TWILIO_ACCOUNT_SID: str = Field(default="", description="Twilio Account SID")
    TWILIO_AUTH_TOKEN: str = Field(default="", description="Twilio Auth Token")
    TWILIO_FROM_NUMBER: str = Field(default="", description="Twilio caller ID")

    # Escalation Configuration
    CALL_TIMEOUT_SECONDS: int = Field(
        default=30,
        ge=5,
        description="How long the provider lets a call ring before giving up"
    )
    CONFIRMATION_GRACE_SECONDS: float = Field(
        default=60,
        ge=0,
        description="Extra time to wait for a keypress after the ring timeout"
    )
    MAX_ESCALATION_LOOPS: int = Field(
        default=3,
        ge=1,
        description="Maximum passes through the contact chain"
    )
    CONFIRMATION_POLL_INTERVAL_SECONDS: float = Field(
        default=2.0,
        gt=0,
        description="How often the waiter re-reads the call record"
    )
    INTER_CONTACT_DELAY_SECONDS: float = Field(
        default=2.0,
        ge=0,
        description="Pause between two contacts of the same loop"
    )
    INTER_LOOP_DELAY_SECONDS: float = Field(
        default=5.0,
        ge=0,
        description="Pause before starting the next loop"
    )
    HANGUP_ON_TIMEOUT: bool = Field(
        default=True,
        description="Hang up a call that is still live when its wait times out"
    )

    # Voice script
    GATHER_TIMEOUT_SECONDS: int = Field(
        default=10,
        description="Seconds the callee has to press a key"
    )
    CONFIRM_DIGIT: str = Field(default="1", description="Digit that confirms")
    VOICE_NAME: str = Field(default="Polly.Joanna-Neural", description="TTS voice")
    VOICE_LANGUAGE: str = Field(default="en-US", description="TTS language")

    # Processing Configuration
    ALERT_POLL_INTERVAL_SECONDS: int = Field(
        default=120,
        description="How often to look for new alerts (seconds)"
    )
    CONTACTS_FILE: Optional[str] = Field(
        default=None,
        description="Optional JSON file holding the escalation chain"
    )

    # Monitoring
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    # Features
    ENABLE_ESCALATION: bool = Field(
        default=True,
        description="Enable automatic escalation of new alerts"
    )

    @field_validator("PUBLIC_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Callback URLs are built by appending paths."""
        return v.rstrip("/")

    @field_validator("CONFIRM_DIGIT")
    @classmethod
    def validate_confirm_digit(cls, v: str) -> str:
        """Confirmation must be a single keypad key."""
        if len(v) != 1 or v not in "0123456789*#":
            raise ValueError("CONFIRM_DIGIT must be a single keypad key")
        return v

    @property
    def per_contact_timeout(self) -> float:
        """Upper bound on waiting for one contact to resolve."""
        return self.CALL_TIMEOUT_SECONDS + self.CONFIRMATION_GRACE_SECONDS

    def require_call_provider(self) -> None:
        """Fail fast when the call provider cannot be used."""
        missing = [
            name
            for name in ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_FROM_NUMBER", "PUBLIC_BASE_URL")
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(
                f"Missing call provider configuration: {', '.join(missing)}"
            )


# Global settings instance
settings = Settings()

"""Configuration management for RezKyoo using Pydantic."""

import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Config(BaseSettings):
    """RezKyoo settings, read from the environment and an optional .env file.

    Only the HTTP and CLI edges call ``get_config``; the batch coordinator and
    call state machine are handed the values they need at construction.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # OpenAI Configuration
    openai_api_key: str = Field(..., description="OpenAI API key")
    classifier_model: str = Field(
        default="gpt-4o-mini", description="Model for outcome and menu classification"
    )
    parser_model: str = Field(
        default="gpt-4o-mini", description="Model for dining preference parsing"
    )
    transcription_model: str = Field(
        default="whisper-1", description="Speech-to-text model for recordings"
    )

    # Twilio Configuration
    twilio_account_sid: str | None = Field(None, description="Twilio account SID")
    twilio_auth_token: str | None = Field(None, description="Twilio auth token")
    twilio_phone_number: str | None = Field(None, description="Twilio phone number")
    verify_twilio_signature: bool = Field(
        default=False, description="Reject webhooks without a valid X-Twilio-Signature"
    )

    # Google Maps Configuration
    google_maps_api_key: str | None = Field(None, description="Google Maps API key")

    # Server Configuration
    server_host: str = Field(default="0.0.0.0", description="Server host")
    server_port: int = Field(default=3000, description="Server port")
    server_url: str = Field(
        default="http://localhost:3000",
        description="Server URL for CLI to connect to API",
    )
    public_domain: str | None = Field(
        None, description="Public domain for Twilio webhooks (e.g., abc123.ngrok.io)"
    )
    database_path: str | None = Field(
        None, description="SQLite file for batches and calls (in-memory when unset)"
    )

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")

    # Batch Configuration
    calls_per_batch: int = Field(default=5, gt=0, description="Calls dialed per page")
    max_calls_per_batch: int = Field(
        default=10, gt=0, description="Hard ceiling on calls dialed per page"
    )
    min_candidates: int = Field(
        default=12, description="Widen the search radius until this many are callable"
    )
    max_candidates: int = Field(
        default=40, description="Maximum ranked candidates kept per batch"
    )
    max_textsearch_pages: int = Field(
        default=2, description="Result pages fetched per text search query"
    )
    default_radius_km: float = Field(default=5.0, description="Initial search radius")
    radius_step_km: float = Field(default=4.0, description="Radius added per widening")
    radius_steps: int = Field(default=3, description="Number of radii tried")

    # Call Configuration
    caller_name: str = Field(default="RezKyoo", description="Name used on calls")
    callback_number: str = Field(
        default="", description="Number left in voicemail messages"
    )
    ivr_probe_seconds: int = Field(
        default=6, description="Length of the recording used to capture a phone menu"
    )
    answer_max_seconds: int = Field(
        default=30, description="Maximum length of the recorded answer"
    )
    answer_silence_seconds: int = Field(
        default=3, description="Trailing silence that ends the answer recording"
    )
    voicemail_hangup_delay_seconds: float = Field(
        default=12.0, description="Wait before hanging up after a voicemail message"
    )
    closing_hangup_delay_seconds: float = Field(
        default=4.0, description="Wait before hanging up after the closing remark"
    )
    classification_timeout_seconds: float = Field(
        default=120.0,
        description="Close out a hung-up call whose answer was never classified after this long",
    )

    def has_twilio_config(self) -> bool:
        """Check if Twilio is properly configured."""
        return bool(
            self.twilio_account_sid
            and self.twilio_auth_token
            and self.twilio_phone_number
        )

    def page_size(self, requested: int | None = None) -> int:
        """Calls to dial for one page, bounded by the server-side maximum.

        Args:
            requested: Caller-supplied cap (defaults to calls_per_batch)

        Returns:
            Number of candidates to dial
        """
        size = requested or self.calls_per_batch
        return max(1, min(size, self.max_calls_per_batch))

    def model_post_init(self, __context) -> None:
        """Validate configuration after initialization."""
        if not self.has_twilio_config():
            logger.warning("Twilio credentials not set - outbound calls disabled")

        if not self.public_domain:
            logger.warning("PUBLIC_DOMAIN not set - Twilio cannot reach the webhooks")

        if not self.google_maps_api_key:
            logger.warning("GOOGLE_MAPS_API_KEY not set - restaurant search disabled")


_config: Config | None = None


def get_config() -> Config:
    """Configuration for the server and CLI entry points, built on first use."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def setup_logging(cfg: Config | None = None) -> None:
    """Configure root logging from ``cfg.log_level``."""
    cfg = cfg or get_config()
    level = getattr(logging, cfg.log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Webhook traffic and SDK request logs drown out call transitions
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("twilio").setLevel(logging.WARNING)

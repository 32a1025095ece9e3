"""Application configuration via environment variables."""

from __future__ import annotations

import logging

from pydantic import field_validator
from pydantic_settings import BaseSettings

log = logging.getLogger("slotproxy.config")

_LOG_LEVELS = {"critical", "error", "warning", "warn", "info", "debug"}


class Settings(BaseSettings):
    # Cal.com
    calcom_api_key: str = ""
    calcom_base_url: str = "https://api.cal.com"
    calcom_api_version: str = "2024-08-13"
    calcom_timeout: float = 30.0

    # Slots
    slot_duration_minutes: int = 15

    # Server
    environment: str = "development"
    host: str = "127.0.0.1"
    port: int = 3000
    debug: bool = False
    log_level: str = "info"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, value: str) -> str:
        level = value.strip().lower()
        if level not in _LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {sorted(_LOG_LEVELS)}")
        return "warning" if level == "warn" else level

    @property
    def logging_level(self) -> int:
        return logging.getLevelName(self.log_level.upper())

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []
        _placeholders = {"cal_live_...", "your-api-key", "changeme"}

        # Cal.com key is required
        if not self.calcom_api_key or self.calcom_api_key in _placeholders:
            raise ValueError(
                "Missing required environment variables: CALCOM_API_KEY. "
                "Set it in .env to reach the Cal.com API."
            )

        if not 1 <= self.port <= 65535:
            raise ValueError("Port must be between 1 and 65535")

        if self.slot_duration_minutes <= 0:
            raise ValueError("SLOT_DURATION_MINUTES must be a positive number of minutes")

        if not self.calcom_base_url.startswith("https://"):
            warnings.append(
                f"CALCOM_BASE_URL ({self.calcom_base_url}) is not https; "
                "the API key will be sent in clear text."
            )

        if self.debug and self.environment == "production":
            warnings.append("DEBUG=true in production enables auto-reload.")

        return warnings


settings = Settings()

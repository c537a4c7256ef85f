"""Configuration utilities for gnomalies."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOGGER_NAME = "gnomalies"
ENV_FILE = ".env"


class Settings(BaseSettings):
    """Environment-backed settings read from ``GNOMALIES_*`` variables."""

    log_level: str = Field(default="INFO", description="Level for the gnomalies package logger")
    fingerprint_algorithm: Literal["sha256", "sha3_256"] = Field(
        default="sha256",
        description="256-bit digest used for system fingerprints",
    )
    mirror_history: bool = Field(
        default=True,
        description="Mirror every anomaly history entry into the logging module",
    )

    model_config = SettingsConfigDict(
        env_prefix="GNOMALIES_",
        extra="ignore",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_level(cls, value: object) -> str:
        if isinstance(value, int):
            return logging.getLevelName(value)
        text = str(value).strip().upper()
        if text == "WARN":
            text = "WARNING"
        if text not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"}:
            raise ValueError(f"Unknown log level: {value}")
        return text


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, loaded once.

    A ``.env`` file in the working directory is loaded into the environment
    first; variables that are already set take precedence.
    """

    load_dotenv(ENV_FILE, override=False)
    return Settings()


def configure_logging(settings: Optional[Settings] = None) -> logging.Logger:
    """Apply ``settings.log_level`` to the package logger and return it."""

    settings = settings or get_settings()
    package_logger = logging.getLogger(LOGGER_NAME)
    package_logger.setLevel(settings.log_level)
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        package_logger.addHandler(handler)
    return package_logger


__all__ = ["LOGGER_NAME", "Settings", "configure_logging", "get_settings"]

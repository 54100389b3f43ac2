"""Configuration system for openrecorder."""

import logging
import os
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def _parse_bool(value: str) -> bool:
    return value.lower()[:1] in 'ty1'


def _parse_seconds(value: str | None, default: float | None) -> float | None:
    """Parse a seconds value, treating 0/none/off as 'no bound'."""
    if value is None or value == '':
        return default
    if value.lower() in ('none', 'off', 'null'):
        return None
    try:
        parsed = float(value)
    except (ValueError, TypeError):
        logger.warning(f'Invalid seconds value {value!r}, using default {default}')
        return default
    if parsed < 0:
        return default
    return parsed or None


class EnvConfig(BaseSettings):
    """Environment variable configuration using pydantic-settings."""

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=True,
        extra='allow'
    )

    # Logging
    OPENRECORDER_LOGGING_LEVEL: str = Field(default='info')
    CDP_LOGGING_LEVEL: str = Field(default='WARNING')

    # Recording behaviour
    OPENRECORDER_COMMAND_TIMEOUT: str | None = Field(default=None)
    OPENRECORDER_SIZE_UPDATE_INTERVAL: str | None = Field(default=None)
    OPENRECORDER_PARTIAL_REFETCH_DELAY: str | None = Field(default=None)
    OPENRECORDER_RELOAD_ON_ATTACH: bool | None = Field(default=None)

    # Connection
    OPENRECORDER_CDP_URL: str | None = Field(default=None)


class Config:
    """Configuration class that merges environment and defaults.

    Re-reads environment variables on every access for flexibility.
    """

    _instance: 'Config | None' = None

    def __new__(cls) -> 'Config':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def LOGGING_LEVEL(self) -> str:
        return os.getenv('OPENRECORDER_LOGGING_LEVEL', 'info').lower()

    @property
    def CDP_LOGGING_LEVEL(self) -> str:
        return os.getenv('CDP_LOGGING_LEVEL', 'WARNING').upper()

    @property
    def COMMAND_TIMEOUT(self) -> float | None:
        return _parse_seconds(os.getenv('OPENRECORDER_COMMAND_TIMEOUT'), 30.0)

    @property
    def SIZE_UPDATE_INTERVAL(self) -> float:
        return _parse_seconds(os.getenv('OPENRECORDER_SIZE_UPDATE_INTERVAL'), 3.0) or 3.0

    @property
    def PARTIAL_REFETCH_DELAY(self) -> float:
        return _parse_seconds(os.getenv('OPENRECORDER_PARTIAL_REFETCH_DELAY'), 0.5) or 0.0

    @property
    def RELOAD_ON_ATTACH(self) -> bool:
        return _parse_bool(os.getenv('OPENRECORDER_RELOAD_ON_ATTACH', 'true'))

    @property
    def CDP_URL(self) -> str | None:
        return os.getenv('OPENRECORDER_CDP_URL') or None

    def load_config(self) -> dict[str, Any]:
        """Load recorder configuration, with .env file values as fallback."""
        env_config = EnvConfig()

        config: dict[str, Any] = {
            'command_timeout': _parse_seconds(env_config.OPENRECORDER_COMMAND_TIMEOUT, self.COMMAND_TIMEOUT),
            'size_update_interval': _parse_seconds(
                env_config.OPENRECORDER_SIZE_UPDATE_INTERVAL, self.SIZE_UPDATE_INTERVAL
            ) or 3.0,
            'partial_refetch_delay': _parse_seconds(
                env_config.OPENRECORDER_PARTIAL_REFETCH_DELAY, self.PARTIAL_REFETCH_DELAY
            ) or 0.0,
            'reload_on_attach': self.RELOAD_ON_ATTACH,
        }
        if env_config.OPENRECORDER_RELOAD_ON_ATTACH is not None:
            config['reload_on_attach'] = env_config.OPENRECORDER_RELOAD_ON_ATTACH

        return config


# Create singleton instance
CONFIG = Config()


def load_openrecorder_config() -> dict[str, Any]:
    """Load openrecorder configuration."""
    return CONFIG.load_config()

"""
Centralized Configuration for FlowTutor

This module provides the configuration system for the tutoring core.
It handles configuration from environment variables, config files, and defaults,
with proper type checking and validation.
"""

import os
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Type
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from flowtutor.common.error_handling import ConfigurationError

# Configure logging
logger = logging.getLogger(__name__)


class LoggingConfig(BaseModel):
    """Logging configuration"""
    level: str = "INFO"
    format: str = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
    use_json: bool = False
    file_path: Optional[str] = None

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level"""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class StorageConfig(BaseModel):
    """Record store configuration"""
    url: str = "memory://"
    echo: bool = False
    pool_size: int = Field(default=5, ge=1)

    @property
    def is_memory(self) -> bool:
        """Check whether the in-process store is selected"""
        return self.url.startswith("memory://")


class RedisConfig(BaseModel):
    """Redis configuration"""
    enabled: bool = False
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    use_ssl: bool = False
    connection_timeout: int = 10
    key_prefix: str = "flowtutor:"

    @property
    def connection_string(self) -> str:
        """Get the Redis connection string"""
        protocol = "rediss" if self.use_ssl else "redis"
        auth = f":{self.password}@" if self.password else ""
        return f"{protocol}://{auth}{self.host}:{self.port}/{self.db}"


class LedgerConfig(BaseModel):
    """Ledger transaction and calendar configuration"""
    max_retries: int = 5
    retry_delay: float = 0.01
    backoff_factor: float = 2.0
    jitter: float = 0.1
    reference_timezone: str = "UTC"
    calendar_days: int = Field(default=30, ge=1)

    @field_validator('max_retries')
    @classmethod
    def validate_retries(cls, v):
        """Validate retry count is non-negative"""
        if v < 0:
            raise ValueError(f"max_retries must be non-negative, got {v}")
        return v

    @field_validator('retry_delay', 'backoff_factor', 'jitter')
    @classmethod
    def validate_non_negative(cls, v):
        """Validate retry timings are non-negative"""
        if v < 0:
            raise ValueError(f"Retry settings must be non-negative, got {v}")
        return v

    @field_validator('reference_timezone')
    @classmethod
    def validate_timezone(cls, v):
        """Validate the timezone resolves through zoneinfo"""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        """Reference timezone used for same-day and yesterday comparisons"""
        return ZoneInfo(self.reference_timezone)


class AppConfig(BaseSettings):
    """Main application configuration"""
    model_config = SettingsConfigDict(
        env_prefix="FLOWTUTOR_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore"
    )

    app_name: str = "FlowTutor"
    version: str = "1.0.0"
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # Environment beats the config file, which arrives as init kwargs
        return env_settings, dotenv_settings, init_settings, file_secret_settings


class ConfigLoader:
    """
    Configuration loader for the application.

    Loads configuration from:
    1. Default values
    2. Config file
    3. Environment variables (highest priority)
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the config loader.

        Args:
            config_path: Path to config file (YAML or JSON)
        """
        self.config_path = config_path or os.environ.get("FLOWTUTOR_CONFIG_PATH")
        self._config: Optional[AppConfig] = None

    def load(self) -> AppConfig:
        """
        Load configuration from all sources.

        Returns:
            Loaded configuration
        """
        if self._config is not None:
            return self._config

        file_config: Dict[str, Any] = {}
        if self.config_path:
            file_config = self._load_from_file(self.config_path)

        self._config = AppConfig(**file_config)
        return self._config

    def _load_from_file(self, path: str) -> Dict[str, Any]:
        """
        Load configuration from a file.

        Args:
            path: Path to config file

        Returns:
            Loaded configuration dictionary

        Raises:
            ConfigurationError: If the file exists but cannot be parsed
        """
        path = Path(path)
        if not path.exists():
            logger.warning(f"Config file not found: {path}")
            return {}

        try:
            if path.suffix.lower() in ['.yaml', '.yml']:
                with open(path, 'r') as f:
                    return yaml.safe_load(f) or {}
            elif path.suffix.lower() == '.json':
                with open(path, 'r') as f:
                    return json.load(f)
            else:
                logger.warning(f"Unsupported config file format: {path.suffix}")
                return {}
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"cannot read {path}: {e}", config_key="config_path") from e


_config_loader: Optional[ConfigLoader] = None


def get_config() -> AppConfig:
    """
    Get the loaded configuration, loading it on first use.

    Returns:
        Loaded configuration
    """
    global _config_loader
    if _config_loader is None:
        _config_loader = ConfigLoader()
    return _config_loader.load()


def reload_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Reload the configuration.

    Args:
        config_path: Path to config file

    Returns:
        Reloaded configuration
    """
    global _config_loader
    _config_loader = ConfigLoader(config_path)
    return _config_loader.load()

"""
Configuration module for stepsync.

Loads configuration from environment variables. Command line flags override
the values loaded here.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class RegistryConfig:
    """Remote registry backend configuration."""

    backend: str = "webapi"
    url: str = ""
    token: str = field(default="", repr=False)  # Never log token
    api_version: str = "9.2"
    timeout: float = 30.0  # seconds per remote call
    # Extra backend-specific settings keyed by option name
    options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        options = {}
        if os.getenv("REGISTRY_OPTIONS"):
            try:
                options = json.loads(os.getenv("REGISTRY_OPTIONS"))
            except json.JSONDecodeError as e:
                logger.warning(f"Ignoring invalid REGISTRY_OPTIONS: {e}")

        return cls(
            backend=os.getenv("STEPSYNC_BACKEND", "webapi"),
            url=os.getenv("DATAVERSE_URL", ""),
            token=os.getenv("DATAVERSE_TOKEN", ""),
            api_version=os.getenv("DATAVERSE_API_VERSION", "9.2"),
            timeout=float(os.getenv("REGISTRY_TIMEOUT", "30")),
            options=options,
        )

    def backend_config(self) -> Dict[str, Any]:
        """Configuration dict handed to the backend's initialize()."""
        config = dict(self.options)
        if self.url:
            config["url"] = self.url
        if self.token:
            config["token"] = self.token
        config["api_version"] = self.api_version
        config["timeout"] = self.timeout
        return config


@dataclass
class ApplyConfig:
    """Apply phase retry configuration."""

    max_retries: int = 3

    # Exponential backoff configuration for throttled calls
    backoff_base_delay: float = 1.0  # base delay in seconds
    backoff_max_delay: float = 30.0  # max delay in seconds
    backoff_jitter_factor: float = 0.1  # ±10% jitter

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            max_retries=int(os.getenv("MAX_RETRIES", "3")),
            backoff_base_delay=float(os.getenv("BACKOFF_BASE_DELAY", "1")),
            backoff_max_delay=float(os.getenv("BACKOFF_MAX_DELAY", "30")),
            backoff_jitter_factor=float(os.getenv("BACKOFF_JITTER_FACTOR", "0.1")),
        )


@dataclass
class SyncConfig:
    """Run defaults."""

    scope: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            scope=os.getenv("STEPSYNC_SCOPE") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


@dataclass
class Config:
    """Main configuration object."""

    registry: RegistryConfig
    apply: ApplyConfig
    sync: SyncConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            registry=RegistryConfig.from_env(),
            apply=ApplyConfig.from_env(),
            sync=SyncConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            registry=RegistryConfig(),
            apply=ApplyConfig(),
            sync=SyncConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None

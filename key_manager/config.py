"""Configuration for the key manager.

Values come from, in increasing priority: built-in defaults, environment
variables (a ``.env`` file is loaded first), an optional YAML file, and
explicit overrides such as CLI options.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Union

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .client.models import ConfigurationError, RetryConfig
from .client.transport import DEFAULT_BASE_URL

load_dotenv()

PROVISIONING_KEY_ENV = "OPENROUTER_PROVISIONING_KEY"


class ManagerConfig(BaseModel):
    """Configuration for the key manager."""

    # Provisioning API
    provisioning_key: Optional[str] = Field(
        default_factory=lambda: os.getenv(PROVISIONING_KEY_ENV),
        repr=False,
        description="Provisioning key used as bearer token",
    )
    base_url: str = Field(
        default_factory=lambda: os.getenv("OPENROUTER_BASE_URL", DEFAULT_BASE_URL),
        description="Provisioning API root URL",
    )

    # Retry policy
    max_retries: int = Field(
        default_factory=lambda: int(os.getenv("KEY_MANAGER_MAX_RETRIES", "3")),
        ge=0,
        description="Retries beyond the first attempt",
    )
    timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("KEY_MANAGER_TIMEOUT_SECONDS", "30")),
        gt=0,
        description="Per-request timeout in seconds",
    )
    initial_backoff_seconds: float = Field(
        default_factory=lambda: float(
            os.getenv("KEY_MANAGER_INITIAL_BACKOFF_SECONDS", "1")
        ),
        ge=0,
        description="Base backoff delay and jitter ceiling",
    )
    max_backoff_seconds: float = Field(
        default_factory=lambda: float(os.getenv("KEY_MANAGER_MAX_BACKOFF_SECONDS", "30")),
        ge=0,
        description="Cap on exponential backoff",
    )

    # Logging
    log_level: str = Field(
        default_factory=lambda: os.getenv("KEY_MANAGER_LOG_LEVEL", "WARNING"),
        description="Log level for stderr logging",
    )
    development_mode: bool = Field(
        default_factory=lambda: os.getenv("DEVELOPMENT_MODE", "false").lower()
        == "true",
        description="Human-readable console logs instead of JSON",
    )

    @classmethod
    def load(
        cls,
        config_file: Optional[Union[str, Path]] = None,
        **overrides: Any,
    ) -> "ManagerConfig":
        """Build the configuration from env, an optional YAML file and overrides.

        Raises:
            ConfigurationError: Unreadable file or invalid values
        """
        values: Dict[str, Any] = {}
        if config_file:
            path = Path(config_file)
            try:
                loaded = yaml.safe_load(path.read_text()) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
            if not isinstance(loaded, dict):
                raise ConfigurationError(f"Config file {path} must contain a mapping")
            values.update(loaded)

        values.update({k: v for k, v in overrides.items() if v is not None})

        try:
            return cls(**values)
        except ValueError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def require_provisioning_key(self) -> str:
        if not self.provisioning_key:
            raise ConfigurationError(
                f"Provisioning key not found. Set {PROVISIONING_KEY_ENV} environment "
                "variable or use --provisioning-key option"
            )
        return self.provisioning_key

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_retries=self.max_retries,
            initial_delay_seconds=self.initial_backoff_seconds,
            max_delay_seconds=self.max_backoff_seconds,
            timeout_seconds=self.timeout_seconds,
        )


def configure_logging(level: str = "WARNING", development_mode: bool = False) -> None:
    """Route structlog through stdlib logging on stderr."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.WARNING),
        force=True,
    )

    renderer = (
        structlog.dev.ConsoleRenderer()
        if development_mode
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

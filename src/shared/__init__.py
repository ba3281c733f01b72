"""Shared models, configuration, errors and logging for the SailMatch AI core."""

from shared.config import GatewayConfig, Settings, get_settings
from shared.errors import (
    AllProvidersFailedError,
    ConfigurationError,
    DataIntegrityError,
    ParseError,
    ProviderError,
    SailMatchError,
    ToolPermissionError,
)
from shared.logging import get_logger, setup_logging

__all__ = [
    "GatewayConfig",
    "Settings",
    "get_settings",
    "AllProvidersFailedError",
    "ConfigurationError",
    "DataIntegrityError",
    "ParseError",
    "ProviderError",
    "SailMatchError",
    "ToolPermissionError",
    "get_logger",
    "setup_logging",
]

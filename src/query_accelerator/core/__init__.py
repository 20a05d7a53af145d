"""Configuration, logging and exception primitives shared by every layer."""

from .config import AccelerationConfig, Environment, Settings, get_settings, reset_settings
from .exceptions import (
    BackendException,
    BackendTimeoutException,
    BaseApplicationException,
    ConfigurationException,
    CrossEngineDisabledException,
    DatabaseException,
    NotFoundException,
    ValidationException,
)
from .logging import get_logger, get_logger_with_context

__all__ = [
    "AccelerationConfig",
    "Environment",
    "Settings",
    "get_settings",
    "reset_settings",
    "BackendException",
    "BackendTimeoutException",
    "BaseApplicationException",
    "ConfigurationException",
    "CrossEngineDisabledException",
    "DatabaseException",
    "NotFoundException",
    "ValidationException",
    "get_logger",
    "get_logger_with_context",
]

"""Core configuration, persistence and hashing utilities."""

from .exceptions import (  # noqa: F401
    ConfigurationError,
    ConversionError,
    FingerprintError,
    PreconditionError,
    RemoteConflictError,
    RemoteNotFoundError,
    RPCHandshakeError,
    StackMigrationError,
    TfeApiError,
)
from .settings import StackMigrationSettings, get_settings  # noqa: F401

__all__ = [
    "ConfigurationError",
    "ConversionError",
    "FingerprintError",
    "PreconditionError",
    "RemoteConflictError",
    "RemoteNotFoundError",
    "RPCHandshakeError",
    "StackMigrationError",
    "TfeApiError",
    "StackMigrationSettings",
    "get_settings",
]

"""
Core utilities and configuration for the school roster sync.

Modules:
    config: Application configuration and environment variable management
    database: Async engine and session management
    exceptions: Exception hierarchy shared by every sync stage
    logging: Logging configuration

Usage:
    from core.config import settings
    from core.database import async_session_maker
    from core.exceptions import AuthError, PersistenceError
    from core.logging import setup_logging
"""

from core.config import settings
from core.logging import setup_logging
from core.exceptions import (
    SyncException,
    ConfigurationError,
    ExtractionError,
    AuthError,
    TransientHttpError,
    PermanentHttpError,
    ResponseShapeError,
    TransformationError,
    ParseError,
    LoadError,
    PersistenceError,
    RetryableError,
    NonRetryableError,
)

__all__ = [
    "settings",
    "setup_logging",
    # Exceptions
    "SyncException",
    "ConfigurationError",
    "ExtractionError",
    "AuthError",
    "TransientHttpError",
    "PermanentHttpError",
    "ResponseShapeError",
    "TransformationError",
    "ParseError",
    "LoadError",
    "PersistenceError",
    "RetryableError",
    "NonRetryableError",
]

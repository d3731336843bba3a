"""
Custom exception classes for the reconciliation engine.
Provides structured error handling across all modules.
"""

import asyncio
from typing import Any, Optional, Dict

from sqlalchemy.exc import OperationalError


class CurtailmentMiningException(Exception):
    """Base exception class for the curtailment mining backend."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(CurtailmentMiningException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class DatabaseError(CurtailmentMiningException):
    """Raised when there's a database error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DATABASE_ERROR", details)


class ValidationError(CurtailmentMiningException):
    """Raised when request or input validation fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "VALIDATION_ERROR", details)


class NotFoundError(CurtailmentMiningException):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "NOT_FOUND", details)


class TransientExternalError(CurtailmentMiningException):
    """Network, timeout or rate-limit failure of an external collaborator. Retried."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "TRANSIENT_EXTERNAL_ERROR", details)


class DataIntegrityError(CurtailmentMiningException):
    """A curtailment event carries an unusable volume. Skipped, never fatal."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DATA_INTEGRITY_ERROR", details)


class InvalidMinerModel(CurtailmentMiningException):
    """Unknown miner model name. Fatal: indicates a broken deployment."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "INVALID_MINER_MODEL", details)


class StorageConflictError(CurtailmentMiningException):
    """Concurrent write detected at the storage boundary. Retried, the write is idempotent."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "STORAGE_CONFLICT", details)


class CheckpointStoreError(CurtailmentMiningException):
    """Checkpoint state could not be read or persisted. Fatal."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CHECKPOINT_STORE_ERROR", details)


FATAL_ERRORS = (InvalidMinerModel, CheckpointStoreError)


def is_retryable(exc: BaseException) -> bool:
    """Default retry predicate shared by every external call."""
    if isinstance(exc, (TransientExternalError, StorageConflictError)):
        return True
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError)):
        return True
    # Lost connections, lock timeouts, serialization failures
    if isinstance(exc, OperationalError):
        return True
    return False

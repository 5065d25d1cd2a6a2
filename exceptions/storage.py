"""
Durable storage exceptions.
"""

from .base import StorefrontException


class StorageException(StorefrontException):
    """Base exception for durable storage errors."""
    pass


class StorageUnavailableException(StorageException):
    """Raised when the durable key-value store cannot be read or written."""

    def __init__(self, operation: str, key: str, reason: str = ""):
        message = f"Storage unavailable during {operation} of '{key}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            details={'operation': operation, 'key': key}
        )
        self.operation = operation
        self.key = key
        self.reason = reason


class CacheCorruptedException(StorageException):
    """Raised when a stored envelope fails parsing, version or structure checks."""

    def __init__(self, key: str, reason: str):
        super().__init__(
            f"Cache record '{key}' is corrupted: {reason}",
            details={'key': key, 'reason': reason}
        )
        self.key = key
        self.reason = reason

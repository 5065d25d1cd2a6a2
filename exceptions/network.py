"""
Network exceptions raised by the remote collaborators.
"""

from .base import StorefrontException


class NetworkFailureException(StorefrontException):
    """
    Raised when a remote call (stock refresh, promotion lookup, order
    conversion) fails at the transport or GraphQL level.

    Always retryable from the caller's point of view.
    """

    retryable = True

    def __init__(self, operation: str, reason: str, status: int | None = None):
        super().__init__(
            f"Network failure during {operation}: {reason}",
            details={'operation': operation, 'status': status}
        )
        self.operation = operation
        self.reason = reason
        self.status = status

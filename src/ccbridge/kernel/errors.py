from __future__ import annotations


class BridgeError(Exception):
    """Base class for ccbridge errors."""


class NotFoundError(BridgeError):
    """Unknown session, approval or question. Not retryable."""


class AlreadyResolvedError(BridgeError):
    """A compare-and-set lost the race: someone else already handled it."""


class TransportError(BridgeError):
    """Chat API unreachable, rejected the call, or rate-limited."""

    def __init__(self, message: str, *, http_status: int = 0, retry_after: float = 0.0):
        super().__init__(message)
        self.http_status = http_status
        self.retry_after = retry_after


class DeadlineExceeded(BridgeError):
    """An approval or question ran past its deadline. Terminal."""

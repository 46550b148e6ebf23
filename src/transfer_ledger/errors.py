"""Exception taxonomy for the ingestion pipeline."""

from __future__ import annotations


class TransferLedgerError(Exception):
    """Base exception for transfer ledger errors."""


class UpstreamError(TransferLedgerError):
    """Raised when an explorer request fails at the transport level.

    Covers non-2xx responses, connection failures, timeouts and explorer-side
    rate limiting. These are treated as transient and retried.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RetryExhaustedError(TransferLedgerError):
    """Raised when all retry attempts are exhausted."""

    def __init__(
        self,
        message: str,
        last_exception: Exception | None = None,
        *,
        attempts: int = 0,
    ) -> None:
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


class MalformedResponseError(TransferLedgerError):
    """Raised when an explorer envelope or entry does not have the expected shape."""


class PersistenceError(TransferLedgerError):
    """Raised when the ledger store rejects a write."""

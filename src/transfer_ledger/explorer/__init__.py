"""Explorer access layer - upstream transfer history and chain height."""

from transfer_ledger.explorer.client import ExplorerClient, RateLimiter
from transfer_ledger.explorer.models import (
    PageResult,
    TransferRecord,
    is_failed_entry,
    normalize_function_name,
)
from transfer_ledger.explorer.retry import RetryPolicy, with_retry

__all__ = [
    "ExplorerClient",
    "PageResult",
    "RateLimiter",
    "RetryPolicy",
    "TransferRecord",
    "is_failed_entry",
    "normalize_function_name",
    "with_retry",
]

"""Sync layer - cursor-driven, paginated ingestion into the ledger."""

from transfer_ledger.sync.lock import SyncLock, lock_key
from transfer_ledger.sync.orchestrator import SyncOrchestrator, SyncState, SyncSummary
from transfer_ledger.sync.progress import ProgressLine, SyncProgress
from transfer_ledger.sync.runner import run_sync

__all__ = [
    "ProgressLine",
    "SyncLock",
    "SyncOrchestrator",
    "SyncProgress",
    "SyncState",
    "SyncSummary",
    "lock_key",
    "run_sync",
]

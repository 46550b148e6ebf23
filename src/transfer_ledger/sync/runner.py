"""Entry point for a scheduled ingestion pass.

Wires settings into the explorer client, a scoped database session and the
optional Redis run lock, runs the orchestrator once, and releases everything.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from pydantic import ValidationError
from redis.asyncio import Redis

from transfer_ledger.config import Settings, get_settings
from transfer_ledger.explorer.client import ExplorerClient
from transfer_ledger.explorer.retry import RetryPolicy
from transfer_ledger.storage.database import DatabaseManager
from transfer_ledger.sync.lock import SyncLock, lock_key
from transfer_ledger.sync.orchestrator import SyncOrchestrator, SyncState, SyncSummary
from transfer_ledger.sync.progress import ProgressLine, SyncProgress, default_progress_enabled

logger = logging.getLogger(__name__)


async def run_sync(
    settings: Settings | None = None,
    *,
    page_size: int | None = None,
    explorer: ExplorerClient | None = None,
    db_manager: DatabaseManager | None = None,
    redis: Redis | None = None,
    show_progress: bool | None = None,
) -> SyncSummary | None:
    """Run one ingestion pass.

    Args:
        settings: Application settings. If not provided, uses get_settings();
            invalid configuration yields an ABORTED summary.
        page_size: Overrides ``SYNC_PAGE_SIZE``.
        explorer: Injected explorer client (not closed here).
        db_manager: Injected database manager (not disposed here).
        redis: Injected Redis client for the run lock (not closed here).
        show_progress: Render a TTY progress line. Defaults to stderr.isatty().

    Returns:
        The run summary, or None if another run holds the lock.
    """
    if settings is None:
        try:
            settings = get_settings()
        except ValidationError as e:
            logger.error("Invalid configuration, sync not started: %s", e)
            now = datetime.now(UTC)
            return SyncSummary(
                outcome=SyncState.ABORTED,
                error=f"Invalid configuration: {e}",
                started_at=now,
                finished_at=now,
            )
    sync = settings.sync

    owns_explorer = explorer is None
    owns_db = db_manager is None
    owns_redis = redis is None and settings.redis.lock_enabled

    if explorer is None:
        explorer = ExplorerClient(
            settings.explorer.api_key.get_secret_value(),
            base_url=settings.explorer.base_url,
            request_timeout_seconds=settings.explorer.request_timeout_seconds,
            max_requests_per_second=settings.explorer.max_requests_per_second,
        )
    if db_manager is None:
        db_manager = DatabaseManager(settings.database.url, echo=settings.database.echo)
    if redis is None and settings.redis.url:
        redis = Redis.from_url(settings.redis.url)

    lock: SyncLock | None = None
    if redis is not None:
        lock = SyncLock(
            redis,
            key=lock_key(sync.chain_id, sync.contract_address, sync.address),
            ttl_seconds=settings.redis.lock_ttl_seconds,
        )

    try:
        if lock is not None and not await lock.acquire():
            logger.info("Skipping sync run: another run is in progress")
            return None

        progress = SyncProgress(
            chain_id=sync.chain_id,
            contract_address=sync.contract_address,
            address=sync.address,
            line=ProgressLine(
                enabled=default_progress_enabled() if show_progress is None else show_progress
            ),
        )
        logger.info("Syncing token transactions...")
        async with db_manager.session_scope() as session:
            orchestrator = SyncOrchestrator(
                explorer,
                session,
                chain_id=sync.chain_id,
                contract_address=sync.contract_address,
                address=sync.address,
                page_size=page_size or sync.page_size,
                retry_policy=RetryPolicy(
                    max_attempts=sync.max_attempts,
                    base_delay_seconds=sync.retry_base_delay_seconds,
                    max_delay_seconds=sync.retry_max_delay_seconds,
                ),
                on_persist_failure=sync.on_persist_failure,
                persist_max_attempts=sync.persist_max_attempts,
                progress=progress,
            )
            return await orchestrator.run()
    except Exception as e:
        logger.exception("Critical error during synchronization process: %s", e)
        now = datetime.now(UTC)
        return SyncSummary(outcome=SyncState.ABORTED, error=str(e), started_at=now, finished_at=now)
    finally:
        if lock is not None:
            await lock.release()
        if owns_explorer:
            await explorer.aclose()
        if owns_db:
            await db_manager.dispose_async()
        if owns_redis and redis is not None:
            await redis.aclose()

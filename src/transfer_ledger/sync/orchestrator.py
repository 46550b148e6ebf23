"""Incremental transfer synchronization (cursor, pagination, dedup, insert).

One ``SyncOrchestrator.run()`` performs a single bounded pass:

1. Resume cursor = 1 + highest stored block (0 for an empty ledger).
2. Chain height is fetched once and fixed for the run.
3. Pages are fetched strictly in sequence from the cursor to that height;
   failed and already-stored transfers are filtered out, the rest are
   inserted and committed page by page.
4. A full page moves the cursor past its last block and loops; anything
   shorter ends the run.

All upstream, parsing and persistence failures end in a summary, never in an
exception, since runs are driven by a background scheduler.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal

from sqlalchemy.exc import SQLAlchemyError

from transfer_ledger.errors import (
    MalformedResponseError,
    PersistenceError,
    RetryExhaustedError,
    UpstreamError,
)
from transfer_ledger.explorer.models import TransferRecord, is_failed_entry, parse_uint
from transfer_ledger.explorer.retry import RetryPolicy, with_retry
from transfer_ledger.storage.repos import TransactionRepository
from transfer_ledger.sync.progress import SyncProgress

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from transfer_ledger.explorer.client import ExplorerClient
    from transfer_ledger.explorer.models import PageResult

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10_000
DEFAULT_PERSIST_MAX_ATTEMPTS = 2

PersistFailurePolicy = Literal["abort", "skip"]


class SyncState(str, Enum):
    """State of an orchestrator run."""

    INIT = "init"
    DETERMINE_RANGE = "determine_range"
    FETCHING = "fetching"
    FILTERING = "filtering"
    PERSISTING = "persisting"
    ADVANCING = "advancing"
    DONE = "done"
    ABORTED = "aborted"


TERMINAL_STATES = frozenset({SyncState.DONE, SyncState.ABORTED})


@dataclass
class SyncSummary:
    """Outcome of one orchestrator run."""

    outcome: SyncState = SyncState.INIT
    start_block: int | None = None
    end_block: int | None = None
    next_block: int | None = None
    pages_fetched: int = 0
    total_fetched: int = 0
    total_inserted: int = 0
    failed_skipped: int = 0
    duplicates_skipped: int = 0
    error: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "start_block": self.start_block,
            "end_block": self.end_block,
            "next_block": self.next_block,
            "pages_fetched": self.pages_fetched,
            "total_fetched": self.total_fetched,
            "total_inserted": self.total_inserted,
            "failed_skipped": self.failed_skipped,
            "duplicates_skipped": self.duplicates_skipped,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": round(self.duration_seconds, 3),
        }


class _Abort(Exception):
    """Internal signal: stop the run in ABORTED."""


@dataclass(frozen=True)
class _FilteredPage:
    records: list[TransferRecord]
    failed: int
    duplicates: int


class SyncOrchestrator:
    """Drives one incremental ingestion pass for a chain/contract/address triple.

    Example:
        ```python
        async with ExplorerClient(api_key) as explorer, db.session_scope() as session:
            summary = await SyncOrchestrator(
                explorer,
                session,
                chain_id=1284,
                contract_address=token,
                address=holder,
            ).run()
        ```
    """

    def __init__(
        self,
        explorer: ExplorerClient,
        session: AsyncSession,
        *,
        chain_id: int,
        contract_address: str,
        address: str,
        page_size: int = DEFAULT_PAGE_SIZE,
        sort: str = "asc",
        retry_policy: RetryPolicy | None = None,
        on_persist_failure: PersistFailurePolicy = "abort",
        persist_max_attempts: int = DEFAULT_PERSIST_MAX_ATTEMPTS,
        progress: SyncProgress | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            explorer: Upstream client.
            session: Session the ledger is read from and written to. Each page
                is committed on it; the caller owns its lifetime.
            chain_id: Explorer chain ID.
            contract_address: Token contract.
            address: Tracked holder/participant address.
            page_size: Rows per page; a page of exactly this size triggers
                another fetch.
            sort: Upstream sort order. Only ``"asc"`` keeps the cursor monotone.
            retry_policy: Attempt budget for each upstream call.
            on_persist_failure: ``"abort"`` ends the run once the page insert
                retries are spent, so the next run re-fetches the range;
                ``"skip"`` logs and drops the page, then keeps paginating.
            persist_max_attempts: Insert attempts per page.
            progress: Status reporter; a log-only one is created if omitted.
        """
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        if persist_max_attempts < 1:
            raise ValueError("persist_max_attempts must be >= 1")

        self._explorer = explorer
        self._session = session
        self._repo = TransactionRepository(session)
        self._chain_id = chain_id
        self._contract_address = contract_address
        self._address = address
        self._page_size = page_size
        self._sort = sort
        self._retry_policy = retry_policy or RetryPolicy()
        self._on_persist_failure = on_persist_failure
        self._persist_max_attempts = persist_max_attempts
        self._progress = progress or SyncProgress(
            chain_id=chain_id,
            contract_address=contract_address,
            address=address,
        )

        self._state = SyncState.INIT

    @property
    def state(self) -> SyncState:
        """Current state."""
        return self._state

    def _set_state(self, new_state: SyncState) -> None:
        if new_state != self._state:
            logger.debug("Sync state: %s -> %s", self._state.value, new_state.value)
        self._state = new_state

    async def _rollback_quietly(self) -> None:
        """Discard the uncommitted page, logging instead of raising on failure."""
        try:
            await self._session.rollback()
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Rollback after aborted sync failed: %s", e)

    async def run(self) -> SyncSummary:
        """Run one ingestion pass.

        Returns:
            Summary of the pass. ``outcome`` is ``DONE`` or ``ABORTED``.
        """
        if self._state != SyncState.INIT:
            raise RuntimeError(f"Cannot run orchestrator in state {self._state}")

        summary = SyncSummary()
        try:
            await self._run(summary)
            self._set_state(SyncState.DONE)
        except (
            _Abort,
            UpstreamError,
            RetryExhaustedError,
            MalformedResponseError,
            PersistenceError,
            SQLAlchemyError,
        ) as e:
            summary.error = str(e)
            self._set_state(SyncState.ABORTED)
            await self._rollback_quietly()
            self._progress.aborted(reason=str(e), start_block=summary.next_block or 0)

        summary.outcome = self._state
        summary.finished_at = datetime.now(UTC)
        self._progress.finished(summary)
        return summary

    async def _run(self, summary: SyncSummary) -> None:
        self._set_state(SyncState.DETERMINE_RANGE)
        latest = await self._repo.latest_block()
        start_block = latest + 1 if latest is not None else 0
        summary.start_block = start_block
        summary.next_block = start_block

        end_block = await with_retry(
            lambda: self._explorer.fetch_current_block_height(self._chain_id),
            policy=self._retry_policy,
            retry_on=(UpstreamError,),
            description="fetch_current_block_height",
        )
        summary.end_block = end_block
        self._progress.range_determined(start_block=start_block, end_block=end_block)

        if start_block >= end_block:
            self._progress.up_to_date(start_block=start_block, end_block=end_block)
            return

        while True:
            self._set_state(SyncState.FETCHING)
            page = await self._fetch_page(start_block, end_block)
            if page.is_no_transactions:
                self._progress.no_transactions(start_block=start_block, end_block=end_block)
                return
            try:
                entries = page.entries
            except MalformedResponseError as e:
                raise _Abort(f"Invalid API response: {e}") from e
            if not entries:
                self._progress.empty_page(start_block=start_block, end_block=end_block)
                return

            summary.pages_fetched += 1
            summary.total_fetched += len(entries)
            last_block = self._max_block(entries)

            self._set_state(SyncState.FILTERING)
            filtered = await self._filter(entries)
            summary.failed_skipped += filtered.failed
            summary.duplicates_skipped += filtered.duplicates

            self._set_state(SyncState.PERSISTING)
            inserted = await self._persist(filtered.records, start_block=start_block)
            summary.total_inserted += inserted

            self._progress.page_processed(
                start_block=start_block,
                fetched=len(entries),
                failed=filtered.failed,
                duplicates=filtered.duplicates,
                inserted=inserted,
                last_block=last_block,
                total_fetched=summary.total_fetched,
                total_inserted=summary.total_inserted,
            )

            self._set_state(SyncState.ADVANCING)
            if len(entries) != self._page_size:
                return
            start_block = last_block + 1
            summary.next_block = start_block
            self._progress.page_limit_hit(page_size=self._page_size, next_block=start_block)
            if start_block >= end_block:
                return

    async def _fetch_page(self, start_block: int, end_block: int) -> PageResult:
        try:
            return await with_retry(
                lambda: self._explorer.fetch_transfer_page(
                    self._chain_id,
                    self._contract_address,
                    self._address,
                    start_block=start_block,
                    end_block=end_block,
                    page=1,
                    page_size=self._page_size,
                    sort=self._sort,
                ),
                policy=self._retry_policy,
                retry_on=(UpstreamError,),
                description="fetch_transfer_page",
            )
        except MalformedResponseError as e:
            raise _Abort(f"Invalid API response: {e}") from e

    @staticmethod
    def _max_block(entries: list[dict[str, Any]]) -> int:
        """Highest block number in a raw page, including failed entries."""
        try:
            return max(parse_uint(entry.get("blockNumber"), "blockNumber") for entry in entries)
        except MalformedResponseError as e:
            raise _Abort(f"Unparseable blockNumber in page: {e}") from e

    async def _filter(self, entries: list[dict[str, Any]]) -> _FilteredPage:
        candidates: dict[str, TransferRecord] = {}
        failed = 0
        repeated = 0
        for entry in entries:
            if is_failed_entry(entry):
                failed += 1
                self._progress.failed_excluded(tx_hash=str(entry.get("hash")))
                continue
            try:
                record = TransferRecord.from_explorer(entry)
            except MalformedResponseError as e:
                raise _Abort(f"Malformed transfer entry: {e}") from e
            if record.hash in candidates:
                repeated += 1
                continue
            candidates[record.hash] = record

        existing = await self._repo.find_existing(candidates) if candidates else set()
        records = [r for h, r in candidates.items() if h not in existing]
        return _FilteredPage(records=records, failed=failed, duplicates=repeated + len(existing))

    async def _persist(self, records: list[TransferRecord], *, start_block: int) -> int:
        if not records:
            return 0

        last_error: PersistenceError | None = None
        for attempt in range(1, self._persist_max_attempts + 1):
            try:
                inserted = await self._repo.bulk_insert(records)
                await self._session.commit()
                return inserted
            except PersistenceError as e:
                last_error = e
                await self._session.rollback()
                self._progress.persist_failed(
                    attempt=attempt,
                    max_attempts=self._persist_max_attempts,
                    count=len(records),
                    error=e,
                )

        if self._on_persist_failure == "skip":
            self._progress.page_dropped(start_block=start_block, count=len(records))
            return 0
        raise _Abort(f"Persisting page starting at block {start_block} failed: {last_error}")

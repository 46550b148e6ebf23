"""Progress reporting for ingestion runs.

Every event is emitted as a log record with structured ``extra`` fields
(``event``, ``start_block``, ``fetched``, ...) so log shippers can index them.
When stderr is a TTY a single in-place progress line is rendered as well.
Nothing here feeds back into the ingestion loop.
"""

from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from transfer_ledger.sync.orchestrator import SyncSummary

logger = logging.getLogger(__name__)


def _format_rate(rate_per_s: float) -> str:
    if rate_per_s <= 0:
        return "0/s"
    if rate_per_s >= 1_000:
        return f"{rate_per_s/1_000:.1f}k/s"
    return f"{rate_per_s:.1f}/s"


def _bar(fraction: float, width: int = 22) -> str:
    fraction = max(0.0, min(1.0, fraction))
    filled = int(round(fraction * width))
    return "[" + ("#" * filled) + ("-" * (width - filled)) + "]"


@dataclass
class ProgressLine:
    """Single-line, rate-limited TTY progress for the block range."""

    enabled: bool
    min_interval_s: float = 0.20

    def __post_init__(self) -> None:
        self._start = time.monotonic()
        self._last_render = 0.0
        self._last_line_len = 0

    def update(
        self,
        *,
        start_block: int,
        current_block: int,
        end_block: int,
        fetched: int,
        inserted: int,
    ) -> None:
        if not self.enabled:
            return
        now = time.monotonic()
        if (now - self._last_render) < self.min_interval_s:
            return
        self._last_render = now

        span = max(1, end_block - start_block)
        frac = (current_block - start_block) / span
        rate = fetched / max(1e-6, now - self._start)
        line = (
            f"sync     {_bar(frac)} {frac*100:5.1f}% block={current_block:,}/{end_block:,} "
            f"fetched={fetched:,} inserted={inserted:,} rate={_format_rate(rate)}"
        )
        pad = " " * max(0, self._last_line_len - len(line))
        self._last_line_len = len(line)
        sys.stderr.write("\r" + line + pad)
        sys.stderr.flush()

    def close(self, *, final_line: str | None = None) -> None:
        if not self.enabled:
            return
        if final_line is not None:
            pad = " " * max(0, self._last_line_len - len(final_line))
            sys.stderr.write("\r" + final_line + pad + "\n")
        else:
            sys.stderr.write("\n")
        sys.stderr.flush()


def default_progress_enabled() -> bool:
    return bool(getattr(sys.stderr, "isatty", lambda: False)())


@dataclass
class SyncProgress:
    """Structured status reporting for one orchestrator run."""

    chain_id: int
    contract_address: str
    address: str
    line: ProgressLine = field(default_factory=lambda: ProgressLine(enabled=False))

    def __post_init__(self) -> None:
        self._start_block = 0
        self._end_block = 0

    def _emit(self, level: int, message: str, event: str, **fields: Any) -> None:
        extra = {
            "event": event,
            "chain_id": self.chain_id,
            "contract_address": self.contract_address,
            "address": self.address,
            **fields,
        }
        context = " ".join(f"{k}={v}" for k, v in fields.items())
        logger.log(level, "%s %s", message, context, extra=extra)

    def range_determined(self, *, start_block: int, end_block: int) -> None:
        self._start_block = start_block
        self._end_block = end_block
        self._emit(
            logging.INFO,
            "Synchronization range determined.",
            "range_determined",
            start_block=start_block,
            end_block=end_block,
        )

    def up_to_date(self, *, start_block: int, end_block: int) -> None:
        self._emit(
            logging.INFO,
            "Ledger already at chain height; nothing to sync.",
            "up_to_date",
            start_block=start_block,
            end_block=end_block,
        )

    def no_transactions(self, *, start_block: int, end_block: int) -> None:
        self._emit(
            logging.INFO,
            "No transactions found for the current range.",
            "no_transactions",
            start_block=start_block,
            end_block=end_block,
        )

    def empty_page(self, *, start_block: int, end_block: int) -> None:
        self._emit(
            logging.WARNING,
            "Empty response received for block range.",
            "empty_page",
            start_block=start_block,
            end_block=end_block,
        )

    def failed_excluded(self, *, tx_hash: str) -> None:
        self._emit(logging.DEBUG, "Excluding failed transaction.", "failed_excluded", hash=tx_hash)

    def page_processed(
        self,
        *,
        start_block: int,
        fetched: int,
        failed: int,
        duplicates: int,
        inserted: int,
        last_block: int,
        total_fetched: int,
        total_inserted: int,
    ) -> None:
        self._emit(
            logging.INFO,
            "Processed transactions.",
            "page_processed",
            start_block=start_block,
            fetched=fetched,
            failed=failed,
            duplicates=duplicates,
            inserted=inserted,
            last_block=last_block,
        )
        self.line.update(
            start_block=self._start_block,
            current_block=last_block,
            end_block=self._end_block,
            fetched=total_fetched,
            inserted=total_inserted,
        )

    def page_limit_hit(self, *, page_size: int, next_block: int) -> None:
        self._emit(
            logging.INFO,
            "Hit the page size limit. Adjusting startblock for next fetch.",
            "page_limit_hit",
            page_size=page_size,
            next_block=next_block,
        )

    def persist_failed(self, *, attempt: int, max_attempts: int, count: int, error: Exception) -> None:
        self._emit(
            logging.ERROR,
            "Database insertion error.",
            "persist_failed",
            attempt=attempt,
            max_attempts=max_attempts,
            count=count,
            error=error,
        )

    def page_dropped(self, *, start_block: int, count: int) -> None:
        self._emit(
            logging.ERROR,
            "Dropping unpersisted page and continuing.",
            "page_dropped",
            start_block=start_block,
            count=count,
        )

    def aborted(self, *, reason: str, start_block: int) -> None:
        self._emit(
            logging.ERROR,
            "Synchronization aborted.",
            "aborted",
            reason=reason,
            start_block=start_block,
        )

    def finished(self, summary: SyncSummary) -> None:
        level = logging.ERROR if summary.error else logging.INFO
        self._emit(
            level,
            "Synchronization completed.",
            "finished",
            outcome=summary.outcome.value,
            total_fetched=summary.total_fetched,
            total_inserted=summary.total_inserted,
            pages=summary.pages_fetched,
            duration_s=f"{summary.duration_seconds:.2f}",
        )
        self.line.close(
            final_line=(
                f"sync     {summary.outcome.value} fetched={summary.total_fetched:,} "
                f"inserted={summary.total_inserted:,}"
            )
        )

"""Repository for the transfer ledger.

This module provides the data access the ingestion loop needs: the resume
cursor, duplicate detection, and bulk insertion.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, insert, select
from sqlalchemy.exc import SQLAlchemyError

from transfer_ledger.errors import PersistenceError
from transfer_ledger.explorer.models import TransferRecord
from transfer_ledger.storage.models import TransactionModel

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# Stay well below SQLite's and asyncpg's bind-parameter limits.
FIND_EXISTING_CHUNK_SIZE = 500
INSERT_CHUNK_SIZE = 1_000


def _to_record(model: TransactionModel) -> TransferRecord:
    timestamp = model.timestamp
    if timestamp.tzinfo is None:
        # SQLite drops tzinfo; values are always written as UTC.
        timestamp = timestamp.replace(tzinfo=UTC)
    return TransferRecord(
        hash=model.hash,
        block_number=model.block_number,
        block_hash=model.block_hash,
        timestamp=timestamp,
        from_address=model.from_address,
        to_address=model.to_address,
        value=model.value,
        function_name=model.function_name,
    )


class TransactionRepository:
    """Repository for ingested transfers.

    Writes are flushed, not committed; the caller owns the transaction.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session.
        """
        self.session = session

    async def latest_block(self) -> int | None:
        """Return the highest stored block number, or None if the ledger is empty."""
        result = await self.session.execute(select(func.max(TransactionModel.block_number)))
        latest = result.scalar_one_or_none()
        return int(latest) if latest is not None else None

    async def find_existing(self, hashes: Iterable[str]) -> set[str]:
        """Return the subset of ``hashes`` already stored.

        Args:
            hashes: Candidate transaction hashes.

        Returns:
            Hashes present in the ledger.
        """
        candidates = list(dict.fromkeys(hashes))
        existing: set[str] = set()
        for i in range(0, len(candidates), FIND_EXISTING_CHUNK_SIZE):
            chunk = candidates[i : i + FIND_EXISTING_CHUNK_SIZE]
            result = await self.session.execute(
                select(TransactionModel.hash).where(TransactionModel.hash.in_(chunk))
            )
            existing.update(result.scalars().all())
        return existing

    async def bulk_insert(self, records: Sequence[TransferRecord]) -> int:
        """Insert all records.

        Args:
            records: Transfers to insert; none may already exist.

        Returns:
            Number of rows inserted.

        Raises:
            PersistenceError: If the store rejects any row. The session must be
                rolled back by the caller.
        """
        if not records:
            return 0

        now = datetime.now(UTC)
        rows = [
            {
                "hash": record.hash,
                "block_number": record.block_number,
                "block_hash": record.block_hash,
                "timestamp": record.timestamp,
                "from_address": record.from_address,
                "to_address": record.to_address,
                "value": record.value,
                "function_name": record.function_name,
                "created_at": now,
            }
            for record in records
        ]

        try:
            for i in range(0, len(rows), INSERT_CHUNK_SIZE):
                await self.session.execute(insert(TransactionModel), rows[i : i + INSERT_CHUNK_SIZE])
            await self.session.flush()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Bulk insert of {len(rows)} transactions failed: {e}") from e
        return len(rows)

    async def count(self) -> int:
        """Total number of stored transfers."""
        result = await self.session.execute(select(func.count()).select_from(TransactionModel))
        return int(result.scalar_one())

    async def get_by_hash(self, tx_hash: str) -> TransferRecord | None:
        """Get a stored transfer by transaction hash.

        Args:
            tx_hash: Transaction hash.

        Returns:
            TransferRecord if found, None otherwise.
        """
        result = await self.session.execute(
            select(TransactionModel).where(TransactionModel.hash == tx_hash)
        )
        model = result.scalar_one_or_none()
        return _to_record(model) if model else None

"""Redis run lock keeping one ingestion pass per ledger target at a time.

The duplicate check (``find_existing``) and the insert are not atomic against
other writers, so two concurrent runs for the same triple could both insert a
hash. The lock makes overlapping scheduler ticks skip instead.
"""

from __future__ import annotations

import logging

from redis.asyncio import Redis
from redis.exceptions import LockError

logger = logging.getLogger(__name__)

LOCK_KEY_PREFIX = "transfer_ledger:sync:"


def lock_key(chain_id: int, contract_address: str, address: str) -> str:
    """Redis key for a chain/contract/address triple."""
    return f"{LOCK_KEY_PREFIX}{chain_id}:{contract_address.lower()}:{address.lower()}"


class SyncLock:
    """Non-blocking, expiring lock around one run.

    Example:
        ```python
        lock = SyncLock(redis, key=lock_key(1284, token, holder), ttl_seconds=900)
        if await lock.acquire():
            try:
                ...
            finally:
                await lock.release()
        ```
    """

    def __init__(self, redis: Redis, *, key: str, ttl_seconds: int) -> None:
        self._key = key
        self._lock = redis.lock(key, timeout=ttl_seconds, blocking=False)
        self._held = False

    @property
    def key(self) -> str:
        return self._key

    @property
    def held(self) -> bool:
        return self._held

    async def acquire(self) -> bool:
        """Try to take the lock without waiting."""
        self._held = bool(await self._lock.acquire())
        if not self._held:
            logger.warning("Sync lock %s is held by another run", self._key)
        return self._held

    async def release(self) -> None:
        """Release the lock if this instance holds it."""
        if not self._held:
            return
        try:
            await self._lock.release()
        except LockError as e:
            # Expired (TTL shorter than the run) or taken over.
            logger.warning("Failed to release sync lock %s: %s", self._key, e)
        finally:
            self._held = False

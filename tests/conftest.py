"""Pytest configuration and fixtures."""

from collections.abc import Callable
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from transfer_ledger.storage.models import Base

TOKEN = "0xffffffff1fcacbd218edc0eba20fc2308c778080"
HOLDER = "0x1234567890abcdef1234567890abcdef12345678"

EntryFactory = Callable[..., dict[str, Any]]


def _tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def _make_entry(
    n: int,
    block_number: int,
    *,
    is_error: str = "0",
    value: str = "1000000000000000000",
    function_name: str = "transfer(address,uint256)",
) -> dict[str, Any]:
    return {
        "blockNumber": str(block_number),
        "timeStamp": "1700000000",
        "hash": _tx_hash(n),
        "blockHash": "0x" + "b" * 64,
        "from": HOLDER,
        "to": "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa",
        "value": value,
        "contractAddress": TOKEN,
        "functionName": function_name,
        "isError": is_error,
    }


@pytest.fixture
def token_address() -> str:
    """Sample token contract address."""
    return TOKEN


@pytest.fixture
def holder_address() -> str:
    """Sample tracked holder address."""
    return HOLDER


@pytest.fixture
def tx_hash() -> Callable[[int], str]:
    """Deterministic 32-byte transaction hash for an integer."""
    return _tx_hash


@pytest.fixture
def make_entry() -> EntryFactory:
    """Build a raw tokentx entry as the explorer returns it.

    ``make_entry(n, block)`` uses ``tx_hash(n)`` as the hash.
    """
    return _make_entry


@pytest.fixture
async def async_engine():
    """Create an async SQLite engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def async_session(async_engine) -> AsyncSession:
    """Create an async session for testing."""
    session_factory = async_sessionmaker(bind=async_engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session

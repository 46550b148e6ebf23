"""Storage layer - Ledger schema and repository."""

from transfer_ledger.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from transfer_ledger.storage.models import Base, TransactionModel
from transfer_ledger.storage.repos import TransactionRepository

__all__ = [
    "Base",
    "DatabaseManager",
    "TransactionModel",
    "TransactionRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]

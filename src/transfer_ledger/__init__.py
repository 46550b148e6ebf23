"""Incremental, idempotent ingestion of explorer token transfers into a local ledger."""

__version__ = "0.1.0"

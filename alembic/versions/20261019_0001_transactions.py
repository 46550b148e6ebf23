"""Create the transactions ledger table.

Revision ID: 001_transactions
Revises:
Create Date: 2026-10-19 00:01:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_transactions"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "transactions",
        sa.Column("hash", sa.String(66), nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=False),
        sa.Column("block_hash", sa.String(66), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("from_address", sa.String(42), nullable=False),
        sa.Column("to_address", sa.String(42), nullable=False),
        sa.Column("value", sa.Numeric(78, 0), nullable=False),
        sa.Column("function_name", sa.String(128), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("hash"),
    )
    op.create_index("idx_transactions_block_number", "transactions", ["block_number"])
    op.create_index("idx_transactions_function_name", "transactions", ["function_name"])


def downgrade() -> None:
    op.drop_index("idx_transactions_function_name", table_name="transactions")
    op.drop_index("idx_transactions_block_number", table_name="transactions")
    op.drop_table("transactions")

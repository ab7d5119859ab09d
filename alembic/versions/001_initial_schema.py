"""Initial rollup schema: entities, snapshots, transaction log, indexer state.

Creates the complete database schema for the DEX rollup engine:
- 2 entity tables: tokens, pairs
- 2 snapshot tables: pair_volume_snapshots, token_price_snapshots
- transactions (write-once event log)
- indexer_state (last committed block height)

Raw on-chain amounts are NUMERIC(78,0) (full uint256 range); USD values,
prices and percentages are NUMERIC(38,18).

Revision ID: 3f9c1d7a2b10
Revises: None
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3f9c1d7a2b10"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UINT256 = sa.Numeric(78, 0)
USD = sa.Numeric(38, 18)


def upgrade() -> None:
    # -----------------------------------------------------------------------
    # Step 1: Entity tables (referenced by everything else via FK)
    # -----------------------------------------------------------------------

    # tokens -- token metadata and last derived price
    op.create_table(
        "tokens",
        sa.Column("id", sa.String(128), nullable=False),
        sa.Column("symbol", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("decimals", sa.SmallInteger(), nullable=False),
        sa.Column("total_supply", UINT256, nullable=True),
        sa.Column("price_usd", USD, nullable=True),
        sa.Column("fdv", USD, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_tokens"),
    )

    # pairs -- pool state, derived volumes and TVL
    op.create_table(
        "pairs",
        sa.Column("id", sa.String(128), nullable=False),
        sa.Column("token0", sa.String(128), nullable=False),
        sa.Column("token1", sa.String(128), nullable=False),
        sa.Column("token0_symbol", sa.String(64), nullable=True),
        sa.Column("token1_symbol", sa.String(64), nullable=True),
        sa.Column("reserve0", UINT256, nullable=False),
        sa.Column("reserve1", UINT256, nullable=False),
        sa.Column("total_supply", UINT256, nullable=False),
        sa.Column("volume_usd", USD, nullable=False),
        sa.Column("volume_1h", USD, nullable=False),
        sa.Column("volume_24h", USD, nullable=False),
        sa.Column("volume_7d", USD, nullable=False),
        sa.Column("volume_30d", USD, nullable=False),
        sa.Column("volume_1y", USD, nullable=False),
        sa.Column("tvl_usd", USD, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.PrimaryKeyConstraint("id", name="pk_pairs"),
        sa.ForeignKeyConstraint(["token0"], ["tokens.id"], name="fk_pairs_token0_tokens"),
        sa.ForeignKeyConstraint(["token1"], ["tokens.id"], name="fk_pairs_token1_tokens"),
    )

    # -----------------------------------------------------------------------
    # Step 2: Snapshot tables
    # -----------------------------------------------------------------------

    # pair_volume_snapshots -- hourly running volume aggregates (upserted)
    op.create_table(
        "pair_volume_snapshots",
        sa.Column("id", sa.String(200), nullable=False),
        sa.Column("pair_id", sa.String(128), nullable=False),
        sa.Column("interval", sa.String(16), nullable=False),
        sa.Column("volume_usd", USD, nullable=False),
        sa.Column("transaction_count", sa.Integer(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_pair_volume_snapshots"),
        sa.ForeignKeyConstraint(
            ["pair_id"], ["pairs.id"], name="fk_pair_volume_snapshots_pair_id_pairs"
        ),
        sa.UniqueConstraint(
            "pair_id", "interval", "timestamp", name="uq_pair_volume_snapshots_bucket"
        ),
    )
    op.create_index(
        "ix_pair_volume_snapshots_pair_ts",
        "pair_volume_snapshots",
        ["pair_id", "timestamp"],
    )

    # token_price_snapshots -- append-only price observations
    op.create_table(
        "token_price_snapshots",
        sa.Column("id", sa.String(200), nullable=False),
        sa.Column("token_id", sa.String(128), nullable=False),
        sa.Column("price_usd", USD, nullable=False),
        sa.Column("fdv", USD, nullable=True),
        sa.Column("change_1h", USD, nullable=True),
        sa.Column("change_24h", USD, nullable=True),
        sa.Column("change_7d", USD, nullable=True),
        sa.Column("change_30d", USD, nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_token_price_snapshots"),
        sa.ForeignKeyConstraint(
            ["token_id"], ["tokens.id"], name="fk_token_price_snapshots_token_id_tokens"
        ),
    )
    op.create_index(
        "ix_token_price_snapshots_token_ts",
        "token_price_snapshots",
        ["token_id", "timestamp"],
    )

    # -----------------------------------------------------------------------
    # Step 3: Transaction log and indexer progress
    # -----------------------------------------------------------------------
    op.create_table(
        "transactions",
        sa.Column("id", sa.String(128), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("pair_id", sa.String(128), nullable=False),
        sa.Column("user", sa.String(128), nullable=False, server_default=""),
        sa.Column("block_number", sa.BigInteger(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("amount_a", UINT256, nullable=True),
        sa.Column("amount_b", UINT256, nullable=True),
        sa.Column("liquidity", UINT256, nullable=True),
        sa.Column("amount_in", UINT256, nullable=True),
        sa.Column("amount_out", UINT256, nullable=True),
        sa.Column("token_in", sa.String(128), nullable=True),
        sa.Column("token_out", sa.String(128), nullable=True),
        sa.Column("amount_a_usd", USD, nullable=True),
        sa.Column("amount_b_usd", USD, nullable=True),
        sa.Column("amount_in_usd", USD, nullable=True),
        sa.Column("amount_out_usd", USD, nullable=True),
        sa.Column("value_usd", USD, nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_transactions"),
        sa.ForeignKeyConstraint(
            ["pair_id"], ["pairs.id"], name="fk_transactions_pair_id_pairs"
        ),
    )
    op.create_index(
        "ix_transactions_pair_block",
        "transactions",
        ["pair_id", "block_number"],
    )

    op.create_table(
        "indexer_state",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("last_committed_block", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_indexer_state"),
    )


def downgrade() -> None:
    op.drop_table("indexer_state")
    op.drop_index("ix_transactions_pair_block", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_token_price_snapshots_token_ts", table_name="token_price_snapshots")
    op.drop_table("token_price_snapshots")
    op.drop_index("ix_pair_volume_snapshots_pair_ts", table_name="pair_volume_snapshots")
    op.drop_table("pair_volume_snapshots")
    op.drop_table("pairs")
    op.drop_table("tokens")

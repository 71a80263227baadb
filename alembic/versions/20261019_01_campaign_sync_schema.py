"""Campaign sync schema

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19 10:00:00
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_01"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "campaigns",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("creator", sa.String(length=44), nullable=False),
        sa.Column("campaign_index", sa.BigInteger(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("symbol", sa.String(length=32), nullable=True),
        sa.Column("metadata_uri", sa.Text(), nullable=True),
        sa.Column("donation_goal", sa.Numeric(30, 9), nullable=False, server_default="0"),
        sa.Column("deposit_deadline", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("trade_deadline", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("created_timestamp", sa.BigInteger(), nullable=True),
        sa.Column("total_fund_raised", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("mint", sa.String(length=44), nullable=True),
        sa.Column("last_donation_timestamp", sa.BigInteger(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("creator", "campaign_index", name="uq_campaigns_creator_index"),
    )
    op.create_index("ix_campaigns_creator", "campaigns", ["creator"], unique=False)
    op.create_index("idx_campaigns_mint", "campaigns", ["mint"], unique=False)

    op.create_table(
        "process_statuses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("creator", sa.String(length=44), nullable=False),
        sa.Column("campaign_index", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="RAISING"),
        sa.Column("mint", sa.String(length=44), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("creator", "campaign_index", name="uq_process_statuses_creator_index"),
    )
    op.create_index("idx_process_statuses_status", "process_statuses", ["status"], unique=False)

    op.create_table(
        "sell_progress",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("creator", sa.String(length=44), nullable=False),
        sa.Column("campaign_index", sa.BigInteger(), nullable=False),
        sa.Column("mint", sa.String(length=44), nullable=False),
        sa.Column("claimable_amount", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("market_cap", sa.Numeric(24, 2), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("creator", "campaign_index", name="uq_sell_progress_creator_index"),
    )

    op.create_table(
        "ingested_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("signature", sa.String(length=88), nullable=False),
        sa.Column("block_slot", sa.BigInteger(), nullable=False),
        sa.Column("block_time", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("signature", name="uq_ingested_transactions_signature"),
    )
    op.create_index(
        "idx_ingested_transactions_slot", "ingested_transactions", ["block_slot"], unique=False
    )


def downgrade() -> None:
    op.drop_index("idx_ingested_transactions_slot", table_name="ingested_transactions")
    op.drop_table("ingested_transactions")
    op.drop_table("sell_progress")
    op.drop_index("idx_process_statuses_status", table_name="process_statuses")
    op.drop_table("process_statuses")
    op.drop_index("idx_campaigns_mint", table_name="campaigns")
    op.drop_index("ix_campaigns_creator", table_name="campaigns")
    op.drop_table("campaigns")

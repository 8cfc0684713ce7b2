"""add ledger and cache tables

Revision ID: 7c41e0b9d2a5
Revises:
Create Date: 2026-10-18 09:12:40.511204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '7c41e0b9d2a5'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "service_line_masters",
        sa.Column("code", sa.String(length=20), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
    )
    op.create_table(
        "service_line_external",
        sa.Column("serv_line_code", sa.String(length=20), primary_key=True),
        sa.Column(
            "master_code",
            sa.String(length=20),
            sa.ForeignKey("service_line_masters.code", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_service_line_external_master_code",
        "service_line_external",
        ["master_code"],
    )

    # --- ledgers ---
    op.create_table(
        "wip_transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("client_id", sa.String(length=36), nullable=False),
        sa.Column("group_code", sa.String(length=30), nullable=True),
        sa.Column("task_code", sa.String(length=30), nullable=True),
        sa.Column("tran_date", sa.Date(), nullable=False),
        sa.Column("t_type", sa.String(length=10), nullable=True),
        sa.Column("amount", sa.Float(), nullable=True),
        sa.Column("serv_line_code", sa.String(length=20), nullable=True),
    )
    op.create_index("ix_wip_transactions_client_date", "wip_transactions", ["client_id", "tran_date"])
    op.create_index("ix_wip_transactions_group_date", "wip_transactions", ["group_code", "tran_date"])
    op.create_index("ix_wip_transactions_task_date", "wip_transactions", ["task_code", "tran_date"])

    op.create_table(
        "drs_transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("client_id", sa.String(length=36), nullable=False),
        sa.Column("group_code", sa.String(length=30), nullable=True),
        sa.Column("task_code", sa.String(length=30), nullable=True),
        sa.Column("biller", sa.String(length=30), nullable=True),
        sa.Column("tran_date", sa.Date(), nullable=False),
        sa.Column("entry_type", sa.String(length=30), nullable=True),
        sa.Column("total", sa.Float(), nullable=True),
        sa.Column("serv_line_code", sa.String(length=20), nullable=True),
    )
    op.create_index("ix_drs_transactions_client_date", "drs_transactions", ["client_id", "tran_date"])
    op.create_index("ix_drs_transactions_group_date", "drs_transactions", ["group_code", "tran_date"])
    op.create_index("ix_drs_transactions_task_date", "drs_transactions", ["task_code", "tran_date"])

    # --- shared analytics cache ---
    op.create_table(
        "analytics_cache_entries",
        sa.Column("key", sa.String(length=255), primary_key=True),
        sa.Column("value_json", sa.Text(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_analytics_cache_entries_expires_at",
        "analytics_cache_entries",
        ["expires_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_analytics_cache_entries_expires_at", table_name="analytics_cache_entries")
    op.drop_table("analytics_cache_entries")

    op.drop_index("ix_drs_transactions_task_date", table_name="drs_transactions")
    op.drop_index("ix_drs_transactions_group_date", table_name="drs_transactions")
    op.drop_index("ix_drs_transactions_client_date", table_name="drs_transactions")
    op.drop_table("drs_transactions")

    op.drop_index("ix_wip_transactions_task_date", table_name="wip_transactions")
    op.drop_index("ix_wip_transactions_group_date", table_name="wip_transactions")
    op.drop_index("ix_wip_transactions_client_date", table_name="wip_transactions")
    op.drop_table("wip_transactions")

    op.drop_index("ix_service_line_external_master_code", table_name="service_line_external")
    op.drop_table("service_line_external")
    op.drop_table("service_line_masters")

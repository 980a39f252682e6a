"""initial_stock_ledger_schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

QTY = sa.Numeric(14, 4)


def upgrade() -> None:
    op.create_table(
        "warehouses",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=128), nullable=False, unique=True),
        sa.Column("unit", sa.String(length=16), nullable=False, server_default=sa.text("'pcs'")),
        sa.Column("quantity", QTY, nullable=False, server_default=sa.text("0")),
        sa.Column("booked_quantity", QTY, nullable=False, server_default=sa.text("0")),
        sa.Column("unit_price", QTY, nullable=False, server_default=sa.text("0")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "batches",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("item_id", sa.Integer(), sa.ForeignKey("items.id", ondelete="RESTRICT"), nullable=False),
        sa.Column(
            "warehouse_id", sa.Integer(), sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.Column("batch_number", sa.String(length=64), nullable=False),
        sa.Column("lot_number", sa.String(length=64), nullable=False),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("initial_quantity", QTY, nullable=False),
        sa.Column("unit_price", QTY, nullable=False, server_default=sa.text("0")),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("received_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source_details", sa.JSON(), nullable=True),
        sa.Column("certificate_file_name", sa.String(length=255), nullable=True),
        sa.Column("certificate_url", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_batches_item_wh", "batches", ["item_id", "warehouse_id"])
    op.create_index("ix_batches_item_lot", "batches", ["item_id", "lot_number"])
    op.create_index("ix_batches_expiry_date", "batches", ["expiry_date"])

    op.create_table(
        "reservations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("item_id", sa.Integer(), sa.ForeignKey("items.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("batch_id", sa.Integer(), sa.ForeignKey("batches.id", ondelete="SET NULL"), nullable=True),
        sa.Column("job_reference_id", sa.String(length=128), nullable=False),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'active'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_reservations_job_item", "reservations", ["job_reference_id", "item_id"])
    op.create_index("ix_reservations_batch_status", "reservations", ["batch_id", "status"])

    op.create_table(
        "stock_ledger",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("batch_id", sa.Integer(), nullable=True),
        sa.Column("warehouse_id", sa.Integer(), nullable=True),
        sa.Column("target_warehouse_id", sa.Integer(), nullable=True),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("previous_quantity", QTY, nullable=True),
        sa.Column("reference", sa.String(length=255), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("actor_id", sa.String(length=64), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_stock_ledger_item_id", "stock_ledger", ["item_id"])
    op.create_index("ix_stock_ledger_batch_id", "stock_ledger", ["batch_id"])
    op.create_index("ix_ledger_item_occurred", "stock_ledger", ["item_id", "occurred_at"])
    op.create_index("ix_ledger_type", "stock_ledger", ["type"])

    op.create_table(
        "counters",
        sa.Column("name", sa.String(length=64), primary_key=True),
        sa.Column("value", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
    )


def downgrade() -> None:
    op.drop_table("counters")
    op.drop_index("ix_ledger_type", table_name="stock_ledger")
    op.drop_index("ix_ledger_item_occurred", table_name="stock_ledger")
    op.drop_index("ix_stock_ledger_batch_id", table_name="stock_ledger")
    op.drop_index("ix_stock_ledger_item_id", table_name="stock_ledger")
    op.drop_table("stock_ledger")
    op.drop_index("ix_reservations_batch_status", table_name="reservations")
    op.drop_index("ix_reservations_job_item", table_name="reservations")
    op.drop_table("reservations")
    op.drop_index("ix_batches_expiry_date", table_name="batches")
    op.drop_index("ix_batches_item_lot", table_name="batches")
    op.drop_index("ix_batches_item_wh", table_name="batches")
    op.drop_table("batches")
    op.drop_table("items")
    op.drop_table("warehouses")

"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "bills",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("code", sa.String(length=6), nullable=False, unique=True),
        sa.Column("organizer_id", sa.BigInteger()),
        sa.Column("organizer_phone", sa.Text()),
        sa.Column("organizer_access_code", sa.Text(), nullable=False, unique=True),
        sa.Column("receipt_analyzed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("tax_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("tip_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("status", sa.Text(), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("status in ('active','completed','cancelled')", name="bills_status_check"),
        sa.CheckConstraint("tax_amount >= 0 and tip_amount >= 0", name="bills_extras_check"),
    )

    op.create_table(
        "items",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("bill_id", sa.BigInteger(), sa.ForeignKey("bills.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("source", sa.Text(), nullable=False, server_default="manual"),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("quantity >= 1", name="items_quantity_check"),
        sa.CheckConstraint("source in ('manual','ocr')", name="items_source_check"),
    )

    op.create_table(
        "participants",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("bill_id", sa.BigInteger(), sa.ForeignKey("bills.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("phone_number", sa.Text(), nullable=False),
        sa.Column("plus_one_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("has_responded", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("last_updated_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("plus_one_count >= 0", name="participants_plus_one_check"),
    )

    op.create_table(
        "claims",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("item_id", sa.BigInteger(), sa.ForeignKey("items.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "participant_id",
            sa.BigInteger(),
            sa.ForeignKey("participants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("share_type", sa.Text(), nullable=False, server_default="solo"),
        sa.Column(
            "share_with_participant_ids",
            postgresql.ARRAY(sa.BigInteger()),
            nullable=False,
            server_default=sa.text("'{}'::bigint[]"),
        ),
        sa.Column("quantity_claimed", sa.Numeric(10, 3), nullable=False, server_default="1"),
        sa.Column("amount_owed", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("item_id", "participant_id", name="claims_item_participant_key"),
        sa.CheckConstraint(
            "share_type in ('solo','split_with_all','split_with_specific')",
            name="claims_share_type_check",
        ),
        sa.CheckConstraint("quantity_claimed > 0", name="claims_quantity_check"),
        sa.CheckConstraint("amount_owed >= 0", name="claims_amount_check"),
    )

    op.create_index("idx_items_bill", "items", ["bill_id"])
    op.create_index("idx_participants_bill", "participants", ["bill_id"])
    op.create_index("idx_claims_participant", "claims", ["participant_id"])
    op.create_index(
        "idx_claims_split_with_all",
        "claims",
        ["item_id"],
        unique=True,
        postgresql_where=sa.text("share_type = 'split_with_all'"),
    )


def downgrade() -> None:
    op.drop_index("idx_claims_split_with_all", table_name="claims")
    op.drop_index("idx_claims_participant", table_name="claims")
    op.drop_index("idx_participants_bill", table_name="participants")
    op.drop_index("idx_items_bill", table_name="items")

    op.drop_table("claims")
    op.drop_table("participants")
    op.drop_table("items")
    op.drop_table("bills")

"""Add menu items included with tickets

Revision ID: 002
Revises: 001
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.add_column(
        "tickets",
        sa.Column("includes_menu_items", sa.Boolean(), server_default="0", nullable=False),
    )
    op.add_column(
        "ticket_purchases",
        sa.Column("has_included_items", sa.Boolean(), server_default="0", nullable=False),
    )
    op.add_column("ticket_purchases", sa.Column("included_qr_payload", sa.Text(), nullable=True))

    # Bundle definition per ticket
    op.create_table(
        "ticket_included_menu_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("ticket_id", sa.Integer(), sa.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("menu_item_id", sa.Integer(), sa.ForeignKey("menu_items.id"), nullable=False),
        sa.Column("variant_id", sa.Integer(), sa.ForeignKey("menu_item_variants.id"), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("ticket_id", "menu_item_id", "variant_id", name="uq_ticket_included_item"),
        sa.CheckConstraint("quantity >= 1 AND quantity <= 15", name="ck_ticket_included_quantity"),
    )

    # Entitlements copied onto each sold ticket
    op.create_table(
        "menu_items_from_tickets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "ticket_purchase_id", sa.Integer(),
            sa.ForeignKey("ticket_purchases.id", ondelete="CASCADE"), nullable=False, index=True,
        ),
        sa.Column("menu_item_id", sa.Integer(), sa.ForeignKey("menu_items.id"), nullable=False),
        sa.Column("variant_id", sa.Integer(), sa.ForeignKey("menu_item_variants.id"), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("is_redeemed", sa.Boolean(), server_default="0", nullable=False),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("menu_items_from_tickets")
    op.drop_table("ticket_included_menu_items")
    op.drop_column("ticket_purchases", "included_qr_payload")
    op.drop_column("ticket_purchases", "has_included_items")
    op.drop_column("tickets", "includes_menu_items")

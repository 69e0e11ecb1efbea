"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _soft_delete():
    return [
        sa.Column("is_deleted", sa.Boolean(), server_default="0", nullable=False, index=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _purchase_columns():
    return [
        sa.Column("club_id", sa.Integer(), sa.ForeignKey("clubs.id"), nullable=False, index=True),
        sa.Column("user_id", sa.String(64), nullable=True, index=True),
        sa.Column("session_id", sa.String(128), nullable=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("target_date", sa.Date(), nullable=False),
        sa.Column("original_base_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("price_at_checkout", sa.Numeric(12, 2), nullable=False),
        sa.Column("dynamic_pricing_was_applied", sa.Boolean(), nullable=False),
        sa.Column("dynamic_pricing_reason", sa.String(64), nullable=True),
        sa.Column("platform_fee", sa.Numeric(12, 2), nullable=False),
        sa.Column("club_receives", sa.Numeric(12, 2), nullable=False),
        sa.Column("qr_payload", sa.Text(), nullable=True),
        sa.Column("is_used", sa.Boolean(), nullable=False),
    ]


def upgrade() -> None:
    # Clubs
    op.create_table(
        "clubs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("open_days", sa.JSON(), nullable=False),
        sa.Column("open_hours", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    # Events
    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("club_id", sa.Integer(), sa.ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("available_date", sa.Date(), nullable=False, index=True),
        sa.Column("open_hours", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        *_soft_delete(),
    )

    # Tickets
    op.create_table(
        "tickets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("club_id", sa.Integer(), sa.ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="SET NULL"), nullable=True, index=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("category", sa.Enum("GENERAL", "FREE", "EVENT", name="ticketcategory"), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("dynamic_pricing_enabled", sa.Boolean(), nullable=False),
        sa.Column("max_per_person", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=True),
        sa.Column("available_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        *_soft_delete(),
    )

    # Menu items and variants
    op.create_table(
        "menu_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("club_id", sa.Integer(), sa.ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=True),
        sa.Column("has_variants", sa.Boolean(), nullable=False),
        sa.Column("dynamic_pricing_enabled", sa.Boolean(), nullable=False),
        sa.Column("max_per_person", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        *_soft_delete(),
    )
    op.create_table(
        "menu_item_variants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("menu_item_id", sa.Integer(), sa.ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("dynamic_pricing_enabled", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        *_soft_delete(),
    )

    # Cart lines
    op.create_table(
        "cart_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=True, index=True),
        sa.Column("session_id", sa.String(128), nullable=True, index=True),
        sa.Column("kind", sa.Enum("TICKET", "MENU", name="cartitemkind"), nullable=False),
        sa.Column("club_id", sa.Integer(), sa.ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("ticket_id", sa.Integer(), sa.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=True),
        sa.Column("menu_item_id", sa.Integer(), sa.ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=True),
        sa.Column("variant_id", sa.Integer(), sa.ForeignKey("menu_item_variants.id", ondelete="CASCADE"), nullable=True),
        sa.Column("target_date", sa.Date(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("(user_id IS NULL) != (session_id IS NULL)", name="ck_cart_items_single_owner"),
    )

    # Payment transactions
    op.create_table(
        "payment_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("reference", sa.String(100), unique=True, nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True, index=True),
        sa.Column("session_id", sa.String(128), nullable=True, index=True),
        sa.Column("club_id", sa.Integer(), sa.ForeignKey("clubs.id"), nullable=False, index=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("total_paid", sa.Numeric(14, 2), nullable=False),
        sa.Column("club_receives", sa.Numeric(14, 2), nullable=False),
        sa.Column("platform_receives", sa.Numeric(14, 2), nullable=False),
        sa.Column("gateway_fee", sa.Numeric(14, 2), nullable=False),
        sa.Column("gateway_iva", sa.Numeric(14, 2), nullable=False),
        sa.Column("amount_in_cents", sa.Integer(), nullable=False),
        sa.Column("payment_method", sa.String(40), nullable=True),
        sa.Column("payment_provider", sa.String(40), nullable=False),
        sa.Column("payment_provider_transaction_id", sa.String(200), unique=True, nullable=True),
        sa.Column(
            "payment_status",
            sa.Enum("PENDING", "APPROVED", "DECLINED", "VOIDED", name="paymentstatus"),
            nullable=False,
            index=True,
        ),
        sa.Column("is_free_checkout", sa.Boolean(), nullable=False),
        sa.Column("line_items_count", sa.Integer(), nullable=False),
        sa.Column("failure_reason", sa.String(500), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    # Purchases (one row per unit)
    op.create_table(
        "ticket_purchases",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "transaction_id", sa.Integer(),
            sa.ForeignKey("payment_transactions.id", ondelete="CASCADE"), nullable=False, index=True,
        ),
        sa.Column("ticket_id", sa.Integer(), sa.ForeignKey("tickets.id"), nullable=False),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id"), nullable=True),
        *_purchase_columns(),
        *_timestamps(),
    )
    op.create_table(
        "menu_purchases",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "transaction_id", sa.Integer(),
            sa.ForeignKey("payment_transactions.id", ondelete="CASCADE"), nullable=False, index=True,
        ),
        sa.Column("menu_item_id", sa.Integer(), sa.ForeignKey("menu_items.id"), nullable=False),
        sa.Column("variant_id", sa.Integer(), sa.ForeignKey("menu_item_variants.id"), nullable=True),
        *_purchase_columns(),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("menu_purchases")
    op.drop_table("ticket_purchases")
    op.drop_table("payment_transactions")
    op.drop_table("cart_items")
    op.drop_table("menu_item_variants")
    op.drop_table("menu_items")
    op.drop_table("tickets")
    op.drop_table("events")
    op.drop_table("clubs")

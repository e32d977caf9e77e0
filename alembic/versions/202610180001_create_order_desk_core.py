"""create order desk core tables

Revision ID: 202610180001
Revises:
Create Date: 2026-10-18 00:00:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610180001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _assignment() -> list[sa.Column]:
    return [
        sa.Column("assigned_agent_id", sa.String(length=128), nullable=True),
        sa.Column("assigned_agent_name", sa.String(length=255), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_by", sa.String(length=255), nullable=True),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
    ]


def _line_item_columns(parent_column: str, parent_table: str) -> list[sa.Column]:
    return [
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column(parent_column, sa.Uuid(), sa.ForeignKey(f"{parent_table}.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.Uuid(), sa.ForeignKey("inventory_product.id", ondelete="SET NULL"), nullable=True),
        sa.Column("product_name", sa.String(length=255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("price_per_unit", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    ]


def _history_columns(parent_column: str, parent_table: str) -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column(parent_column, sa.Uuid(), sa.ForeignKey(f"{parent_table}.id", ondelete="CASCADE"), nullable=False),
        sa.Column("from_status", sa.String(length=32), nullable=True),
        sa.Column("to_status", sa.String(length=32), nullable=False),
        sa.Column("changed_by", sa.String(length=128), nullable=True),
        sa.Column("changed_by_name", sa.String(length=255), nullable=True),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    ]


def upgrade() -> None:
    op.create_table(
        "directory_profile",
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("user_id"),
    )

    op.create_table(
        "inventory_product",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=128), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("cost_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("stock_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("low_stock_threshold", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("supplier_id", sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("stock_quantity >= 0", name="ck_inventory_product_stock_non_negative"),
        sa.CheckConstraint("price >= 0", name="ck_inventory_product_price_non_negative"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku"),
    )
    op.create_index("ix_inventory_product_active_name", "inventory_product", ["is_active", "name"], unique=False)

    op.create_table(
        "inventory_ledger_entry",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column(
            "product_id",
            sa.Uuid(),
            sa.ForeignKey("inventory_product.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("change_amount", sa.Integer(), nullable=False),
        sa.Column("previous_stock", sa.Integer(), nullable=False),
        sa.Column("new_stock", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=32), nullable=False),
        sa.Column("actor_user_id", sa.String(length=128), nullable=True),
        sa.Column("actor_name", sa.String(length=255), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("reference", sa.String(length=64), nullable=True),
        sa.Column("supplier_name", sa.String(length=255), nullable=True),
        sa.Column("invoice_number", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("new_stock >= 0", name="ck_inventory_ledger_entry_new_stock_non_negative"),
        sa.CheckConstraint("new_stock = previous_stock + change_amount", name="ck_inventory_ledger_entry_balanced"),
        sa.CheckConstraint(
            "reason IN ('order_deduction', 'order_return', 'restock', 'manual_adjust')",
            name="ck_inventory_ledger_entry_reason",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_inventory_ledger_entry_product_created",
        "inventory_ledger_entry",
        ["product_id", "created_at", "id"],
        unique=False,
    )
    op.create_index("ix_inventory_ledger_entry_reason", "inventory_ledger_entry", ["reason"], unique=False)

    sequence_table = op.create_table(
        "sales_order_sequence",
        sa.Column("name", sa.String(length=32), nullable=False),
        sa.Column("next_value", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("name"),
    )
    op.bulk_insert(sequence_table, [{"name": "order", "next_value": 1001}])

    op.create_table(
        "sales_lead",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("phone", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("phone_normalized", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("city", sa.String(length=128), nullable=False, server_default=""),
        sa.Column("address", sa.Text(), nullable=False, server_default=""),
        sa.Column("product_interest", sa.String(length=255), nullable=True),
        sa.Column("product_id", sa.Uuid(), sa.ForeignKey("inventory_product.id", ondelete="SET NULL"), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("source", sa.String(length=32), nullable=False, server_default="manual"),
        sa.Column("list_name", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="not_contacted"),
        *_assignment(),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sales_lead_status", "sales_lead", ["status"], unique=False)
    op.create_index("ix_sales_lead_assigned_agent", "sales_lead", ["assigned_agent_id"], unique=False)
    op.create_index("ix_sales_lead_phone_normalized", "sales_lead", ["phone_normalized"], unique=False)

    op.create_table(
        "sales_lead_item",
        *_line_item_columns("lead_id", "sales_lead"),
        sa.CheckConstraint("quantity >= 1", name="ck_sales_lead_item_quantity_positive"),
        sa.CheckConstraint("price_per_unit >= 0", name="ck_sales_lead_item_price_non_negative"),
    )

    op.create_table("sales_lead_history", *_history_columns("lead_id", "sales_lead"))
    op.create_index("ix_sales_lead_history_lead_changed", "sales_lead_history", ["lead_id", "changed_at"], unique=False)

    op.create_table(
        "sales_order",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("display_id", sa.String(length=32), nullable=False),
        sa.Column("product_id", sa.Uuid(), sa.ForeignKey("inventory_product.id", ondelete="SET NULL"), nullable=True),
        sa.Column("product_name", sa.Text(), nullable=False, server_default=""),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("customer_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("customer_phone", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("customer_phone_normalized", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("customer_city", sa.String(length=128), nullable=False, server_default=""),
        sa.Column("customer_address", sa.Text(), nullable=False, server_default=""),
        sa.Column("postal_code", sa.String(length=32), nullable=True),
        sa.Column("birthday", sa.Date(), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("source_type", sa.String(length=32), nullable=False, server_default="manual"),
        sa.Column("source_lead_id", sa.Uuid(), sa.ForeignKey("sales_lead.id", ondelete="SET NULL"), nullable=True),
        sa.Column("stock_deducted", sa.Boolean(), nullable=False, server_default="false"),
        *_assignment(),
        *_timestamps(),
        sa.CheckConstraint("price >= 0", name="ck_sales_order_price_non_negative"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("display_id"),
        sa.UniqueConstraint("source_lead_id", name="uq_sales_order_source_lead_id"),
    )
    op.create_index("ix_sales_order_status_created", "sales_order", ["status", "created_at"], unique=False)
    op.create_index("ix_sales_order_assigned_agent", "sales_order", ["assigned_agent_id"], unique=False)
    op.create_index("ix_sales_order_phone_normalized", "sales_order", ["customer_phone_normalized"], unique=False)

    op.create_table(
        "sales_order_item",
        *_line_item_columns("order_id", "sales_order"),
        sa.CheckConstraint("quantity >= 1", name="ck_sales_order_item_quantity_positive"),
        sa.CheckConstraint("price_per_unit >= 0", name="ck_sales_order_item_price_non_negative"),
    )
    op.create_index("ix_sales_order_item_order", "sales_order_item", ["order_id"], unique=False)

    op.create_table("sales_order_history", *_history_columns("order_id", "sales_order"))
    op.create_index(
        "ix_sales_order_history_order_changed",
        "sales_order_history",
        ["order_id", "changed_at"],
        unique=False,
    )

    op.create_table(
        "sales_order_note",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("order_id", sa.Uuid(), sa.ForeignKey("sales_order.id", ondelete="CASCADE"), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("author_id", sa.String(length=128), nullable=True),
        sa.Column("author_name", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "sales_call_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("context_type", sa.String(length=16), nullable=False),
        sa.Column("context_id", sa.Uuid(), nullable=False),
        sa.Column("outcome", sa.String(length=32), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("agent_id", sa.String(length=128), nullable=False),
        sa.Column("agent_name", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("context_type IN ('order', 'lead')", name="ck_sales_call_log_context_type"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_sales_call_log_context",
        "sales_call_log",
        ["context_type", "context_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_sales_call_log_context", table_name="sales_call_log")
    op.drop_table("sales_call_log")
    op.drop_table("sales_order_note")
    op.drop_index("ix_sales_order_history_order_changed", table_name="sales_order_history")
    op.drop_table("sales_order_history")
    op.drop_index("ix_sales_order_item_order", table_name="sales_order_item")
    op.drop_table("sales_order_item")
    op.drop_index("ix_sales_order_phone_normalized", table_name="sales_order")
    op.drop_index("ix_sales_order_assigned_agent", table_name="sales_order")
    op.drop_index("ix_sales_order_status_created", table_name="sales_order")
    op.drop_table("sales_order")
    op.drop_index("ix_sales_lead_history_lead_changed", table_name="sales_lead_history")
    op.drop_table("sales_lead_history")
    op.drop_table("sales_lead_item")
    op.drop_index("ix_sales_lead_phone_normalized", table_name="sales_lead")
    op.drop_index("ix_sales_lead_assigned_agent", table_name="sales_lead")
    op.drop_index("ix_sales_lead_status", table_name="sales_lead")
    op.drop_table("sales_lead")
    op.drop_table("sales_order_sequence")
    op.drop_index("ix_inventory_ledger_entry_reason", table_name="inventory_ledger_entry")
    op.drop_index("ix_inventory_ledger_entry_product_created", table_name="inventory_ledger_entry")
    op.drop_table("inventory_ledger_entry")
    op.drop_index("ix_inventory_product_active_name", table_name="inventory_product")
    op.drop_table("inventory_product")
    op.drop_table("directory_profile")

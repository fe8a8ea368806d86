"""Initial schema: vendors, catalog, vendor products, batches, bulk operation log.

Revision ID: 0001
Revises: (none)
Create Date: 2026-10-19
"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Vendors
    op.create_table(
        "vendors",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("hashed_password", sa.String(), nullable=False),
        sa.Column("business_name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_vendors_id", "vendors", ["id"])
    op.create_index("ix_vendors_email", "vendors", ["email"], unique=True)

    # Catalog
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("brand", sa.String(), nullable=True),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("base_price", sa.Float(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_products_id", "products", ["id"])
    op.create_index("ix_products_name", "products", ["name"])
    op.create_index("ix_products_category", "products", ["category"])

    # Vendor products
    op.create_table(
        "vendor_products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("cost_price", sa.Float(), nullable=False, server_default="0"),
        sa.Column("selling_price", sa.Float(), nullable=False, server_default="0"),
        sa.Column("discount_percentage", sa.Float(), nullable=False, server_default="0"),
        sa.Column("final_price", sa.Float(), nullable=False, server_default="0"),
        sa.Column("margin", sa.Float(), nullable=False, server_default="0"),
        sa.Column("margin_percentage", sa.Float(), nullable=False, server_default="0"),
        sa.Column("has_negative_margin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("current_stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("min_stock_level", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("max_stock_level", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("reserved_stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("available_stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("has_expiry", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_out_of_stock", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("availability_status", sa.String(), nullable=False, server_default="available"),
        sa.Column("hide_when_out_of_stock", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("auto_discount_near_expiry", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("min_order_quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("max_order_quantity", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("vendor_id", "product_id", name="uq_vendor_product"),
    )
    op.create_index("ix_vendor_products_id", "vendor_products", ["id"])
    op.create_index("ix_vendor_products_vendor_id", "vendor_products", ["vendor_id"])
    op.create_index("ix_vendor_products_product_id", "vendor_products", ["product_id"])
    op.create_index("ix_vendor_products_final_price", "vendor_products", ["final_price"])
    op.create_index("ix_vendor_products_current_stock", "vendor_products", ["current_stock"])
    op.create_index("ix_vendor_products_has_expiry", "vendor_products", ["has_expiry"])
    op.create_index("ix_vendor_products_is_available", "vendor_products", ["is_available"])
    op.create_index("ix_vendor_products_is_active", "vendor_products", ["is_active"])

    # Batches
    op.create_table(
        "item_batches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "item_id", sa.Integer(), sa.ForeignKey("vendor_products.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("batch_number", sa.String(), nullable=False),
        sa.Column("manufacture_date", sa.Date(), nullable=True),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sold_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("remaining_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("days_to_expiry", sa.Integer(), nullable=True),
        sa.Column("is_expired", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_near_expiry", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("near_expiry_discount", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("item_id", "batch_number", name="uq_item_batch_number"),
    )
    op.create_index("ix_item_batches_id", "item_batches", ["id"])
    op.create_index("ix_item_batches_item_id", "item_batches", ["item_id"])
    op.create_index("ix_item_batches_expiry_date", "item_batches", ["expiry_date"])
    op.create_index("ix_item_batches_is_near_expiry", "item_batches", ["is_near_expiry"])

    # Bulk operation log
    op.create_table(
        "bulk_operation_log",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False),
        sa.Column("operation", sa.String(), nullable=False),
        sa.Column("filename", sa.String(), nullable=True),
        sa.Column("data", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_bulk_operation_log_vendor_id", "bulk_operation_log", ["vendor_id"])


def downgrade() -> None:
    op.drop_table("bulk_operation_log")
    op.drop_table("item_batches")
    op.drop_table("vendor_products")
    op.drop_table("products")
    op.drop_table("vendors")

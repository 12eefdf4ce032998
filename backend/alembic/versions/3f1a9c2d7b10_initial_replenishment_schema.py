"""initial replenishment schema

Revision ID: 3f1a9c2d7b10
Revises:
Create Date: 2026-02-10
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1a9c2d7b10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BigIntPK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")

ORDER_STATUS = sa.Enum("pending_review", "sent", "cancelled", "completed", name="order_status")
MOVEMENT_TYPE = sa.Enum("sale", "adjustment", "receipt", name="movement_type")


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", BigIntPK, primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("timezone", sa.String(64), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "providers",
        sa.Column("id", BigIntPK, primary_key=True),
        sa.Column("tenant_id", sa.BigInteger(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("phone", sa.String(64)),
        sa.Column("address", sa.String(255)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("tenant_id", "name", name="uq_provider_tenant_name"),
    )
    op.create_index("ix_providers_tenant_id", "providers", ["tenant_id"])

    op.create_table(
        "products",
        sa.Column("id", BigIntPK, primary_key=True),
        sa.Column("tenant_id", sa.BigInteger(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("stock", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(14, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("tenant_id", "code", name="uq_product_tenant_code"),
        sa.CheckConstraint("stock >= 0", name="ck_product_stock_nonneg"),
        sa.CheckConstraint("unit_price >= 0", name="ck_product_unit_price_nonneg"),
    )
    op.create_index("ix_products_tenant_id", "products", ["tenant_id"])

    op.create_table(
        "reorder_rules",
        sa.Column("id", BigIntPK, primary_key=True),
        sa.Column("tenant_id", sa.BigInteger(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="CASCADE"), nullable=False),
        sa.Column("provider_id", sa.BigInteger(), sa.ForeignKey("providers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("trigger_stock", sa.Integer(), nullable=False),
        sa.Column("reorder_qty", sa.Integer(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("requires_approval", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("trigger_stock >= 0", name="ck_reorder_rule_trigger_nonneg"),
        sa.CheckConstraint("reorder_qty > 0", name="ck_reorder_rule_qty_pos"),
    )
    op.create_index(
        "uq_reorder_rule_enabled_product",
        "reorder_rules",
        ["tenant_id", "product_id"],
        unique=True,
        postgresql_where=sa.text("enabled"),
        sqlite_where=sa.text("enabled = 1"),
    )

    op.create_table(
        "generated_orders",
        sa.Column("id", BigIntPK, primary_key=True),
        sa.Column("tenant_id", sa.BigInteger(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("provider_id", sa.BigInteger(), sa.ForeignKey("providers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("status", ORDER_STATUS, nullable=False),
        sa.Column("generation_date", sa.Date(), nullable=False),
        sa.Column("requires_approval", sa.Boolean(), nullable=False),
        sa.Column("total_estimate", sa.Numeric(14, 2), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("sent_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("total_estimate >= 0", name="ck_generated_order_total_nonneg"),
    )
    op.create_index("ix_generated_orders_tenant_date", "generated_orders", ["tenant_id", "generation_date"])
    op.create_index("ix_generated_orders_tenant_status", "generated_orders", ["tenant_id", "status"])

    op.create_table(
        "generated_order_lines",
        sa.Column("id", BigIntPK, primary_key=True),
        sa.Column(
            "order_id",
            sa.BigInteger(),
            sa.ForeignKey("generated_orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("qty", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(14, 2), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("product_code", sa.String(64), nullable=False),
        sa.Column("tenant_id", sa.BigInteger(), nullable=False),
        sa.Column("provider_id", sa.BigInteger(), nullable=False),
        sa.Column("generation_date", sa.Date(), nullable=False),
        sa.Column("is_open", sa.Boolean(), nullable=False),
        sa.UniqueConstraint("order_id", "product_id", name="uq_generated_order_line_product"),
        sa.CheckConstraint("qty > 0", name="ck_generated_order_line_qty_pos"),
        sa.CheckConstraint("unit_price >= 0", name="ck_generated_order_line_unit_price_nonneg"),
    )
    op.create_index("ix_generated_order_lines_order_id", "generated_order_lines", ["order_id"])
    # Garde définitive contre les runs concurrents (même produit, même fournisseur, même jour)
    op.create_index(
        "uq_generated_order_line_open_claim",
        "generated_order_lines",
        ["tenant_id", "provider_id", "product_id", "generation_date"],
        unique=True,
        postgresql_where=sa.text("is_open"),
        sqlite_where=sa.text("is_open = 1"),
    )

    op.create_table(
        "stock_movements",
        sa.Column("id", BigIntPK, primary_key=True),
        sa.Column("tenant_id", sa.BigInteger(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("movement_type", MOVEMENT_TYPE, nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("stock_before", sa.Integer(), nullable=False),
        sa.Column("stock_after", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(255)),
        sa.Column(
            "generated_order_id",
            sa.BigInteger(),
            sa.ForeignKey("generated_orders.id", ondelete="SET NULL"),
        ),
        sa.Column("happened_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("idempotency_key", sa.String(64), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("quantity <> 0", name="ck_stock_movement_qty_nonzero"),
        sa.CheckConstraint("stock_after >= 0", name="ck_stock_movement_after_nonneg"),
    )
    op.create_index("ix_stock_movements_product_id", "stock_movements", ["product_id"])
    op.create_index("ix_stock_movements_generated_order_id", "stock_movements", ["generated_order_id"])
    op.create_index("ix_stock_movements_product_time", "stock_movements", ["product_id", "happened_at"])


def downgrade() -> None:
    op.drop_table("stock_movements")
    op.drop_table("generated_order_lines")
    op.drop_table("generated_orders")
    op.drop_table("reorder_rules")
    op.drop_table("products")
    op.drop_table("providers")
    op.drop_table("tenants")
    # Postgres : les types ENUM survivent au DROP TABLE
    MOVEMENT_TYPE.drop(op.get_bind(), checkfirst=True)
    ORDER_STATUS.drop(op.get_bind(), checkfirst=True)

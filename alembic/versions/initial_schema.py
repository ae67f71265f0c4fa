"""Initial schema: shops, catalog, inventory levels, supplier orders, price and color rules.

Revision ID: initial_schema
Revises:
Create Date: 2026-10-19

Tables are created from the SQLAlchemy models so the app and the migration share one definition.
"""
from alembic import op


revision = "initial_schema"
down_revision = None
branch_labels = None
depends_on = None

TABLES = (
    "color_rules",
    "price_rule_option_modifiers",
    "price_rule_modifiers",
    "price_rules",
    "supplier_order_items",
    "supplier_orders",
    "metafield_config",
    "inventory_levels",
    "product_variants",
    "products",
    "shops",
)


def upgrade() -> None:
    from ivy.database import Base
    from ivy import models  # noqa: F401 - register models with Base

    connection = op.get_bind()
    Base.metadata.create_all(bind=connection)


def downgrade() -> None:
    # children first
    for table in TABLES:
        op.drop_table(table)

"""Initial schema — groups, products (price history + cached change metrics)

Revision ID: 001_initial_schema
Revises: None
Create Date: 2025-01-06
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

HORIZONS = ("1d", "3d", "7d", "1m", "3m", "6m", "1y")


def upgrade() -> None:
    # --- groups (card sets/expansions) ---
    op.create_table(
        "groups",
        sa.Column("id", sa.INTEGER(), primary_key=True, autoincrement=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("category_id", sa.INTEGER(), nullable=False, comment="3 = English, 85 = Japanese"),
        sa.Column("published_on", sa.DATE(), nullable=True),
        sa.Column("modified_on", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_groups_category_id", "groups", ["category_id"])

    # --- products (one row per productId:finish variant) ---
    metric_columns = []
    for horizon in HORIZONS:
        metric_columns.append(sa.Column(f"chg_{horizon}_pct", sa.DECIMAL(7, 3), nullable=True))
        metric_columns.append(sa.Column(f"chg_{horizon}_abs", sa.DECIMAL(10, 2), nullable=True))

    op.create_table(
        "products",
        sa.Column(
            "variant_key",
            sa.String(),
            primary_key=True,
            comment="Unique identifier: productId:finish",
        ),
        sa.Column("product_id", sa.INTEGER(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("group_id", sa.INTEGER(), sa.ForeignKey("groups.id"), nullable=False),
        sa.Column("current_price", sa.DECIMAL(10, 2), nullable=True),
        sa.Column("low_price", sa.DECIMAL(10, 2), nullable=True),
        sa.Column("high_price", sa.DECIMAL(10, 2), nullable=True),
        sa.Column("rarity", sa.String(), nullable=True),
        sa.Column("number", sa.String(), nullable=True),
        sa.Column("image_url", sa.String(), nullable=True),
        sa.Column("url", sa.String(), nullable=True),
        sa.Column("clean_name", sa.String(), nullable=True),
        sa.Column("finish", sa.String(), nullable=True),
        sa.Column("pricecharting_url", sa.String(), nullable=True),
        sa.Column(
            "price_history",
            JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
            comment='Date to price map: {"2024-02-08": 3.51}',
        ),
        *metric_columns,
        sa.Column("is_eligible", sa.BOOLEAN(), nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_products_product_id", "products", ["product_id"])
    op.create_index("ix_products_group_id", "products", ["group_id"])
    op.create_index("ix_products_current_price", "products", ["current_price"])
    op.create_index("ix_products_updated_at", "products", ["updated_at"])
    op.create_index("ix_products_is_eligible", "products", ["is_eligible"])
    op.create_index("ix_products_chg_1d_pct", "products", ["chg_1d_pct"])
    op.create_index("ix_products_chg_7d_pct", "products", ["chg_7d_pct"])
    op.create_index("ix_products_chg_1m_pct", "products", ["chg_1m_pct"])


def downgrade() -> None:
    for index in (
        "ix_products_chg_1m_pct",
        "ix_products_chg_7d_pct",
        "ix_products_chg_1d_pct",
        "ix_products_is_eligible",
        "ix_products_updated_at",
        "ix_products_current_price",
        "ix_products_group_id",
        "ix_products_product_id",
    ):
        op.drop_index(index, table_name="products")
    op.drop_table("products")
    op.drop_index("ix_groups_category_id", table_name="groups")
    op.drop_table("groups")

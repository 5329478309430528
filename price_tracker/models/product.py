"""
Card Price Tracker — Product Model

One row per (product_id, finish) variant. Holds the latest observed prices,
the sparse daily price history and the 14 cached change metrics.

Only the two batch entry points write price_history and the chg_* columns:
    - pipeline/ingest.py (new observations)
    - pipeline/stale.py  (metrics for rows the feed did not touch)
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    BOOLEAN,
    DECIMAL,
    INTEGER,
    JSON,
    TIMESTAMP,
    ForeignKey,
    Index,
    String,
    false,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from price_tracker.config import Horizon
from price_tracker.models.base import Base

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
HistoryType = JSON().with_variant(JSONB(), "postgresql")

PctType = DECIMAL(7, 3)
MoneyType = DECIMAL(10, 2)


class Product(Base):
    """
    A tracked card variant.

    variant_key is "{product_id}:{finish}" (e.g. "12345:Holofoil") and never
    changes once created. price_history maps ISO dates to a bare number:
    {"2025-01-08": 12.0, "2025-01-11": 13.0}.
    """

    __tablename__ = "products"

    variant_key: Mapped[str] = mapped_column(
        String, primary_key=True, comment="Unique identifier: productId:finish"
    )
    product_id: Mapped[int] = mapped_column(INTEGER, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    group_id: Mapped[int] = mapped_column(
        INTEGER, ForeignKey("groups.id"), nullable=False
    )

    # Latest observed prices
    current_price: Mapped[Decimal | None] = mapped_column(MoneyType, nullable=True)
    low_price: Mapped[Decimal | None] = mapped_column(MoneyType, nullable=True)
    high_price: Mapped[Decimal | None] = mapped_column(MoneyType, nullable=True)

    # Descriptive attributes (last non-null value wins)
    rarity: Mapped[str | None] = mapped_column(String, nullable=True)
    number: Mapped[str | None] = mapped_column(String, nullable=True)
    image_url: Mapped[str | None] = mapped_column(String, nullable=True)
    url: Mapped[str | None] = mapped_column(String, nullable=True)
    clean_name: Mapped[str | None] = mapped_column(String, nullable=True)
    finish: Mapped[str | None] = mapped_column(String, nullable=True)
    pricecharting_url: Mapped[str | None] = mapped_column(String, nullable=True)

    price_history: Mapped[dict[str, Any]] = mapped_column(
        HistoryType,
        nullable=False,
        default=dict,
        comment='Date to price map: {"2024-02-08": 3.51}',
    )

    # Cached change metrics
    chg_1d_pct: Mapped[Decimal | None] = mapped_column(PctType, nullable=True)
    chg_1d_abs: Mapped[Decimal | None] = mapped_column(MoneyType, nullable=True)
    chg_3d_pct: Mapped[Decimal | None] = mapped_column(PctType, nullable=True)
    chg_3d_abs: Mapped[Decimal | None] = mapped_column(MoneyType, nullable=True)
    chg_7d_pct: Mapped[Decimal | None] = mapped_column(PctType, nullable=True)
    chg_7d_abs: Mapped[Decimal | None] = mapped_column(MoneyType, nullable=True)
    chg_1m_pct: Mapped[Decimal | None] = mapped_column(PctType, nullable=True)
    chg_1m_abs: Mapped[Decimal | None] = mapped_column(MoneyType, nullable=True)
    chg_3m_pct: Mapped[Decimal | None] = mapped_column(PctType, nullable=True)
    chg_3m_abs: Mapped[Decimal | None] = mapped_column(MoneyType, nullable=True)
    chg_6m_pct: Mapped[Decimal | None] = mapped_column(PctType, nullable=True)
    chg_6m_abs: Mapped[Decimal | None] = mapped_column(MoneyType, nullable=True)
    chg_1y_pct: Mapped[Decimal | None] = mapped_column(PctType, nullable=True)
    chg_1y_abs: Mapped[Decimal | None] = mapped_column(MoneyType, nullable=True)

    is_eligible: Mapped[bool] = mapped_column(
        BOOLEAN,
        nullable=False,
        default=False,
        server_default=false(),
        comment="current_price >= 15 AND (rarity OR number present)",
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
        comment="Last write; staleness watermark",
    )

    __table_args__ = (
        Index("ix_products_product_id", "product_id"),
        Index("ix_products_group_id", "group_id"),
        Index("ix_products_current_price", "current_price"),
        Index("ix_products_updated_at", "updated_at"),
        Index("ix_products_is_eligible", "is_eligible"),
        Index("ix_products_chg_1d_pct", "chg_1d_pct"),
        Index("ix_products_chg_7d_pct", "chg_7d_pct"),
        Index("ix_products_chg_1m_pct", "chg_1m_pct"),
    )

    def metrics(self) -> dict[str, Decimal | None]:
        """Current cached metrics keyed by column name."""
        out: dict[str, Decimal | None] = {}
        for horizon in Horizon:
            out[horizon.pct_column] = getattr(self, horizon.pct_column)
            out[horizon.abs_column] = getattr(self, horizon.abs_column)
        return out

    def apply_metrics(self, values: dict[str, Decimal | None]) -> None:
        for column, value in values.items():
            setattr(self, column, value)

    def __repr__(self) -> str:
        return (
            f"<Product variant_key={self.variant_key!r} name={self.name!r} "
            f"price={self.current_price} eligible={self.is_eligible}>"
        )

"""
Card Price Tracker — Group Model

A group is a card set/expansion as published by the price vendor.
Rows are maintained by the metadata sync; the ingestion core only
references them through products.group_id.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import DATE, INTEGER, TIMESTAMP, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from price_tracker.models.base import Base


class Group(Base):
    """Card set/expansion from the vendor catalogue."""

    __tablename__ = "groups"

    id: Mapped[int] = mapped_column(
        INTEGER, primary_key=True, autoincrement=False, comment="Vendor group ID"
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    category_id: Mapped[int] = mapped_column(
        INTEGER, nullable=False, comment="3 = English, 85 = Japanese"
    )
    published_on: Mapped[date | None] = mapped_column(DATE, nullable=True)
    modified_on: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_groups_category_id", "category_id"),
    )

    def __repr__(self) -> str:
        return f"<Group id={self.id} name={self.name!r} category={self.category_id}>"

"""
Card Price Tracker — Staleness Recalculation Job

Products missing from a day's feed keep metrics computed against an older
"today". This job recomputes their 14 metrics relative to the current date,
treating the last known current_price as still valid.

One invocation:
    1. Claim up to batch_size rows with updated_at < cutoff_time
       (FOR UPDATE SKIP LOCKED: rows held by another worker are skipped, not waited on)
    2. Recompute metrics anchored on today's date, and is_eligible
    3. Move updated_at to max(now, cutoff_time) on every claimed row
    4. Commit and return the row count

Step 3 is what makes "call until it returns 0" terminate: a claimed row can
never match the same cutoff again.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from price_tracker.config import settings
from price_tracker.engine.metrics import compute_change_metrics, is_eligible
from price_tracker.models.product import Product

logger = structlog.get_logger(__name__)


def claim_stale_statement(cutoff_time: datetime, batch_size: int) -> Select[tuple[Product]]:
    """SELECT ... WHERE updated_at < cutoff LIMIT n FOR UPDATE SKIP LOCKED."""
    return (
        select(Product)
        .where(Product.updated_at < cutoff_time)
        .limit(batch_size)
        .with_for_update(skip_locked=True)
    )


async def recalculate_stale(
    session: AsyncSession,
    cutoff_time: datetime,
    batch_size: int | None = None,
    now: datetime | None = None,
) -> int:
    """
    Recalculate metrics for one batch of stale products.

    Args:
        session: Async database session; committed before returning.
        cutoff_time: Rows last written before this instant are stale (tz-aware).
        batch_size: Max rows claimed (default STALE_BATCH_SIZE).
        now: Processing time (default: now, UTC). Its date is the anchor.

    Returns:
        Number of products recalculated. 0 means nothing stale is left
        (or every remaining stale row is claimed by another worker).
    """
    limit = batch_size if batch_size is not None else settings.STALE_BATCH_SIZE
    if limit <= 0:
        raise ValueError("batch_size must be greater than 0")

    now = now or datetime.now(timezone.utc)
    watermark = max(now, cutoff_time)
    anchor = now.date()

    result = await session.execute(claim_stale_statement(cutoff_time, limit))
    products = result.scalars().all()

    for product in products:
        product.apply_metrics(
            compute_change_metrics(product.price_history, anchor, product.current_price)
        )
        product.is_eligible = is_eligible(product.current_price, product.rarity, product.number)
        product.updated_at = watermark

    await session.commit()

    logger.debug(
        "stale_batch_recalculated",
        count=len(products),
        cutoff=cutoff_time.isoformat(),
        anchor=anchor.isoformat(),
    )
    return len(products)


async def recalculate_all_stale(
    session_factory: async_sessionmaker[AsyncSession],
    cutoff_time: datetime | None = None,
    batch_size: int | None = None,
) -> int:
    """
    Run recalculate_stale() in fresh transactions until it returns 0.

    Args:
        session_factory: Async session factory.
        cutoff_time: Stale threshold (default: now, UTC, fixed for the whole loop).
        batch_size: Rows per transaction (default STALE_BATCH_SIZE).

    Returns:
        Total number of products recalculated.
    """
    cutoff = cutoff_time or datetime.now(timezone.utc)
    total = 0

    logger.info("stale_recalculation_start", cutoff=cutoff.isoformat())

    while True:
        async with session_factory() as session:
            count = await recalculate_stale(session, cutoff, batch_size)

        if count == 0:
            break

        total += count
        logger.info("stale_batch_complete", count=count, total=total)

    logger.info("stale_recalculation_complete", total=total, cutoff=cutoff.isoformat())
    return total

"""
Card Price Tracker — Application Entrypoint

Configures structlog, creates the async SQLAlchemy engine and runs one of
the two batch jobs.

Run via:
    python -m price_tracker.main ingest --date 2025-01-11
    python -m price_tracker.main recalculate-stale --batch-size 1000
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Sequence

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from price_tracker import __version__
from price_tracker.config import settings
from price_tracker.pipeline.ingest import IngestSummary
from price_tracker.pipeline.runner import ingest_in_chunks
from price_tracker.pipeline.stale import recalculate_all_stale
from price_tracker.pipeline.tcgcsv import (
    ProductDetails,
    apply_product_details,
    collect_observations,
    parse_product_details,
)


# ---------------------------------------------------------------------------
# Structlog Configuration
# ---------------------------------------------------------------------------


def _configure_logging(log_level: str = "INFO") -> None:
    """
    Set up structured logging with JSON output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
    """
    # stdlib logging first (SQLAlchemy, asyncpg)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Database Setup
# ---------------------------------------------------------------------------


async def create_db_engine() -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Create SQLAlchemy async engine and session factory.

    The DATABASE_URL is read from settings (env variable DATABASE_URL).

    Returns:
        (engine, session_factory) tuple.
    """
    logger = structlog.get_logger(__name__)

    engine = create_async_engine(
        settings.DATABASE_URL,
        echo=False,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
    )

    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    logger.info("database_engine_ready")
    return engine, session_factory


async def _check_database(session_factory: async_sessionmaker[AsyncSession]) -> None:
    async with session_factory() as session:
        await session.execute(text("SELECT 1"))


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


def _load_product_details(paths: Sequence[str]) -> list[ProductDetails]:
    details: list[ProductDetails] = []
    for path in paths:
        payload: Any = json.loads(Path(path).read_text(encoding="utf-8"))
        details.extend(parse_product_details(payload))
    return details


async def run_daily_update(
    session_factory: async_sessionmaker[AsyncSession],
    day: date,
    data_dir: str,
    details_files: Sequence[str] = (),
) -> IngestSummary:
    """Read the extracted price files for one day and ingest them in chunks."""
    logger = structlog.get_logger(__name__)

    observations = collect_observations(data_dir, day)
    if details_files:
        observations = apply_product_details(observations, _load_product_details(details_files))

    summary = await ingest_in_chunks(session_factory, observations)
    logger.info("daily_update_complete", day=day.isoformat(), **summary.as_dict())
    return summary


async def run_stale_recalculation(
    session_factory: async_sessionmaker[AsyncSession],
    cutoff_time: datetime | None = None,
    batch_size: int | None = None,
) -> int:
    return await recalculate_all_stale(session_factory, cutoff_time, batch_size)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _parse_cutoff(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="price-tracker",
        description="Card price history ingestion and change-metric jobs.",
    )
    parser.add_argument(
        "--log-level",
        default=settings.LOG_LEVEL,
        help="Logging level (default: LOG_LEVEL setting).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    ingest = commands.add_parser("ingest", help="Ingest one day of extracted vendor price files.")
    ingest.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Price date YYYY-MM-DD (default: today, UTC).",
    )
    ingest.add_argument(
        "--data-dir",
        default=settings.DATA_DIR,
        help="Root of the extracted archive (default: DATA_DIR setting).",
    )
    ingest.add_argument(
        "--details",
        action="append",
        default=[],
        metavar="FILE",
        help="Vendor products listing (JSON) for new products. Repeatable.",
    )

    stale = commands.add_parser(
        "recalculate-stale",
        help="Recalculate metrics for products not updated since the cutoff.",
    )
    stale.add_argument(
        "--cutoff",
        type=_parse_cutoff,
        default=None,
        help="ISO timestamp; naive values are UTC (default: now).",
    )
    stale.add_argument(
        "--batch-size",
        type=int,
        default=settings.STALE_BATCH_SIZE,
        help=f"Rows per transaction (default: {settings.STALE_BATCH_SIZE}).",
    )

    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> None:
    """
    Execution order:
    1. Create async database engine and session factory
    2. Verify database connection (health check)
    3. Run the requested job
    """
    logger = structlog.get_logger(__name__)
    logger.info("price_tracker_startup", version=__version__, command=args.command)

    engine, session_factory = await create_db_engine()

    try:
        try:
            await _check_database(session_factory)
        except Exception as e:
            logger.error(
                "database_health_check_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise
        logger.info("database_health_check_passed")

        if args.command == "ingest":
            day = args.date or datetime.now(timezone.utc).date()
            await run_daily_update(session_factory, day, args.data_dir, args.details)
        else:
            await run_stale_recalculation(session_factory, args.cutoff, args.batch_size)
    finally:
        await engine.dispose()
        logger.info("price_tracker_shutdown_complete")


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    _configure_logging(args.log_level)
    logger = structlog.get_logger(__name__)

    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("price_tracker_interrupted_by_user")
        return 130
    except Exception as e:
        logger.error(
            "price_tracker_fatal_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        return 1
    return 0


# ---------------------------------------------------------------------------
# CLI Entry
# ---------------------------------------------------------------------------


if __name__ == "__main__":
    sys.exit(main())

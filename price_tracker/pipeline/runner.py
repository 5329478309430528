"""
Card Price Tracker — Chunked Ingestion Runner

Feeds a day's observations to ingest_batch() in fixed-size chunks so each
transaction stays short. A chunk that hits a transient failure (timeout,
lost connection) is retried from scratch a fixed number of times with a
fixed delay; after the last attempt the failure is raised to the operator.

Retrying a chunk is safe: ingest_batch() commits once per chunk, and
re-ingesting the same (key, date, price) leaves the row unchanged.
"""

from __future__ import annotations

import asyncio
from typing import Any, Mapping, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from price_tracker.config import settings
from price_tracker.pipeline.errors import is_transient_error
from price_tracker.pipeline.ingest import IngestSummary, PriceObservation, ingest_batch

logger = structlog.get_logger(__name__)


def chunked(items: Sequence[Any], size: int) -> list[Sequence[Any]]:
    if size <= 0:
        raise ValueError("chunk size must be greater than 0")
    return [items[i:i + size] for i in range(0, len(items), size)]


async def _run_chunk(
    session_factory: async_sessionmaker[AsyncSession],
    chunk: Sequence[PriceObservation | Mapping[str, Any]],
) -> IngestSummary:
    async with session_factory() as session:
        return await ingest_batch(session, chunk)


async def ingest_in_chunks(
    session_factory: async_sessionmaker[AsyncSession],
    observations: Sequence[PriceObservation | Mapping[str, Any]],
    chunk_size: int | None = None,
    max_attempts: int | None = None,
    retry_delay_seconds: float | None = None,
    chunk_timeout_seconds: float | None = None,
) -> IngestSummary:
    """
    Ingest observations chunk by chunk, one session/transaction per chunk.

    Args:
        session_factory: Async session factory bound to the products database.
        observations: Ordered observations for the run.
        chunk_size: Observations per transaction (default INGEST_CHUNK_SIZE).
        max_attempts: Attempts per chunk on transient failure (default INGEST_MAX_ATTEMPTS).
        retry_delay_seconds: Fixed sleep between attempts (default INGEST_RETRY_DELAY_SECONDS).
        chunk_timeout_seconds: Upper bound for one attempt (default INGEST_CHUNK_TIMEOUT_SECONDS).

    Returns:
        Combined IngestSummary for all chunks.

    Raises:
        ValueError: chunk_size, max_attempts or chunk_timeout_seconds is not positive.
        RuntimeError: A chunk still failed after max_attempts. Earlier chunks
            stay committed.
    """
    size = chunk_size if chunk_size is not None else settings.INGEST_CHUNK_SIZE
    attempts = max_attempts if max_attempts is not None else settings.INGEST_MAX_ATTEMPTS
    delay = retry_delay_seconds if retry_delay_seconds is not None else settings.INGEST_RETRY_DELAY_SECONDS
    timeout = (
        chunk_timeout_seconds
        if chunk_timeout_seconds is not None
        else settings.INGEST_CHUNK_TIMEOUT_SECONDS
    )
    if attempts <= 0:
        raise ValueError("max_attempts must be greater than 0")
    if timeout <= 0:
        raise ValueError("chunk_timeout_seconds must be greater than 0")

    chunks = chunked(observations, size)
    total = IngestSummary()

    logger.info(
        "ingest_run_start",
        observations=len(observations),
        chunks=len(chunks),
        chunk_size=size,
    )

    for index, chunk in enumerate(chunks, start=1):
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                summary = await asyncio.wait_for(
                    _run_chunk(session_factory, chunk), timeout=timeout
                )
            except Exception as e:
                if not is_transient_error(e):
                    raise
                last_error = e
                logger.warning(
                    "ingest_chunk_transient_failure",
                    chunk=index,
                    attempt=attempt,
                    max_attempts=attempts,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                if attempt < attempts:
                    await asyncio.sleep(delay)
                continue

            total = total + summary
            logger.info(
                "ingest_chunk_complete",
                chunk=index,
                chunks=len(chunks),
                attempt=attempt,
                **summary.as_dict(),
            )
            break
        else:
            logger.error(
                "ingest_chunk_failed",
                chunk=index,
                attempts=attempts,
                error=str(last_error),
            )
            raise RuntimeError(
                f"Ingestion chunk {index}/{len(chunks)} failed after {attempts} attempts"
            ) from last_error

    logger.info("ingest_run_complete", **total.as_dict())
    return total

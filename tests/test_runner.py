"""
Tests for pipeline/runner.py — chunked ingestion with bounded retries.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import price_tracker.pipeline.runner as runner_module
from price_tracker.models import Product
from price_tracker.pipeline.errors import is_transient_error
from price_tracker.pipeline.ingest import IngestSummary
from price_tracker.pipeline.runner import chunked, ingest_in_chunks

from tests.conftest import GROUP_ID


def _observations(count: int) -> list[dict[str, Any]]:
    return [
        {
            "key": f"{100 + i}:Normal",
            "date": "2025-01-11",
            "price": 1 + i,
            "productId": 100 + i,
            "name": f"Card {i}",
            "groupId": GROUP_ID,
        }
        for i in range(count)
    ]


def _connection_lost() -> OperationalError:
    return OperationalError("SELECT 1", {}, ConnectionResetError("server closed the connection"))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def test_chunked_splits_in_order() -> None:
    assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    assert chunked([], 3) == []


def test_chunked_rejects_non_positive_size() -> None:
    with pytest.raises(ValueError):
        chunked([1], 0)


def test_transient_error_classification() -> None:
    assert is_transient_error(asyncio.TimeoutError())
    assert is_transient_error(_connection_lost())
    assert not is_transient_error(ValueError("bad row"))


# ---------------------------------------------------------------------------
# ingest_in_chunks
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_ingests_all_chunks(session_factory: async_sessionmaker[AsyncSession]) -> None:
    summary = await ingest_in_chunks(session_factory, _observations(5), chunk_size=2)
    assert summary == IngestSummary(inserted=5)

    async with session_factory() as session:
        assert await session.scalar(select(func.count()).select_from(Product)) == 5
        product = await session.get(Product, "104:Normal")
        assert product.current_price == Decimal("5")


@pytest.mark.asyncio
async def test_one_session_per_chunk(session_factory: async_sessionmaker[AsyncSession]) -> None:
    with patch.object(
        runner_module, "ingest_batch", new=AsyncMock(return_value=IngestSummary(updated=2))
    ) as mock_ingest:
        summary = await ingest_in_chunks(session_factory, _observations(5), chunk_size=2)

    assert mock_ingest.await_count == 3
    chunk_sizes = [len(call.args[1]) for call in mock_ingest.await_args_list]
    assert chunk_sizes == [2, 2, 1]
    assert summary == IngestSummary(updated=6)


@pytest.mark.asyncio
async def test_transient_failure_is_retried(session_factory: async_sessionmaker[AsyncSession]) -> None:
    mock_ingest = AsyncMock(side_effect=[_connection_lost(), IngestSummary(inserted=3)])

    with patch.object(runner_module, "ingest_batch", new=mock_ingest), \
            patch.object(runner_module.asyncio, "sleep", new=AsyncMock()) as mock_sleep:
        summary = await ingest_in_chunks(
            session_factory,
            _observations(3),
            max_attempts=3,
            retry_delay_seconds=7.5,
        )

    assert summary == IngestSummary(inserted=3)
    assert mock_ingest.await_count == 2
    mock_sleep.assert_awaited_once_with(7.5)


@pytest.mark.asyncio
async def test_exhausted_retries_raise(session_factory: async_sessionmaker[AsyncSession]) -> None:
    mock_ingest = AsyncMock(side_effect=asyncio.TimeoutError())

    with patch.object(runner_module, "ingest_batch", new=mock_ingest), \
            patch.object(runner_module.asyncio, "sleep", new=AsyncMock()) as mock_sleep:
        with pytest.raises(RuntimeError, match="failed after 3 attempts") as exc_info:
            await ingest_in_chunks(session_factory, _observations(2), max_attempts=3)

    assert isinstance(exc_info.value.__cause__, asyncio.TimeoutError)
    assert mock_ingest.await_count == 3
    # No sleep after the final attempt
    assert mock_sleep.await_count == 2


@pytest.mark.asyncio
async def test_non_transient_failure_is_not_retried(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    mock_ingest = AsyncMock(side_effect=ValueError("programming error"))

    with patch.object(runner_module, "ingest_batch", new=mock_ingest):
        with pytest.raises(ValueError):
            await ingest_in_chunks(session_factory, _observations(2), max_attempts=3)

    assert mock_ingest.await_count == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "option",
    [{"chunk_size": 0}, {"max_attempts": 0}, {"chunk_timeout_seconds": 0}],
)
async def test_explicit_zero_options_are_rejected(
    session_factory: async_sessionmaker[AsyncSession],
    option: dict[str, int],
) -> None:
    with patch.object(runner_module, "ingest_batch", new=AsyncMock()) as mock_ingest:
        with pytest.raises(ValueError):
            await ingest_in_chunks(session_factory, _observations(2), **option)

    mock_ingest.assert_not_awaited()


@pytest.mark.asyncio
async def test_earlier_chunks_stay_committed_when_a_later_one_fails(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    real = runner_module.ingest_batch
    calls = {"n": 0}

    async def fail_second_chunk(session, chunk):
        calls["n"] += 1
        if calls["n"] > 1:
            raise _connection_lost()
        return await real(session, chunk)

    with patch.object(runner_module, "ingest_batch", new=fail_second_chunk), \
            patch.object(runner_module.asyncio, "sleep", new=AsyncMock()):
        with pytest.raises(RuntimeError):
            await ingest_in_chunks(session_factory, _observations(4), chunk_size=2, max_attempts=2)

    async with session_factory() as session:
        assert await session.scalar(select(func.count()).select_from(Product)) == 2

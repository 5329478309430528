"""
Card Price Tracker — Transient failure classification

A transient failure is worth retrying the whole chunk for: timeouts and
lost/invalidated connections. Everything else is a per-item fault.
"""

from __future__ import annotations

import asyncio

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
    OperationalError,
    InterfaceError,
)


def is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, TRANSIENT_ERRORS):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated

"""Shared aiohttp session for calls to the matching engine.

One session is kept per event loop. The client timeout follows
``OSRM_TIMEOUT_SECONDS`` so a request can never outlive the engine budget,
and the pool is capped by ``OSRM_CONNECTION_LIMIT``.
"""

from __future__ import annotations

import asyncio
import logging

import aiohttp

from config import OSRM_CONNECTION_LIMIT, OSRM_TIMEOUT_SECONDS
from core.constants import HTTP_TIMEOUT_CONNECT, USER_AGENT

logger = logging.getLogger(__name__)


class SessionState:
    """State container for aiohttp session to avoid global variables."""

    session: aiohttp.ClientSession | None = None
    loop: asyncio.AbstractEventLoop | None = None


def _bound_to_other_loop() -> bool:
    loop = SessionState.loop
    return loop is None or loop.is_closed() or loop is not asyncio.get_running_loop()


async def get_session() -> aiohttp.ClientSession:
    """Return the shared session, creating it on first use.

    A closed session, or one created under another event loop, is replaced.
    """
    session = SessionState.session
    if session is not None and not session.closed and _bound_to_other_loop():
        logger.info("Event loop changed, replacing HTTP session")
        SessionState.session = None
        session = None

    if session is None or session.closed:
        session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(
                total=OSRM_TIMEOUT_SECONDS,
                connect=min(HTTP_TIMEOUT_CONNECT, OSRM_TIMEOUT_SECONDS),
            ),
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            connector=aiohttp.TCPConnector(limit=OSRM_CONNECTION_LIMIT),
        )
        SessionState.session = session
        SessionState.loop = asyncio.get_running_loop()
        logger.debug("Created HTTP session (pool limit %d)", OSRM_CONNECTION_LIMIT)

    return session


async def cleanup_session() -> None:
    """Close the shared session if one is open."""
    session = SessionState.session
    SessionState.session = None
    SessionState.loop = None
    if session is not None and not session.closed:
        await session.close()
        logger.info("Closed HTTP session")

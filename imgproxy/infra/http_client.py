# imgproxy/infra/http_client.py
"""
Process-wide aiohttp sessions, created on first use.

One pooled session serves every upstream hop; per-hop timeouts are passed on
each request and the session default is only a backstop.  Call
``close_all_sessions()`` from the application shutdown hook.
"""
from __future__ import annotations

import aiohttp

from imgproxy.infra.logging_config import get_logger

logger = get_logger(__name__)

FETCHER_SESSION = "fetcher"

# Backstop if a request is ever issued without its own timeout
_FETCHER_DEFAULT_TIMEOUT = aiohttp.ClientTimeout(total=60, connect=15)

_sessions: dict[str, aiohttp.ClientSession] = {}


def _new_session(timeout: aiohttp.ClientTimeout, limit: int) -> aiohttp.ClientSession:
    return aiohttp.ClientSession(
        timeout=timeout,
        connector=aiohttp.TCPConnector(limit=limit, keepalive_timeout=30),
        # Upstream hops never go through HTTP(S)_PROXY from the environment
        trust_env=False,
        # Cookies set by one upstream reply must not reach another client's request
        cookie_jar=aiohttp.DummyCookieJar(),
    )


def _get_or_create(name: str, timeout: aiohttp.ClientTimeout, limit: int) -> aiohttp.ClientSession:
    session = _sessions.get(name)
    if session is None or session.closed:
        session = _sessions[name] = _new_session(timeout, limit)
        logger.debug("HTTP session '%s' created (limit=%d)", name, limit)
    return session


def get_fetcher_session(limit: int = 50) -> aiohttp.ClientSession:
    """Pooled session for upstream image hops"""
    return _get_or_create(FETCHER_SESSION, _FETCHER_DEFAULT_TIMEOUT, limit)


async def close_all_sessions() -> None:
    while _sessions:
        name, session = _sessions.popitem()
        if not session.closed:
            await session.close()
            logger.debug("HTTP session '%s' closed", name)

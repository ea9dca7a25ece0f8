"""Explicit runtime context holding the credential-scoped client, cache and façade."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

import httpx

from morgen_mcp.cache import TTLCache
from morgen_mcp.client import MorgenClient
from morgen_mcp.config import AdapterConfig
from morgen_mcp.queries import CalendarQueries

logger = logging.getLogger(__name__)


class AdapterContext:
    """One client (and therefore one cache) per configured credential.

    Use as an async context manager so the cache sweep is started inside the
    running event loop and cancelled on exit::

        async with AdapterContext(config) as ctx:
            events = await ctx.queries.get_today_events()
    """

    def __init__(
        self,
        config: AdapterConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        cache = TTLCache(
            max_size=config.cache.max_size,
            cleanup_interval=config.cache.cleanup_interval_seconds,
        )
        self.client = MorgenClient(
            config.api_key,
            base_url=config.upstream.base_url,
            timeout=config.upstream.timeout_seconds,
            cache=cache,
            http_client=http_client,
            fanout_concurrency=config.upstream.fanout_concurrency,
        )
        self.queries = CalendarQueries(self.client, timezone=config.zone, clock=clock)
        self._started = False

    @property
    def cache(self) -> TTLCache:
        return self.client.cache

    async def start(self) -> None:
        if self._started:
            return
        self.client.start()
        self._started = True
        logger.debug(
            "Adapter context started (cache max_size=%d, fanout_concurrency=%d)",
            self.config.cache.max_size,
            self.config.upstream.fanout_concurrency,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
        self._started = False
        logger.debug("Adapter context closed")

    async def __aenter__(self) -> AdapterContext:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.aclose()

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class SelfAccountResolver:
    """
    Resolves the Jira account id the agent comments as.

    A configured id wins. Otherwise ``fetch_myself`` (the Jira ``/myself``
    call) runs once and its result is kept for the lifetime of this object.
    Failed lookups are not cached.
    """

    def __init__(
        self,
        configured_id: Optional[str] = None,
        fetch_myself: Optional[Callable[[], Awaitable[Optional[str]]]] = None,
    ):
        self._configured_id = configured_id
        self._fetch_myself = fetch_myself
        self._cached: Optional[str] = None
        self._lock = asyncio.Lock()

    async def __call__(self) -> Optional[str]:
        if self._configured_id:
            return self._configured_id
        if self._cached:
            return self._cached
        if self._fetch_myself is None:
            return None
        async with self._lock:
            if self._cached:
                return self._cached
            try:
                self._cached = await self._fetch_myself()
            except Exception as exc:
                logger.warning("self_identity.lookup_failed", extra={"error": str(exc)})
                return None
            return self._cached

    def reset(self) -> None:
        self._cached = None

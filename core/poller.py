"""HTTP intent feed poller.

Module purpose and system role:
    - Fetch a JSON feed on a fixed interval and hand each new item to a
      filler handler in delivery order.
    - Items already delivered (same id, or same content when no id is
      available) are not delivered again while they stay in the window.

Integration points and dependencies:
    - ``aiohttp`` for the fetch.
    - Handlers come from :meth:`core.filler.BaseFiller.create`.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Iterable, List, Optional

import aiohttp

from core.logger import StructuredLogger

LOGGER = StructuredLogger("poller")

Extract = Callable[[Any], Iterable[Any]]
Accept = Callable[[Any], bool]
KeyFn = Callable[[Any], Optional[str]]


def _default_extract(payload: Any) -> Iterable[Any]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        data = payload.get("data", [])
        return data if isinstance(data, list) else [data]
    return []


def content_key(item: Any) -> str:
    blob = json.dumps(item, sort_keys=True, default=str).encode()
    return hashlib.sha256(blob).hexdigest()


class EventPoller:
    """Poll ``url`` and dispatch unseen items to ``handler``."""

    def __init__(
        self,
        url: str,
        handler: Callable[[Any], Awaitable[Any]],
        *,
        interval: float = 4.0,
        extract: Extract | None = None,
        accept: Accept | None = None,
        key: KeyFn | None = None,
        request_timeout: float = 10.0,
        window: int = 10_000,
        name: str = "poller",
    ) -> None:
        self.url = url
        self.handler = handler
        self.interval = interval
        self.extract = extract or _default_extract
        self.accept = accept
        self.key = key
        self.request_timeout = request_timeout
        self.window = window
        self.name = name
        self._seen: "OrderedDict[str, None]" = OrderedDict()
        self._stopping = asyncio.Event()

    # ------------------------------------------------------------------
    async def fetch(self) -> Any:
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(self.url) as resp:
                if resp.status != 200:
                    raise RuntimeError(f"{self.url} returned HTTP {resp.status}")
                return await resp.json()

    def _item_key(self, item: Any) -> str:
        if self.key is not None:
            found = self.key(item)
            if found:
                return str(found)
        return content_key(item)

    def _remember(self, key: str) -> None:
        self._seen[key] = None
        while len(self._seen) > self.window:
            self._seen.popitem(last=False)

    async def run_once(self) -> int:
        """Fetch once and deliver new items.  Returns the delivered count."""

        try:
            payload = await self.fetch()
            items: List[Any] = list(self.extract(payload))
        except Exception as exc:
            LOGGER.error("fetch_failed", repr(exc), source=self.name, url=self.url)
            return 0

        delivered = 0
        for item in items:
            key = self._item_key(item)
            if key in self._seen:
                continue
            if self.accept is not None and not self.accept(item):
                LOGGER.debug("item_skipped", source=self.name, key=key)
                self._remember(key)
                continue
            self._remember(key)
            try:
                await self.handler(item)
            except Exception as exc:
                LOGGER.error("handler_failed", repr(exc), source=self.name, key=key)
                continue
            delivered += 1
        if delivered:
            LOGGER.debug("poll_cycle", source=self.name, fetched=len(items), delivered=delivered)
        return delivered

    async def run_forever(self) -> None:
        LOGGER.info("poller_started", source=self.name, url=self.url, interval=self.interval)
        while not self._stopping.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stopping.wait(), self.interval)
            except asyncio.TimeoutError:
                pass
        LOGGER.info("poller_stopped", source=self.name)

    def stop(self) -> None:
        self._stopping.set()

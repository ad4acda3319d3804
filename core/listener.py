"""Contract event listener built on log polling.

Each watched ``(chain_id, address)`` keeps its own block cursor.  A cycle
reads logs from the cursor to the latest block, hands every decoded event to
the handler and only then advances the cursor, so an RPC failure on one
chain replays that range on the next cycle without touching other chains.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence, Tuple

from core.chain import ChainProvider
from core.logger import StructuredLogger

LOGGER = StructuredLogger("listener")

EventHandler = Callable[[Dict[str, Any], int, int], Awaitable[Any]]


class ChainEventListener:
    def __init__(
        self,
        provider: ChainProvider,
        contracts: Sequence[Tuple[int, str]],
        abi: Sequence[Mapping[str, Any]],
        event_name: str,
        handler: EventHandler,
        *,
        interval: float = 4.0,
        start_block: Optional[Mapping[int, int]] = None,
        max_range: int = 2_000,
        name: str = "listener",
    ) -> None:
        self.provider = provider
        self.contracts = [(int(cid), addr) for cid, addr in contracts]
        self.abi = abi
        self.event_name = event_name
        self.handler = handler
        self.interval = interval
        self.max_range = max_range
        self.name = name
        self.cursors: Dict[Tuple[int, str], int] = {}
        for cid, addr in self.contracts:
            if start_block and cid in start_block and start_block[cid] is not None:
                self.cursors[(cid, addr)] = int(start_block[cid])
        self._stopping = asyncio.Event()

    # ------------------------------------------------------------------
    async def _poll_contract(self, chain_id: int, address: str) -> int:
        latest = (await self.provider.latest_block(chain_id)).number
        key = (chain_id, address)
        if key not in self.cursors:
            # no configured start: only watch what happens from now on
            self.cursors[key] = latest + 1
            LOGGER.info("listener_cursor_init", chain_id=chain_id, contract=address, block=latest + 1)
            return 0
        from_block = self.cursors[key]
        if from_block > latest:
            return 0
        to_block = min(latest, from_block + self.max_range - 1)
        events = await self.provider.get_events(
            chain_id, address, self.abi, self.event_name, from_block, to_block
        )
        for event in sorted(events, key=lambda e: (e.block_number, e.log_index)):
            try:
                await self.handler(event.args, chain_id, event.block_number)
            except Exception as exc:
                LOGGER.error(
                    "event_handler_failed", repr(exc), chain_id=chain_id,
                    tx_hash=event.tx_hash, source=self.name,
                )
        self.cursors[key] = to_block + 1
        return len(events)

    async def run_once(self) -> int:
        """Poll every contract once; returns the number of events dispatched."""

        total = 0
        for chain_id, address in self.contracts:
            try:
                total += await self._poll_contract(chain_id, address)
            except Exception as exc:
                LOGGER.error(
                    "listener_cycle_failed", repr(exc), chain_id=chain_id,
                    contract=address, event_name=self.event_name, source=self.name,
                )
        return total

    async def run_forever(self) -> None:
        LOGGER.info("listener_started", source=self.name, event_name=self.event_name)
        while not self._stopping.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stopping.wait(), self.interval)
            except asyncio.TimeoutError:
                pass
        LOGGER.info("listener_stopped", source=self.name)

    def stop(self) -> None:
        self._stopping.set()

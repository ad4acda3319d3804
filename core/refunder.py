"""Background expiry scanner that refunds unfilled orders.

Module purpose and system role:
    - Periodically find OPEN orders past their fill deadline and drive each
      through ``OPEN → REFUNDING → REFUNDED`` (or back to ``OPEN``).
    - Mark orders someone else already filled as ``FILED``.
    - Re-check orders stuck in ``REFUNDING`` after a crash.

Integration points and dependencies:
    - :class:`core.store.OpenOrderStore` is the only state shared with the
      fill pipeline.
    - Protocol specifics (status lookup, refund call) come from a
      :class:`RefundClient`.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from core import metrics
from core.chain import BlockInfo, ChainProvider
from core.errors import RefundFailed
from core.intent import OpenOrder, OrderStatus
from core.logger import StructuredLogger
from core.store import OpenOrderStore
from core.tx_engine.kill_switch import kill_switch_triggered, record_kill_event

LOGGER = StructuredLogger("refunder")

DEFAULT_REFUND_GAS_MARGIN = 1.1


class OnchainStatus(str, Enum):
    UNKNOWN = "UNKNOWN"
    OPENED = "OPENED"
    FILLED = "FILLED"
    SETTLED = "SETTLED"
    REFUNDED = "REFUNDED"


class RefundClient:
    """Protocol-specific half of the refund loop."""

    protocol_name = "refund"

    async def order_status(self, order: OpenOrder) -> OnchainStatus:
        raise NotImplementedError

    async def build_refund(self, order: OpenOrder) -> Tuple[Any, int]:
        """Return ``(contract_fn, value)`` for the refund transaction."""
        raise NotImplementedError


class ExpiryScanner:
    """Refund loop over the open-order store."""

    def __init__(
        self,
        store: OpenOrderStore,
        provider: ChainProvider,
        client: RefundClient,
        *,
        interval: float = 15.0,
        order_timeout: float = 180.0,
        confirmation_timeout: float = 120.0,
        gas_margin: float = DEFAULT_REFUND_GAS_MARGIN,
        stale_after: float | None = None,
    ) -> None:
        if gas_margin < 1.1:
            raise ValueError("refund gas margin must leave at least 10% headroom")
        self.store = store
        self.provider = provider
        self.client = client
        self.interval = interval
        self.order_timeout = order_timeout
        self.confirmation_timeout = confirmation_timeout
        self.gas_margin = gas_margin
        self.stale_after = stale_after if stale_after is not None else max(interval, order_timeout)
        self._stopping = asyncio.Event()

    # ------------------------------------------------------------------
    def _label(self, order: OpenOrder) -> str:
        return f"{self.client.protocol_name}-{order.order_id}"

    async def reconcile_stale(self, now: float | None = None) -> int:
        """Resolve REFUNDING rows left behind by a crash from on-chain status."""

        now = time.time() if now is None else now
        resolved = 0
        for order in self.store.list_stale_refunding(now - self.stale_after):
            label = self._label(order)
            try:
                status = await asyncio.wait_for(self.client.order_status(order), self.order_timeout)
            except Exception as exc:
                LOGGER.error("stale_check_failed", repr(exc), intent=label, chain_id=order.destination_chain_id)
                continue
            if status is OnchainStatus.REFUNDED:
                target = OrderStatus.REFUNDED
            elif status in (OnchainStatus.FILLED, OnchainStatus.SETTLED):
                target = OrderStatus.FILED
            else:
                target = OrderStatus.OPEN
            if self.store.transition(order.order_id, OrderStatus.REFUNDING, target):
                resolved += 1
                LOGGER.info("stale_refunding_resolved", intent=label, onchain=status.value, status=target.value)
        return resolved

    # ------------------------------------------------------------------
    async def _refund(self, order: OpenOrder) -> str:
        label = self._label(order)
        chain_id = order.destination_chain_id
        fn, value = await self.client.build_refund(order)
        tx_hash = await self.provider.submit(
            chain_id, fn, value=value, gas_margin=self.gas_margin, intent=label
        )
        await self.provider.wait_for_receipt(
            chain_id, tx_hash, timeout=self.confirmation_timeout, intent=label
        )
        return tx_hash

    async def _process_order(self, order: OpenOrder) -> Optional[OrderStatus]:
        """Handle one expired order; raises :class:`RefundFailed` on failure."""

        label = self._label(order)
        try:
            status = await asyncio.wait_for(self.client.order_status(order), self.order_timeout)
        except Exception as exc:
            # nothing claimed yet; leave the row OPEN for the next tick
            LOGGER.error("status_check_failed", repr(exc), intent=label, chain_id=order.destination_chain_id)
            return None
        if status is not OnchainStatus.UNKNOWN:
            if self.store.transition(order.order_id, OrderStatus.OPEN, OrderStatus.FILED):
                LOGGER.info("order_filed", intent=label, onchain=status.value)
                return OrderStatus.FILED
            return None

        if not self.store.claim_for_refund(order.order_id):
            LOGGER.debug("claim_lost", intent=label)
            return None
        LOGGER.info("refunding", intent=label, chain_id=order.destination_chain_id)
        try:
            tx_hash = await asyncio.wait_for(self._refund(order), self.order_timeout)
        except (Exception, asyncio.CancelledError) as exc:
            self.store.transition(order.order_id, OrderStatus.REFUNDING, OrderStatus.OPEN)
            metrics.record_refund_failure(self.client.protocol_name)
            if isinstance(exc, asyncio.CancelledError):
                raise
            raise RefundFailed(f"refund failed: {exc!r}", intent_id=label) from exc
        self.store.transition(order.order_id, OrderStatus.REFUNDING, OrderStatus.REFUNDED)
        metrics.record_refund(self.client.protocol_name)
        LOGGER.info("refunded", intent=label, chain_id=order.destination_chain_id, tx_hash=tx_hash)
        return OrderStatus.REFUNDED

    async def run_once(self, now: int | None = None) -> Dict[str, OrderStatus]:
        """One scan cycle.  Returns ``{order_id: new_status}`` for touched orders.

        The first refund failure aborts the rest of the cycle; the next tick
        starts again from clean OPEN rows.
        """

        results: Dict[str, OrderStatus] = {}
        if kill_switch_triggered():
            record_kill_event("refunder")
            return results
        now = int(time.time()) if now is None else int(now)
        await self.reconcile_stale(now)
        expired = self.store.list_expired_open(now)
        for chain_id, orders in expired.items():
            try:
                block: BlockInfo = await asyncio.wait_for(
                    self.provider.latest_block(chain_id), self.order_timeout
                )
            except Exception as exc:
                LOGGER.error("latest_block_failed", repr(exc), chain_id=chain_id)
                continue
            for order in orders:
                if block.timestamp <= order.fill_deadline:
                    # local clock ahead of chain; retry next tick
                    continue
                try:
                    new_status = await asyncio.wait_for(
                        self._process_order(order), self.order_timeout * 2
                    )
                except RefundFailed as exc:
                    LOGGER.error("refund_failed", exc.message, intent=exc.intent_id, chain_id=chain_id)
                    return results
                except Exception as exc:
                    LOGGER.error(
                        "refund_failed", repr(exc), intent=self._label(order), chain_id=chain_id
                    )
                    return results
                if new_status is not None:
                    results[order.order_id] = new_status
        return results

    # ------------------------------------------------------------------
    async def run_forever(self) -> None:
        LOGGER.info("refunder_started", interval=self.interval)
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover - runtime guard
                LOGGER.error("refund_cycle_failed", repr(exc))
            try:
                await asyncio.wait_for(self._stopping.wait(), self.interval)
            except asyncio.TimeoutError:
                pass
        LOGGER.info("refunder_stopped")

    def stop(self) -> None:
        self._stopping.set()

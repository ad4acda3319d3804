"""Fulfillment pipeline shared by every intent protocol.

Module purpose and system role:
    - Drive one observed intent through filter → rules → prepare → fill →
      settle, stopping at the first failed gate.
    - Catch every per-intent failure at ``process`` so listener and poller
      loops never die on a bad intent.

Integration points and dependencies:
    - Protocols subclass :class:`BaseFiller` and implement
      ``parse_event_args``, ``fill`` and optionally ``settle_order``,
      ``retrieve_origin_info``, ``retrieve_target_info``, ``prepare_intent``.
    - Chain access goes through :class:`core.chain.ChainProvider`.
"""

from __future__ import annotations

import asyncio
import re
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

from core import metrics
from core.chain import ChainProvider
from core.config import ProtocolMetadata
from core.errors import (
    ApprovalFailed,
    ConfirmationTimeout,
    FillTransactionFailed,
    FilterRejected,
    InsufficientBalance,
    RuleFailed,
    SettlementFailed,
    SolverError,
    TransactionReverted,
)
from core.filters import AllowBlockLists, is_allowed_for_all
from core.intent import FillOutcome, Intent, PipelineStage, PreparedIntent, TokenAmount, is_native
from core.logger import StructuredLogger
from core.resolver import AdapterResolver
from core.rules import Rule, RuleContext, RuleResult, aggregate_amounts, evaluate_rules

Handler = Callable[..., Awaitable[FillOutcome]]


def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_") or "filler"


class BaseFiller:
    """Protocol-agnostic fill pipeline."""

    def __init__(
        self,
        provider: ChainProvider,
        allow_block_lists: AllowBlockLists,
        metadata: ProtocolMetadata,
        rules: Optional[Sequence[Rule]] = None,
        *,
        confirmation_timeout: float = 120.0,
        logger: StructuredLogger | None = None,
        submitted_window: int = 10_000,
    ) -> None:
        self.provider = provider
        self.allow_block_lists = allow_block_lists
        self.metadata = metadata
        self.protocol_name = metadata.protocol_name
        self.resolver = AdapterResolver(metadata.adapter_infos())
        self.rules: List[Rule] = list(rules or [])
        self.confirmation_timeout = confirmation_timeout
        self.log = logger or StructuredLogger(_slug(metadata.protocol_name))
        self._in_flight: Set[str] = set()
        self.submitted_window = submitted_window
        self._submitted: "OrderedDict[str, None]" = OrderedDict()

    # ------------------------------------------------------------------
    # Protocol hooks
    # ------------------------------------------------------------------
    def parse_event_args(self, raw: Any, origin_chain_id: int | None = None) -> Intent:
        raise NotImplementedError

    async def fill(self, intent: Intent, prepared: PreparedIntent) -> str:
        raise NotImplementedError

    async def settle_order(self, intent: Intent, prepared: PreparedIntent) -> None:
        return None

    async def retrieve_origin_info(self, intent: Intent) -> List[str]:
        chain = self.provider.chain_name(intent.origin_chain_id)
        return [self._describe(leg, "in", chain) for leg in intent.reward_legs]

    async def retrieve_target_info(self, intent: Intent) -> List[str]:
        chain = self.provider.chain_name(intent.destination_chain_id)
        return [self._describe(leg, "out", chain) for leg in intent.target_legs]

    @staticmethod
    def _describe(leg: TokenAmount, direction: str, chain: str) -> str:
        token = "ETH" if is_native(leg.token) else leg.token
        return f"{leg.amount} {token} {direction} on {chain}"

    # ------------------------------------------------------------------
    def intent_label(self, intent: Intent) -> str:
        return f"{self.protocol_name}-{intent.intent_id}"

    def is_eligible(self, intent: Intent) -> bool:
        dest = intent.destination_chain_id
        aliases: Tuple[Any, ...] = (dest, self.provider.chain_name(dest))
        return is_allowed_for_all(
            self.allow_block_lists,
            sender_address=intent.sender,
            destination_domains=[aliases],
            recipient_addresses=intent.recipients(),
        )

    def ensure_eligible(self, intent: Intent) -> None:
        if not self.is_eligible(intent):
            raise FilterRejected("filtered", intent_id=self.intent_label(intent))

    def _mark_submitted(self, intent_id: str) -> None:
        self._submitted[intent_id] = None
        while len(self._submitted) > self.submitted_window:
            self._submitted.popitem(last=False)

    async def evaluate(self, intent: Intent) -> RuleResult:
        context = RuleContext(provider=self.provider, protocol_name=self.protocol_name, filler=self)
        return await evaluate_rules(self.rules, intent, context)

    # ------------------------------------------------------------------
    async def prepare_intent(self, intent: Intent) -> PreparedIntent:
        """Resolve the adapter, check balances, then approve.

        Every balance is checked before the first approval is sent, so an
        under-funded intent never costs a transaction.
        """

        label = self.intent_label(intent)
        adapter = self.resolver.resolve(intent.destination_chain_id, intent_id=label)
        chain_id = adapter.chain_id
        required = aggregate_amounts(intent.target_legs)
        filler_address = await self.provider.get_signer_address(chain_id)

        async def _check(token: str, amount: int) -> None:
            balance = await self.provider.get_balance(chain_id, token, filler_address)
            self.log.debug(
                "balance_checked", intent=label, chain_id=chain_id, token=token,
                balance=balance, required=amount,
            )
            if balance < amount:
                raise InsufficientBalance(chain_id, token, amount, balance, intent_id=label)

        await asyncio.gather(*(_check(t, a) for t, a in required.items()))

        self.log.debug(
            "approving_tokens", intent=label, chain_id=chain_id, adapter=adapter.address
        )

        async def _approve(token: str, amount: int) -> None:
            try:
                allowance = await self.provider.get_allowance(
                    chain_id, token, filler_address, adapter.address
                )
                if allowance >= amount:
                    self.log.debug("approval_skipped", intent=label, token=token, allowance=allowance)
                    return
                await self.provider.approve(chain_id, token, adapter.address, amount, intent=label)
            except Exception as exc:
                raise ApprovalFailed(token, str(exc), intent_id=label) from exc
            self.log.debug("approved", intent=label, chain_id=chain_id, token=token, amount=amount)

        await asyncio.gather(
            *(_approve(t, a) for t, a in required.items() if not is_native(t))
        )
        return PreparedIntent(adapter=adapter, required=required, filler_address=filler_address)

    # ------------------------------------------------------------------
    async def submit_and_wait(
        self, intent: Intent, chain_id: int, fn: Any, *, value: int = 0
    ) -> Tuple[str, Dict[str, Any]]:
        """Send ``fn`` and wait for it; the two steps fail separately."""

        label = self.intent_label(intent)
        try:
            tx_hash = await self.provider.submit(chain_id, fn, value=value, intent=label)
        except Exception as exc:
            raise FillTransactionFailed(f"fill submission failed: {exc}", intent_id=label) from exc
        # from here on the fill may land; never resend it
        self._mark_submitted(intent.intent_id)
        try:
            receipt = await asyncio.wait_for(
                self.provider.wait_for_receipt(
                    chain_id, tx_hash, timeout=self.confirmation_timeout, intent=label
                ),
                timeout=self.confirmation_timeout + 5,
            )
        except TransactionReverted as exc:
            self._submitted.pop(intent.intent_id, None)
            raise exc.with_intent(label)
        except SolverError as exc:
            raise exc.with_intent(label)
        except Exception as exc:
            raise ConfirmationTimeout(
                f"{tx_hash} confirmation failed: {exc!r}", intent_id=label
            ) from exc
        return tx_hash, receipt

    # ------------------------------------------------------------------
    async def process(self, raw: Any, origin_chain_id: int | None = None) -> FillOutcome:
        """Run the whole pipeline for one delivery of ``raw``."""

        try:
            intent = self.parse_event_args(raw, origin_chain_id)
        except (KeyError, TypeError, ValueError) as exc:
            self.log.error("parse_failed", str(exc), chain_id=origin_chain_id)
            return FillOutcome("", PipelineStage.FAILED, error=f"parse failed: {exc}")

        label = self.intent_label(intent)
        metrics.record_observed(self.protocol_name)
        if intent.intent_id in self._in_flight or intent.intent_id in self._submitted:
            self.log.debug("intent_duplicate", intent=label)
            return FillOutcome(intent.intent_id, PipelineStage.SKIPPED)
        try:
            self.ensure_eligible(intent)
        except FilterRejected as exc:
            self.log.debug("intent_filtered", intent=label, sender=intent.sender)
            metrics.record_filtered(self.protocol_name)
            return FillOutcome(intent.intent_id, PipelineStage.REJECTED, error=exc.message)

        self._in_flight.add(intent.intent_id)
        started = time.monotonic()
        stage = PipelineStage.FILTERED
        tx_hash: str | None = None
        try:
            origin, target = await asyncio.gather(
                self.retrieve_origin_info(intent), self.retrieve_target_info(intent)
            )
            self.log.info("intent_indexed", intent=label, origin=", ".join(origin), target=", ".join(target))

            self.log.info("intent_evaluating", intent=label)
            result = await self.evaluate(intent)
            if not result.success:
                raise RuleFailed(result.error, intent_id=label)
            stage = PipelineStage.RULES_EVALUATED

            prepared = await self.prepare_intent(intent)
            stage = PipelineStage.PREPARED

            self.log.info("intent_filling", intent=label, chain_id=intent.destination_chain_id)
            tx_hash = await self.fill(intent, prepared)
            stage = PipelineStage.FILLED
            metrics.record_fill(self.protocol_name, time.monotonic() - started)
            self.log.info(
                "intent_filled", intent=label, chain_id=intent.destination_chain_id, tx_hash=tx_hash
            )

            try:
                await self.settle_order(intent, prepared)
            except Exception as exc:
                err = exc if isinstance(exc, SettlementFailed) else SettlementFailed(str(exc), intent_id=label)
                self.log.error("settlement_failed", str(err), intent=label)
                metrics.record_failure(self.protocol_name, err)
                return FillOutcome(intent.intent_id, stage, error=str(err), tx_hash=tx_hash)
            stage = PipelineStage.SETTLED
            metrics.record_settlement(self.protocol_name)
            self.log.info("intent_settled", intent=label, chain_id=intent.origin_chain_id)
            return FillOutcome(intent.intent_id, stage, tx_hash=tx_hash)
        except RuleFailed as exc:
            self.log.error("rule_failed", exc.reason, intent=label)
            metrics.record_rule_rejection(self.protocol_name)
            return FillOutcome(intent.intent_id, PipelineStage.REJECTED, error=exc.reason)
        except SolverError as exc:
            self.log.error(
                "intent_failed", str(exc), intent=label, stage=stage.value, error_type=type(exc).__name__
            )
            metrics.record_failure(self.protocol_name, exc)
            return FillOutcome(intent.intent_id, PipelineStage.FAILED, error=str(exc), tx_hash=tx_hash)
        except Exception as exc:
            # boundary: one bad intent must not stop the feed
            self.log.error(
                "intent_failed", repr(exc), intent=label, stage=stage.value, error_type=type(exc).__name__
            )
            metrics.record_failure(self.protocol_name, exc)
            return FillOutcome(intent.intent_id, PipelineStage.FAILED, error=repr(exc))
        finally:
            self._in_flight.discard(intent.intent_id)

    # ------------------------------------------------------------------
    def create(self) -> Handler:
        """Return the coroutine handler listeners and pollers call."""

        async def handler(raw: Any, origin_chain_id: int | None = None, *_: Any) -> FillOutcome:
            return await self.process(raw, origin_chain_id)

        return handler

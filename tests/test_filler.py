"""End-to-end fill pipeline against an in-memory chain."""

import asyncio

import pytest

from core.config import validate_metadata
from core.errors import FilterRejected, TransactionReverted
from core.filler import BaseFiller
from core.filters import AllowBlockListItem, AllowBlockLists
from core.intent import ZERO_ADDRESS, Intent, PipelineStage, TokenAmount
from core.rules import BASE_RULES, RuleResult

from dummies import ADAPTER, DummyFn, DummyProvider, TOKEN_A

SENDER = "0x5E00000000000000000000000000000000000005"
RECIPIENT = "0x7E00000000000000000000000000000000000007"

METADATA = validate_metadata(
    {"protocol_name": "Dummy", "adapters": [{"address": ADAPTER, "chain_name": "optimism"}]}
)


class DummyFiller(BaseFiller):
    def __init__(self, *args, settle_error=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.settle_error = settle_error
        self.fills = []
        self.settled = []

    def parse_event_args(self, raw, origin_chain_id=None):
        return Intent(
            intent_id=raw["id"],
            origin_chain_id=1,
            destination_chain_id=raw.get("dest", 10),
            sender=raw.get("sender", SENDER),
            recipient=RECIPIENT,
            reward_legs=(TokenAmount(TOKEN_A, 600),),
            target_legs=tuple(TokenAmount(t, a, RECIPIENT) for t, a in raw["legs"]),
            deadline=10_000,
            payload=raw,
        )

    async def fill(self, intent, prepared):
        self.fills.append(intent.intent_id)
        fn = DummyFn(self.provider, prepared.adapter.address, "fill", (intent.intent_id,))
        tx_hash, _ = await self.submit_and_wait(intent, intent.destination_chain_id, fn, value=0)
        return tx_hash

    async def settle_order(self, intent, prepared):
        if self.settle_error is not None:
            raise self.settle_error
        self.settled.append(intent.intent_id)


def _filler(provider, rules=BASE_RULES, lists=None, **kwargs):
    return DummyFiller(provider, lists or AllowBlockLists(), METADATA, list(rules), **kwargs)


def _run(filler, raw):
    return asyncio.run(filler.process(raw))


def test_funded_intent_fills_and_settles(captured):
    provider = DummyProvider()
    provider.balances[(10, TOKEN_A.lower())] = 1_000
    filler = _filler(provider)

    outcome = _run(filler, {"id": "0x01", "legs": [(TOKEN_A, 500)]})

    assert outcome.stage is PipelineStage.SETTLED
    assert outcome.error is None
    assert provider.approvals[0][3] >= 500
    assert provider.approvals[0][2].lower() == ADAPTER.lower()
    assert len(provider.submitted) == 1
    events = [e["event"] for e in captured if e["module"] == "dummy"]
    for name in ("intent_indexed", "intent_evaluating", "intent_filling", "intent_filled", "intent_settled"):
        assert name in events
    assert events.index("intent_filling") < events.index("intent_filled")
    assert filler.settled == ["0x01"]


def test_underfunded_intent_never_submits():
    provider = DummyProvider()
    provider.balances[(10, TOKEN_A.lower())] = 400
    filler = _filler(provider, rules=[])

    outcome = _run(filler, {"id": "0x02", "legs": [(TOKEN_A, 500)]})

    assert outcome.stage is PipelineStage.FAILED
    assert "Insufficient balance" in outcome.error
    assert provider.approvals == []
    assert provider.submitted == []
    assert filler.fills == []


def test_balance_rule_rejects_aggregate_shortfall():
    provider = DummyProvider()
    provider.balances[(10, TOKEN_A.lower())] = 300
    filler = _filler(provider)
    outcome = _run(filler, {"id": "0x03", "legs": [(TOKEN_A, 100), (TOKEN_A, 250)]})
    assert outcome.stage is PipelineStage.REJECTED
    assert "Insufficient balance on destination chain 10" in outcome.error
    assert provider.approvals == []


def test_missing_adapter_fails_before_any_transaction():
    provider = DummyProvider()
    provider.balances[(8453, TOKEN_A.lower())] = 1_000
    outcome = _run(_filler(provider), {"id": "0x04", "dest": 8453, "legs": [(TOKEN_A, 5)]})
    assert outcome.stage is PipelineStage.FAILED
    assert "No adapter found for destination chain 8453" in outcome.error
    assert provider.submitted == []


def test_approval_failure():
    provider = DummyProvider()
    provider.balances[(10, TOKEN_A.lower())] = 1_000
    provider.approve_error = RuntimeError("rpc down")
    outcome = _run(_filler(provider), {"id": "0x05", "legs": [(TOKEN_A, 5)]})
    assert outcome.stage is PipelineStage.FAILED
    assert "Approval of" in outcome.error
    assert provider.submitted == []


def test_existing_allowance_and_native_skip_approval():
    provider = DummyProvider()
    provider.balances[(10, TOKEN_A.lower())] = 1_000
    provider.balances[(10, ZERO_ADDRESS)] = 1_000
    provider.allowances[(10, TOKEN_A.lower(), METADATA.adapters[0].address.lower())] = 10_000
    outcome = _run(_filler(provider), {"id": "0x06", "legs": [(TOKEN_A, 5), (ZERO_ADDRESS, 7)]})
    assert outcome.stage is PipelineStage.SETTLED
    assert provider.approvals == []


def test_submission_failure_allows_redelivery():
    provider = DummyProvider()
    provider.balances[(10, TOKEN_A.lower())] = 1_000
    provider.submit_error = RuntimeError("underpriced")
    filler = _filler(provider)

    outcome = _run(filler, {"id": "0x07", "legs": [(TOKEN_A, 5)]})
    assert outcome.stage is PipelineStage.FAILED
    assert "fill submission failed" in outcome.error

    provider.submit_error = None
    assert _run(filler, {"id": "0x07", "legs": [(TOKEN_A, 5)]}).stage is PipelineStage.SETTLED


def test_confirmation_failure_blocks_refill():
    provider = DummyProvider()
    provider.balances[(10, TOKEN_A.lower())] = 1_000
    provider.receipt_error = RuntimeError("timeout")
    filler = _filler(provider)

    outcome = _run(filler, {"id": "0x08", "legs": [(TOKEN_A, 5)]})
    assert outcome.stage is PipelineStage.FAILED
    assert "confirmation failed" in outcome.error

    provider.receipt_error = None
    assert _run(filler, {"id": "0x08", "legs": [(TOKEN_A, 5)]}).stage is PipelineStage.SKIPPED
    assert len(provider.submitted) == 1


def test_reverted_fill_can_be_retried():
    provider = DummyProvider()
    provider.balances[(10, TOKEN_A.lower())] = 1_000
    provider.receipt_error = TransactionReverted("reverted")
    filler = _filler(provider)
    assert _run(filler, {"id": "0x09", "legs": [(TOKEN_A, 5)]}).stage is PipelineStage.FAILED
    provider.receipt_error = None
    assert _run(filler, {"id": "0x09", "legs": [(TOKEN_A, 5)]}).stage is PipelineStage.SETTLED


def test_settlement_failure_keeps_fill():
    provider = DummyProvider()
    provider.balances[(10, TOKEN_A.lower())] = 1_000
    filler = _filler(provider, settle_error=RuntimeError("claim reverted"))
    outcome = _run(filler, {"id": "0x0a", "legs": [(TOKEN_A, 5)]})
    assert outcome.stage is PipelineStage.FILLED
    assert "claim reverted" in outcome.error
    assert outcome.tx_hash == provider.submitted[0]["tx_hash"]


def test_blocked_sender_is_filtered_before_rules():
    provider = DummyProvider()
    calls = []

    async def spy(intent, context):
        calls.append(intent.intent_id)
        return RuleResult.ok()

    lists = AllowBlockLists(block_list=[AllowBlockListItem(sender_address=SENDER.lower())])
    outcome = _run(_filler(provider, rules=[spy], lists=lists), {"id": "0x0b", "legs": [(TOKEN_A, 5)]})
    assert outcome.stage is PipelineStage.REJECTED
    assert outcome.error == "filtered"
    assert calls == []


def test_destination_allow_list_by_chain_name():
    provider = DummyProvider()
    provider.balances[(10, TOKEN_A.lower())] = 1_000
    lists = AllowBlockLists(allow_list=[AllowBlockListItem(destination_domain="base")])
    outcome = _run(_filler(provider, lists=lists), {"id": "0x0c", "legs": [(TOKEN_A, 5)]})
    assert outcome.error == "filtered"


def test_rule_failure_rejects():
    provider = DummyProvider()

    async def never(intent, context):
        return RuleResult.fail("too small")

    outcome = _run(_filler(provider, rules=[never]), {"id": "0x0d", "legs": [(TOKEN_A, 5)]})
    assert outcome.stage is PipelineStage.REJECTED
    assert outcome.error == "too small"
    assert provider.approvals == []


def test_parse_failure_is_contained():
    outcome = _run(_filler(DummyProvider()), {"legs": []})
    assert outcome.stage is PipelineStage.FAILED
    assert outcome.error.startswith("parse failed")


def test_concurrent_redelivery_is_skipped():
    provider = DummyProvider()
    provider.balances[(10, TOKEN_A.lower())] = 1_000
    filler = _filler(provider)
    raw = {"id": "0x0e", "legs": [(TOKEN_A, 5)]}

    async def both():
        return await asyncio.gather(filler.process(raw), filler.process(raw))

    stages = sorted(o.stage.value for o in asyncio.run(both()))
    assert stages == ["SETTLED", "SKIPPED"]
    assert len(provider.submitted) == 1


def test_create_returns_handler():
    provider = DummyProvider()
    provider.balances[(10, TOKEN_A.lower())] = 1_000
    handler = _filler(provider).create()
    outcome = asyncio.run(handler({"id": "0x0f", "legs": [(TOKEN_A, 5)]}, 1, 123))
    assert outcome.stage is PipelineStage.SETTLED


def test_ensure_eligible_raises_filter_rejected():
    lists = AllowBlockLists(block_list=[AllowBlockListItem(sender_address=SENDER)])
    filler = _filler(DummyProvider(), lists=lists)
    intent = filler.parse_event_args({"id": "0x0d", "legs": [(TOKEN_A, 5)]})
    with pytest.raises(FilterRejected) as err:
        filler.ensure_eligible(intent)
    assert err.value.intent_id == "Dummy-0x0d"


def test_submitted_ids_are_bounded():
    provider = DummyProvider()
    provider.balances[(10, TOKEN_A.lower())] = 1_000
    filler = _filler(provider, submitted_window=2)
    for intent_id in ("0x10", "0x11", "0x12"):
        assert _run(filler, {"id": intent_id, "legs": [(TOKEN_A, 5)]}).stage is PipelineStage.SETTLED
    assert list(filler._submitted) == ["0x11", "0x12"]
    assert _run(filler, {"id": "0x12", "legs": [(TOKEN_A, 5)]}).stage is PipelineStage.SKIPPED

"""Eco intent parsing, fill call and reward withdrawal."""

import asyncio

import pytest
from eth_abi import encode
from hexbytes import HexBytes

from core.config import validate_metadata
from core.intent import PipelineStage
from solvers.eco import EcoFiller, create, decode_transfer

from dummies import ADAPTER, SIGNER, TOKEN_A, DummyProvider

SOURCE = "0x1111111111111111111111111111111111111111"
CREATOR = "0x2222222222222222222222222222222222222222"
RECIPIENT = "0x3333333333333333333333333333333333333333"
PROVER = "0x4444444444444444444444444444444444444444"
REWARD = "0x5555555555555555555555555555555555555555"
HASH = HexBytes("0x" + "ab" * 32)

METADATA = validate_metadata(
    {
        "protocol_name": "Eco",
        "adapters": [{"address": ADAPTER, "chain_name": "optimism"}],
        "intent_sources": [{"address": SOURCE, "chain_name": "ethereum"}],
    }
)


def _transfer(to, amount):
    return HexBytes(bytes.fromhex("a9059cbb") + encode(["address", "uint256"], [to, amount]))


def _event(amounts=(500,), data=None):
    return {
        "_hash": HASH,
        "_creator": CREATOR,
        "_destinationChain": 10,
        "_targets": [TOKEN_A] * len(amounts),
        "_data": data or [_transfer(RECIPIENT, a) for a in amounts],
        "_rewardTokens": [REWARD],
        "_rewardAmounts": [600],
        "_expiryTime": 9_999,
        "nonce": HexBytes("0x" + "01" * 32),
        "_prover": PROVER,
    }


def test_decode_transfer():
    to, amount = decode_transfer(_transfer(RECIPIENT, 123))
    assert to.lower() == RECIPIENT
    assert amount == 123
    with pytest.raises(ValueError):
        decode_transfer(HexBytes("0xdeadbeef" + "00" * 64))


def test_parse_event_args():
    filler = create(DummyProvider(), METADATA)
    intent = filler.parse_event_args(_event((100, 250)), 1)
    assert intent.intent_id == HASH.to_0x_hex()
    assert intent.origin_chain_id == 1
    assert intent.destination_chain_id == 10
    assert [leg.amount for leg in intent.target_legs] == [100, 250]
    assert intent.target_legs[0].recipient.lower() == RECIPIENT
    assert intent.reward_legs[0].token == REWARD
    assert intent.deadline == 9_999
    assert intent.recipients()[0].lower() == RECIPIENT


def test_parse_requires_origin_chain():
    with pytest.raises(ValueError):
        create(DummyProvider(), METADATA).parse_event_args(_event(), None)


def test_fill_and_withdraw():
    provider = DummyProvider()
    provider.balances[(10, TOKEN_A.lower())] = 1_000
    provider.call_results["fetchFee"] = 77
    filler = create(provider, METADATA)

    outcome = asyncio.run(filler.process(_event(), 1))

    assert outcome.stage is PipelineStage.SETTLED
    fee_call = provider.calls[0]
    assert fee_call.name == "fetchFee"
    assert fee_call.args[0] == 1
    assert fee_call.args[2] == [SIGNER]

    fill, withdraw = provider.submitted
    assert fill["chain_id"] == 10
    assert fill["value"] == 77
    assert fill["fn"].name == "fulfillHyperInstant"
    args = fill["fn"].args
    assert args[0] == 1
    assert args[3] == 9_999
    assert args[5] == SIGNER
    assert args[6] == HASH
    assert args[7] == PROVER
    assert withdraw["chain_id"] == 1
    assert withdraw["fn"].name == "withdrawRewards"
    assert withdraw["fn"].address.lower() == SOURCE


def test_missing_intent_source_fails_settlement_only():
    meta = validate_metadata(
        {"protocol_name": "Eco", "adapters": [{"address": ADAPTER, "chain_name": "optimism"}]}
    )
    provider = DummyProvider()
    provider.balances[(10, TOKEN_A.lower())] = 1_000
    outcome = asyncio.run(create(provider, meta).process(_event(), 1))
    assert outcome.stage is PipelineStage.FILLED
    assert "no intent source" in outcome.error


def test_malformed_calldata_is_contained():
    outcome = asyncio.run(
        create(DummyProvider(), METADATA).process(_event(data=[HexBytes("0x1234")]), 1)
    )
    assert outcome.stage is PipelineStage.FAILED


def test_keep_base_rules_flag():
    assert len(create(DummyProvider(), METADATA).rules) == 1
    assert create(DummyProvider(), METADATA, keep_base_rules=False).rules == []
    assert isinstance(create(DummyProvider(), METADATA), EcoFiller)

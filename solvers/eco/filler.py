"""Eco intents: ``IntentCreated`` on the origin IntentSource, filled through
an EcoAdapter on the destination chain, rewards withdrawn on the origin."""

from __future__ import annotations

from typing import Any, List, Mapping, Optional, Sequence, Tuple

from eth_abi import decode
from hexbytes import HexBytes

from core.chain import ChainProvider
from core.config import ProtocolMetadata
from core.errors import SettlementFailed
from core.filler import BaseFiller
from core.filters import AllowBlockLists
from core.intent import Intent, PreparedIntent, TokenAmount
from core.rules import BASE_RULES, Rule

from .metadata import ECO_ADAPTER_ABI, INTENT_SOURCE_ABI, TRANSFER_SELECTOR


def _hex(value: Any) -> str:
    return HexBytes(value).to_0x_hex()


def decode_transfer(data: Any) -> Tuple[str, int]:
    """Return ``(recipient, amount)`` from ERC-20 ``transfer`` calldata."""

    raw = bytes(HexBytes(data))
    if raw[:4] != TRANSFER_SELECTOR:
        raise ValueError(f"not a transfer call: {raw[:4].hex()}")
    recipient, amount = decode(["address", "uint256"], raw[4:])
    return recipient, int(amount)


class EcoFiller(BaseFiller):
    def parse_event_args(self, raw: Mapping[str, Any], origin_chain_id: int | None = None) -> Intent:
        if origin_chain_id is None:
            raise ValueError("Eco intents need the origin chain id")
        targets: Sequence[str] = raw["_targets"]
        data: Sequence[Any] = raw["_data"]
        if len(targets) != len(data):
            raise ValueError("targets and data length mismatch")
        reward_tokens = raw["_rewardTokens"]
        reward_amounts = raw["_rewardAmounts"]
        if len(reward_tokens) != len(reward_amounts):
            raise ValueError("reward tokens and amounts length mismatch")

        target_legs: List[TokenAmount] = []
        for token, call in zip(targets, data):
            recipient, amount = decode_transfer(call)
            target_legs.append(TokenAmount(token=token, amount=amount, recipient=recipient))
        reward_legs = tuple(
            TokenAmount(token=t, amount=int(a)) for t, a in zip(reward_tokens, reward_amounts)
        )
        creator = raw["_creator"]
        return Intent(
            intent_id=_hex(raw["_hash"]),
            origin_chain_id=int(origin_chain_id),
            destination_chain_id=int(raw["_destinationChain"]),
            sender=creator,
            recipient=target_legs[0].recipient if target_legs else creator,
            reward_legs=reward_legs,
            target_legs=tuple(target_legs),
            deadline=int(raw["_expiryTime"]),
            payload=dict(raw),
        )

    async def fill(self, intent: Intent, prepared: PreparedIntent) -> str:
        p = intent.payload
        dest = intent.destination_chain_id
        origin = intent.origin_chain_id
        adapter = self.provider.contract(dest, prepared.adapter.address, ECO_ADAPTER_ABI)
        claimant = await self.provider.get_signer_address(origin)
        intent_hash = HexBytes(p["_hash"])
        nonce = HexBytes(p["nonce"])

        fee = int(
            await self.provider.call(
                adapter.functions.fetchFee(origin, [intent_hash], [claimant], p["_prover"])
            )
        )
        self.log.debug("fee_quoted", intent=self.intent_label(intent), chain_id=dest, fee=fee)
        fn = adapter.functions.fulfillHyperInstant(
            origin,
            list(p["_targets"]),
            [HexBytes(d) for d in p["_data"]],
            int(p["_expiryTime"]),
            nonce,
            claimant,
            intent_hash,
            p["_prover"],
        )
        tx_hash, _ = await self.submit_and_wait(intent, dest, fn, value=fee)
        return tx_hash

    async def settle_order(self, intent: Intent, prepared: PreparedIntent) -> None:
        label = self.intent_label(intent)
        origin = intent.origin_chain_id
        source = next(
            (s for s in self.metadata.intent_sources if s.chain_id == origin), None
        )
        if source is None:
            raise SettlementFailed(f"no intent source on chain {origin}", intent_id=label)
        contract = self.provider.contract(origin, source.address, INTENT_SOURCE_ABI)
        fn = contract.functions.withdrawRewards(HexBytes(intent.payload["_hash"]))
        try:
            tx_hash = await self.provider.submit(origin, fn, intent=label)
            await self.provider.wait_for_receipt(
                origin, tx_hash, timeout=self.confirmation_timeout, intent=label
            )
        except Exception as exc:
            raise SettlementFailed(f"withdrawRewards failed: {exc}", intent_id=label) from exc
        self.log.info("rewards_withdrawn", intent=label, chain_id=origin, tx_hash=tx_hash)


def create(
    provider: ChainProvider,
    metadata: ProtocolMetadata,
    allow_block_lists: AllowBlockLists | None = None,
    rules: Optional[Sequence[Rule]] = None,
    keep_base_rules: bool = True,
    *,
    confirmation_timeout: float = 120.0,
) -> EcoFiller:
    custom = list(rules or [])
    chain = [*BASE_RULES, *custom] if keep_base_rules else custom
    return EcoFiller(
        provider,
        allow_block_lists or AllowBlockLists(),
        metadata,
        chain,
        confirmation_timeout=confirmation_timeout,
    )

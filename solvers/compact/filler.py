"""The Compact: allocator-API compacts filled through a HyperlaneArbiter."""

from __future__ import annotations

from typing import Any, List, Mapping, Optional, Sequence

from hexbytes import HexBytes
from web3 import Web3

from core.chain import ChainProvider
from core.config import ProtocolMetadata, validate_metadata
from core.filler import BaseFiller, Handler
from core.filters import AllowBlockLists
from core.intent import Intent, PreparedIntent, TokenAmount
from core.poller import EventPoller
from core.rules import BASE_RULES, Rule

from .metadata import DEFAULT_METADATA, HYPERLANE_ARBITER_ABI, SOURCE_URL

_ADDRESS_MASK = (1 << 160) - 1


def lock_token(lock_id: int | str) -> str:
    """Token address encoded in the low 160 bits of a resource lock id."""

    return Web3.to_checksum_address(f"0x{int(lock_id) & _ADDRESS_MASK:040x}")


def extract_compacts(payload: Any) -> List[Any]:
    data = payload.get("data") if isinstance(payload, dict) else None
    compacts = data.get("compact") if isinstance(data, dict) else None
    if compacts is None:
        return []
    return compacts if isinstance(compacts, list) else [compacts]


class CompactFiller(BaseFiller):
    def parse_event_args(self, raw: Mapping[str, Any], origin_chain_id: int | None = None) -> Intent:
        compact = raw["compact"]
        target = raw["intent"]
        recipient = target["recipient"]
        return Intent(
            intent_id=str(raw["hash"]),
            origin_chain_id=int(raw["claimChain"]),
            destination_chain_id=int(target["chainId"]),
            sender=compact["sponsor"],
            recipient=recipient,
            reward_legs=(TokenAmount(lock_token(compact["id"]), int(compact["amount"])),),
            target_legs=(TokenAmount(target["token"], int(target["amount"]), recipient),),
            deadline=int(compact["expires"]),
            payload=dict(raw),
        )

    async def fill(self, intent: Intent, prepared: PreparedIntent) -> str:
        p = intent.payload
        c = p["compact"]
        t = p["intent"]
        arbiter = self.provider.contract(
            intent.destination_chain_id, prepared.adapter.address, HYPERLANE_ARBITER_ABI
        )
        fn = arbiter.functions.fill(
            int(p["claimChain"]),
            (
                Web3.to_checksum_address(c["arbiter"]),
                Web3.to_checksum_address(c["sponsor"]),
                int(c["nonce"]),
                int(c["expires"]),
                int(c["id"]),
                int(c["amount"]),
            ),
            (
                Web3.to_checksum_address(t["token"]),
                int(t["amount"]),
                int(t["fee"]),
                int(t["chainId"]),
                Web3.to_checksum_address(t["recipient"]),
            ),
            HexBytes(p["allocatorSignature"]),
            HexBytes(p["sponsorSignature"]),
        )
        tx_hash, _ = await self.submit_and_wait(intent, intent.destination_chain_id, fn, value=0)
        return tx_hash


def default_metadata(chain_ids: Mapping[str, int] | None = None) -> ProtocolMetadata:
    return validate_metadata(DEFAULT_METADATA, chain_ids)


def create(
    provider: ChainProvider,
    metadata: ProtocolMetadata | None = None,
    allow_block_lists: AllowBlockLists | None = None,
    rules: Optional[Sequence[Rule]] = None,
    keep_base_rules: bool = True,
    *,
    confirmation_timeout: float = 120.0,
) -> CompactFiller:
    custom = list(rules or [])
    chain = [*BASE_RULES, *custom] if keep_base_rules else custom
    return CompactFiller(
        provider,
        allow_block_lists or AllowBlockLists(),
        metadata or default_metadata(),
        chain,
        confirmation_timeout=confirmation_timeout,
    )


def create_poller(
    handler: Handler, *, url: str | None = None, interval: float = 4.0
) -> EventPoller:
    return EventPoller(
        url or SOURCE_URL,
        handler,
        interval=interval,
        extract=extract_compacts,
        accept=lambda item: not item.get("filled", False),
        key=lambda item: item.get("hash"),
        name="compact",
    )

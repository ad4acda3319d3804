"""Hyperlane7683 orders: ``Open`` events feed the open-order store, expired
unfilled ones are refunded through the destination settler."""

from __future__ import annotations

from typing import Any, Callable, List, Mapping, Sequence, Tuple

from hexbytes import HexBytes
from web3 import Web3

from core.chain import ChainProvider
from core.filters import AllowBlockLists, is_allowed
from core.intent import OpenOrder
from core.logger import StructuredLogger
from core.refunder import OnchainStatus, RefundClient
from core.store import OpenOrderStore

from .metadata import HYPERLANE7683_ABI, ORDER_DATA_TYPE, PROTOCOL_NAME

LOGGER = StructuredLogger("hyperlane7683")


def _field(obj: Any, name: str, index: int) -> Any:
    if isinstance(obj, Mapping):
        return obj[name]
    return obj[index]


def bytes32_to_address(value: Any) -> str:
    raw = bytes(HexBytes(value))
    if len(raw) != 32:
        raise ValueError(f"expected 32 bytes, got {len(raw)}")
    return Web3.to_checksum_address(raw[12:])


def decode_status(value: Any) -> OnchainStatus:
    """Map the settler's bytes32 status word onto :class:`OnchainStatus`."""

    raw = bytes(HexBytes(value))
    if not any(raw):
        return OnchainStatus.UNKNOWN
    return OnchainStatus(raw.rstrip(b"\x00").decode("ascii"))


def parse_open_event(args: Mapping[str, Any]) -> OpenOrder:
    resolved = args["resolvedOrder"]
    instructions: Sequence[Any] = _field(resolved, "fillInstructions", 7)
    if not instructions:
        raise ValueError("order has no fill instructions")
    first = instructions[0]
    return OpenOrder(
        origin_chain_id=int(_field(resolved, "originChainId", 1)),
        destination_chain_id=int(_field(first, "destinationChainId", 0)),
        destination_settler=HexBytes(_field(first, "destinationSettler", 1)).to_0x_hex(),
        order_id=HexBytes(_field(resolved, "orderId", 4)).to_0x_hex(),
        fill_deadline=int(_field(resolved, "fillDeadline", 3)),
        order_data=HexBytes(_field(first, "originData", 2)).to_0x_hex(),
    )


def open_order_pairs(args: Mapping[str, Any]) -> Tuple[str, List[Tuple[int, str]]]:
    """Return the order's sender and its ``(destination, recipient)`` pairs.

    Each ``maxSpent`` output is a pair; every fill-instruction destination
    is paired with each output recipient, or with the sender when the order
    names no outputs.
    """

    resolved = args["resolvedOrder"]
    sender = str(_field(resolved, "user", 0))
    outputs: Sequence[Any] = _field(resolved, "maxSpent", 5)
    pairs = [
        (int(_field(out, "chainId", 3)), bytes32_to_address(_field(out, "recipient", 2)))
        for out in outputs
    ]
    recipients = list(dict.fromkeys(r for _, r in pairs)) or [sender]
    for instruction in _field(resolved, "fillInstructions", 7):
        destination = int(_field(instruction, "destinationChainId", 0))
        pairs.extend((destination, r) for r in recipients)
    return sender, list(dict.fromkeys(pairs))


class OpenOrderIndexer:
    """Listener handler that records every eligible ``Open`` event once."""

    def __init__(
        self,
        store: OpenOrderStore,
        allow_block_lists: AllowBlockLists | None = None,
        chain_name: Callable[[int], str] = str,
    ) -> None:
        self.store = store
        self.allow_block_lists = allow_block_lists or AllowBlockLists()
        self.chain_name = chain_name

    def is_eligible(self, args: Mapping[str, Any]) -> bool:
        sender, pairs = open_order_pairs(args)
        return all(
            is_allowed(
                self.allow_block_lists,
                sender_address=sender,
                destination_domain=(destination, self.chain_name(destination)),
                recipient_address=recipient,
            )
            for destination, recipient in pairs
        )

    async def __call__(self, args: Mapping[str, Any], chain_id: int, block_number: int) -> bool:
        order = parse_open_event(args)
        label = f"{PROTOCOL_NAME}-{order.order_id}"
        if not self.is_eligible(args):
            LOGGER.debug("order_filtered", intent=label, chain_id=chain_id, block=block_number)
            return False
        inserted = self.store.insert_if_absent(order)
        if inserted:
            LOGGER.info(
                "order_indexed", intent=label, chain_id=chain_id, block=block_number,
                destination=order.destination_chain_id, fill_deadline=order.fill_deadline,
            )
        else:
            LOGGER.debug("order_duplicate", intent=label, chain_id=chain_id)
        return inserted


class Hyperlane7683RefundClient(RefundClient):
    protocol_name = PROTOCOL_NAME

    def __init__(self, provider: ChainProvider) -> None:
        self.provider = provider

    def _settler(self, order: OpenOrder) -> Any:
        return self.provider.contract(
            order.destination_chain_id, bytes32_to_address(order.destination_settler), HYPERLANE7683_ABI
        )

    async def order_status(self, order: OpenOrder) -> OnchainStatus:
        contract = self._settler(order)
        raw = await self.provider.call(contract.functions.orderStatus(HexBytes(order.order_id)))
        return decode_status(raw)

    async def build_refund(self, order: OpenOrder) -> Tuple[Any, int]:
        contract = self._settler(order)
        value = int(await self.provider.call(contract.functions.quoteGasPayment(order.origin_chain_id)))
        onchain_order = (
            int(order.fill_deadline),
            HexBytes(ORDER_DATA_TYPE),
            HexBytes(order.order_data),
        )
        return contract.functions.refund([onchain_order]), value

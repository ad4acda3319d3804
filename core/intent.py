"""Protocol-agnostic intent envelope and order records."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def is_native(token: str) -> bool:
    return token.lower() == ZERO_ADDRESS


@dataclass(frozen=True)
class TokenAmount:
    """One leg of an intent: ``amount`` base units of ``token``."""

    token: str
    amount: int
    recipient: Optional[str] = None


@dataclass(frozen=True)
class Intent:
    """Immutable view of an observed intent.

    ``payload`` holds whatever the protocol needs to build its fill call; the
    pipeline never looks inside it.
    """

    intent_id: str
    origin_chain_id: int
    destination_chain_id: int
    sender: str
    recipient: str
    reward_legs: Tuple[TokenAmount, ...]
    target_legs: Tuple[TokenAmount, ...]
    deadline: int
    payload: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def recipients(self) -> Tuple[str, ...]:
        found = tuple(dict.fromkeys(leg.recipient for leg in self.target_legs if leg.recipient))
        return found or (self.recipient,)


@dataclass(frozen=True)
class AdapterInfo:
    """Destination contract through which a protocol fills."""

    chain_id: int
    chain_name: str
    address: str
    metadata: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class PreparedIntent:
    adapter: AdapterInfo
    required: Dict[str, int]
    filler_address: str


class PipelineStage(str, Enum):
    DETECTED = "DETECTED"
    FILTERED = "FILTERED"
    RULES_EVALUATED = "RULES_EVALUATED"
    PREPARED = "PREPARED"
    FILLED = "FILLED"
    SETTLED = "SETTLED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


@dataclass
class FillOutcome:
    intent_id: str
    stage: PipelineStage
    error: Optional[str] = None
    tx_hash: Optional[str] = None


class OrderStatus(str, Enum):
    OPEN = "OPEN"
    REFUNDING = "REFUNDING"
    REFUNDED = "REFUNDED"
    FILED = "FILED"


@dataclass(frozen=True)
class OpenOrder:
    """Row of the open-order ledger."""

    origin_chain_id: int
    destination_chain_id: int
    destination_settler: str
    order_id: str
    fill_deadline: int
    order_data: str
    status: OrderStatus = OrderStatus.OPEN
    updated_at: float = 0.0

"""Rule chain evaluated before any funds are committed.

A rule is a plain async callable ``(intent, context) -> RuleResult``.  Rules
may read chain state but never send transactions.  Protocols pass their own
list at construction time; ``evaluate_rules`` folds over it and stops at the
first failure.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Iterable, Optional, Sequence

from core.intent import Intent, TokenAmount

if TYPE_CHECKING:  # pragma: no cover
    from core.chain import ChainProvider


@dataclass(frozen=True)
class RuleResult:
    success: bool
    data: str = ""
    error: str = ""

    @classmethod
    def ok(cls, note: str = "") -> "RuleResult":
        return cls(True, data=note)

    @classmethod
    def fail(cls, reason: str) -> "RuleResult":
        return cls(False, error=reason)


@dataclass
class RuleContext:
    provider: "ChainProvider"
    protocol_name: str = ""
    filler: Optional[Any] = None


Rule = Callable[[Intent, RuleContext], Awaitable[RuleResult]]


def aggregate_amounts(legs: Iterable[TokenAmount]) -> Dict[str, int]:
    """Sum leg amounts per token (addresses compared case-insensitively)."""

    totals: Dict[str, int] = {}
    spelled: Dict[str, str] = {}
    for leg in legs:
        key = leg.token.lower()
        spelled.setdefault(key, leg.token)
        totals[key] = totals.get(key, 0) + int(leg.amount)
    return {spelled[k]: v for k, v in totals.items()}


async def evaluate_rules(rules: Sequence[Rule], intent: Intent, context: RuleContext) -> RuleResult:
    notes = []
    for rule in rules:
        result = await rule(intent, context)
        if not result.success:
            return result
        if result.data:
            notes.append(result.data)
    return RuleResult.ok("; ".join(notes))


# ---------------------------------------------------------------------------
# Built-in rules
# ---------------------------------------------------------------------------
async def enough_balance_on_destination(intent: Intent, context: RuleContext) -> RuleResult:
    chain_id = intent.destination_chain_id
    provider = context.provider
    filler_address = await provider.get_signer_address(chain_id)
    for token, required in aggregate_amounts(intent.target_legs).items():
        balance = await provider.get_balance(chain_id, token, filler_address)
        if balance < required:
            return RuleResult.fail(
                f"Insufficient balance on destination chain {chain_id} for token {token}"
            )
    return RuleResult.ok("Enough tokens to fulfill the intent")


def deadline_not_passed(min_seconds_left: int = 0) -> Rule:
    """Reject intents whose deadline is within ``min_seconds_left`` of the
    destination chain's latest block time."""

    async def _rule(intent: Intent, context: RuleContext) -> RuleResult:
        block = await context.provider.latest_block(intent.destination_chain_id)
        if intent.deadline and block.timestamp + min_seconds_left >= intent.deadline:
            return RuleResult.fail(
                f"Intent deadline {intent.deadline} too close to chain time {block.timestamp}"
            )
        return RuleResult.ok("Deadline not passed")

    _rule.__name__ = "deadline_not_passed"
    return _rule


BASE_RULES: Sequence[Rule] = (enough_balance_on_destination,)

"""Allow/block list evaluation for freshly observed intents."""

from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

Matcher = Union[str, int, List[Union[str, int]]]

WILDCARD = "*"


class AllowBlockListItem(BaseModel):
    """One ``(sender, destination, recipient)`` pattern. Each field is ``"*"``,
    a single value or a list of values."""

    model_config = ConfigDict(frozen=True)

    sender_address: Matcher = WILDCARD
    destination_domain: Matcher = WILDCARD
    recipient_address: Matcher = WILDCARD


class AllowBlockLists(BaseModel):
    model_config = ConfigDict(frozen=True)

    allow_list: List[AllowBlockListItem] = Field(default_factory=list)
    block_list: List[AllowBlockListItem] = Field(default_factory=list)


def _norm(value: Union[str, int]) -> str:
    return str(value).lower()


def _matches(matcher: Matcher, value: Union[str, int, Tuple[Union[str, int], ...]]) -> bool:
    # a tuple value lists aliases of one thing, e.g. a chain's name and id
    aliases = {_norm(v) for v in value} if isinstance(value, tuple) else {_norm(value)}
    if matcher == WILDCARD:
        return True
    if isinstance(matcher, list):
        return any(m == WILDCARD or _norm(m) in aliases for m in matcher)
    return _norm(matcher) in aliases


def _item_matches(
    item: AllowBlockListItem,
    sender_address: str,
    destination_domain: Union[str, int, Tuple[Union[str, int], ...]],
    recipient_address: str,
) -> bool:
    return (
        _matches(item.sender_address, sender_address)
        and _matches(item.destination_domain, destination_domain)
        and _matches(item.recipient_address, recipient_address)
    )


def is_allowed(
    lists: AllowBlockLists,
    *,
    sender_address: str,
    destination_domain: Union[str, int, Tuple[Union[str, int], ...]],
    recipient_address: str,
) -> bool:
    """Return ``True`` when the tuple passes the lists.

    A block-list hit always rejects.  A non-empty allow list admits only
    tuples it matches; an empty one admits everything not blocked.
    """

    args = (sender_address, destination_domain, recipient_address)
    if any(_item_matches(item, *args) for item in lists.block_list):
        return False
    if not lists.allow_list:
        return True
    return any(_item_matches(item, *args) for item in lists.allow_list)


def is_allowed_for_all(
    lists: AllowBlockLists,
    *,
    sender_address: str,
    destination_domains: Sequence[Union[str, int, Tuple[Union[str, int], ...]]],
    recipient_addresses: Iterable[str],
) -> bool:
    """Every ``(destination, recipient)`` pair of an intent must pass."""

    recipients = list(recipient_addresses)
    return all(
        is_allowed(
            lists,
            sender_address=sender_address,
            destination_domain=domain,
            recipient_address=recipient,
        )
        for domain in destination_domains
        for recipient in recipients
    )

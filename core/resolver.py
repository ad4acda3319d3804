"""Destination chain → adapter contract lookup."""

from __future__ import annotations

from typing import Dict, Iterable, List

from core.errors import ConfigurationError, NoAdapterForDestination
from core.intent import AdapterInfo


class AdapterResolver:
    """Read-only table of the contracts a protocol fills through."""

    def __init__(self, adapters: Iterable[AdapterInfo]) -> None:
        self._by_chain: Dict[int, AdapterInfo] = {}
        for adapter in adapters:
            if adapter.chain_id in self._by_chain:
                raise ConfigurationError(
                    f"duplicate adapter for chain {adapter.chain_id} ({adapter.chain_name})"
                )
            self._by_chain[adapter.chain_id] = adapter

    def resolve(self, chain_id: int, *, intent_id: str = "") -> AdapterInfo:
        try:
            return self._by_chain[int(chain_id)]
        except KeyError:
            raise NoAdapterForDestination(int(chain_id), intent_id=intent_id) from None

    def get(self, chain_id: int) -> AdapterInfo | None:
        return self._by_chain.get(int(chain_id))

    def chains(self) -> List[int]:
        return sorted(self._by_chain)

    def __contains__(self, chain_id: object) -> bool:
        return chain_id in self._by_chain

    def __len__(self) -> int:
        return len(self._by_chain)

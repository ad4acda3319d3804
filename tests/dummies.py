"""In-memory chain doubles shared by the test modules."""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from core.chain import BlockInfo, ChainEvent, ChainProvider

SIGNER = "0xF11100000000000000000000000000000000F111"
TOKEN_A = "0xA000000000000000000000000000000000000001"
TOKEN_B = "0xB000000000000000000000000000000000000002"
ADAPTER = "0xAD00000000000000000000000000000000000001"


class DummyFn:
    def __init__(self, provider: "DummyProvider", address: str, name: str, args: Tuple[Any, ...]):
        self.provider = provider
        self.address = address
        self.name = name
        self.args = args

    def __repr__(self) -> str:
        return f"DummyFn({self.name})"


class _Functions:
    def __init__(self, provider: "DummyProvider", address: str):
        self._provider = provider
        self._address = address

    def __getattr__(self, name: str):
        def build(*args: Any) -> DummyFn:
            return DummyFn(self._provider, self._address, name, args)

        return build


class DummyContract:
    def __init__(self, provider: "DummyProvider", chain_id: int, address: str):
        self.chain_id = chain_id
        self.address = address
        self.functions = _Functions(provider, address)


class DummyProvider(ChainProvider):
    def __init__(self) -> None:
        self.names = {1: "ethereum", 10: "optimism", 8453: "base"}
        self.balances: Dict[Tuple[int, str], int] = {}
        self.allowances: Dict[Tuple[int, str, str], int] = {}
        self.blocks: Dict[int, BlockInfo] = {}
        self.call_results: Dict[str, Any] = {}
        self.events: Dict[Tuple[int, str], List[ChainEvent]] = {}
        self.event_errors: Dict[int, Exception] = {}
        self.approvals: List[Tuple[int, str, str, int]] = []
        self.submitted: List[Dict[str, Any]] = []
        self.calls: List[DummyFn] = []
        self.event_queries: List[Tuple[int, str, int, int]] = []
        self.approve_error: Exception | None = None
        self.submit_error: Exception | None = None
        self.receipt_error: Exception | None = None
        self.call_error: Exception | None = None

    # ------------------------------------------------------------------
    def chain_name(self, chain_id: int) -> str:
        return self.names.get(int(chain_id), str(chain_id))

    def contract(self, chain_id, address, abi):
        return DummyContract(self, chain_id, address)

    async def get_signer_address(self, chain_id: int) -> str:
        return SIGNER

    async def get_balance(self, chain_id: int, token: str, owner: str) -> int:
        return self.balances.get((int(chain_id), token.lower()), 0)

    async def get_allowance(self, chain_id: int, token: str, owner: str, spender: str) -> int:
        return self.allowances.get((int(chain_id), token.lower(), spender.lower()), 0)

    async def approve(self, chain_id, token, spender, amount, *, intent=""):
        if self.approve_error is not None:
            raise self.approve_error
        self.approvals.append((int(chain_id), token, spender, int(amount)))
        self.allowances[(int(chain_id), token.lower(), spender.lower())] = int(amount)
        return {"status": 1}

    async def latest_block(self, chain_id: int) -> BlockInfo:
        return self.blocks.get(int(chain_id), BlockInfo(number=100, timestamp=1_000))

    async def call(self, fn: DummyFn) -> Any:
        self.calls.append(fn)
        if self.call_error is not None:
            raise self.call_error
        return self.call_results.get(fn.name, 0)

    async def submit(self, chain_id, fn, *, value=0, gas_margin=None, intent=""):
        if self.submit_error is not None:
            raise self.submit_error
        tx_hash = f"0x{len(self.submitted) + 1:064x}"
        self.submitted.append(
            {
                "chain_id": int(chain_id),
                "fn": fn,
                "value": value,
                "gas_margin": gas_margin,
                "intent": intent,
                "tx_hash": tx_hash,
            }
        )
        return tx_hash

    async def wait_for_receipt(self, chain_id, tx_hash, *, timeout, intent=""):
        if self.receipt_error is not None:
            raise self.receipt_error
        return {"status": 1, "transactionHash": tx_hash}

    async def get_events(self, chain_id, address, abi, event_name, from_block, to_block):
        self.event_queries.append((int(chain_id), address, from_block, to_block))
        if int(chain_id) in self.event_errors:
            raise self.event_errors[int(chain_id)]
        return [
            e
            for e in self.events.get((int(chain_id), address), [])
            if from_block <= e.block_number <= to_block
        ]

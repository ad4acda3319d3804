"""Ledger access for the solver.

``ChainProvider`` is the narrow async surface the pipeline, listener and
refund scanner use.  ``Web3ChainProvider`` backs it with one ``Web3``
instance per configured chain and a single signing account; blocking RPC
calls are pushed to worker threads with ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from eth_account import Account
from web3 import Web3

from core.errors import ConfigurationError
from core.intent import is_native
from core.tx_engine.builder import TransactionBuilder
from core.tx_engine.nonce_manager import NonceManager

ERC20_ABI = [
    {
        "inputs": [{"name": "owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


@dataclass(frozen=True)
class BlockInfo:
    number: int
    timestamp: int


@dataclass(frozen=True)
class ChainEvent:
    args: Dict[str, Any]
    block_number: int
    tx_hash: str
    log_index: int


class ChainProvider:
    """Interface consumed by fillers, listeners and the refund scanner."""

    def chain_name(self, chain_id: int) -> str:
        raise NotImplementedError

    def contract(self, chain_id: int, address: str, abi: Sequence[Mapping[str, Any]]) -> Any:
        raise NotImplementedError

    async def get_signer_address(self, chain_id: int) -> str:
        raise NotImplementedError

    async def get_balance(self, chain_id: int, token: str, owner: str) -> int:
        raise NotImplementedError

    async def get_allowance(self, chain_id: int, token: str, owner: str, spender: str) -> int:
        raise NotImplementedError

    async def approve(
        self, chain_id: int, token: str, spender: str, amount: int, *, intent: str = ""
    ) -> Dict[str, Any]:
        raise NotImplementedError

    async def latest_block(self, chain_id: int) -> BlockInfo:
        raise NotImplementedError

    async def call(self, fn: Any) -> Any:
        raise NotImplementedError

    async def submit(
        self,
        chain_id: int,
        fn: Any,
        *,
        value: int = 0,
        gas_margin: float | None = None,
        intent: str = "",
    ) -> str:
        raise NotImplementedError

    async def wait_for_receipt(
        self, chain_id: int, tx_hash: str, *, timeout: float, intent: str = ""
    ) -> Dict[str, Any]:
        raise NotImplementedError

    async def get_events(
        self,
        chain_id: int,
        address: str,
        abi: Sequence[Mapping[str, Any]],
        event_name: str,
        from_block: int,
        to_block: int,
    ) -> List[ChainEvent]:
        raise NotImplementedError


class Web3ChainProvider(ChainProvider):
    """``ChainProvider`` over HTTP RPC endpoints."""

    def __init__(
        self,
        rpc_urls: Mapping[int, str],
        private_key: str,
        *,
        chain_names: Optional[Mapping[int, str]] = None,
        gas_margin: float = 1.2,
        nonce_manager: NonceManager | None = None,
        request_timeout: float = 30.0,
        confirmation_timeout: float = 120.0,
    ) -> None:
        if not rpc_urls:
            raise ConfigurationError("no chains configured")
        self._web3s: Dict[int, Web3] = {
            int(cid): Web3(Web3.HTTPProvider(url, request_kwargs={"timeout": request_timeout}))
            for cid, url in rpc_urls.items()
        }
        self._names = dict(chain_names or {})
        self.confirmation_timeout = confirmation_timeout
        self.account = Account.from_key(private_key)
        self.nonce_manager = nonce_manager or NonceManager(self.web3)
        self.builder = TransactionBuilder(
            self.web3, self.account, self.nonce_manager, gas_margin=gas_margin
        )

    # ------------------------------------------------------------------
    def web3(self, chain_id: int) -> Web3:
        try:
            return self._web3s[int(chain_id)]
        except KeyError:
            raise ConfigurationError(f"chain {chain_id} is not configured") from None

    def chain_name(self, chain_id: int) -> str:
        return self._names.get(int(chain_id), str(chain_id))

    def contract(self, chain_id: int, address: str, abi: Sequence[Mapping[str, Any]]) -> Any:
        return self.web3(chain_id).eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    # ------------------------------------------------------------------
    async def get_signer_address(self, chain_id: int) -> str:
        self.web3(chain_id)
        return self.account.address

    async def get_balance(self, chain_id: int, token: str, owner: str) -> int:
        web3 = self.web3(chain_id)
        if is_native(token):
            return int(await asyncio.to_thread(web3.eth.get_balance, owner))
        erc20 = self.contract(chain_id, token, ERC20_ABI)
        return int(await self.call(erc20.functions.balanceOf(owner)))

    async def get_allowance(self, chain_id: int, token: str, owner: str, spender: str) -> int:
        erc20 = self.contract(chain_id, token, ERC20_ABI)
        return int(await self.call(erc20.functions.allowance(owner, Web3.to_checksum_address(spender))))

    async def approve(
        self, chain_id: int, token: str, spender: str, amount: int, *, intent: str = ""
    ) -> Dict[str, Any]:
        erc20 = self.contract(chain_id, token, ERC20_ABI)
        fn = erc20.functions.approve(Web3.to_checksum_address(spender), int(amount))
        tx_hash = await self.submit(chain_id, fn, intent=intent)
        return await self.wait_for_receipt(
            chain_id, tx_hash, timeout=self.confirmation_timeout, intent=intent
        )

    async def latest_block(self, chain_id: int) -> BlockInfo:
        block = await asyncio.to_thread(self.web3(chain_id).eth.get_block, "latest")
        return BlockInfo(number=int(block["number"]), timestamp=int(block["timestamp"]))

    async def call(self, fn: Any) -> Any:
        return await asyncio.to_thread(fn.call)

    async def submit(
        self,
        chain_id: int,
        fn: Any,
        *,
        value: int = 0,
        gas_margin: float | None = None,
        intent: str = "",
    ) -> str:
        return await asyncio.to_thread(
            self.builder.send_transaction,
            chain_id,
            fn,
            value=value,
            gas_margin=gas_margin,
            intent=intent,
        )

    async def wait_for_receipt(
        self, chain_id: int, tx_hash: str, *, timeout: float, intent: str = ""
    ) -> Dict[str, Any]:
        return await asyncio.to_thread(
            self.builder.wait_for_receipt, chain_id, tx_hash, timeout=timeout, intent=intent
        )

    async def get_events(
        self,
        chain_id: int,
        address: str,
        abi: Sequence[Mapping[str, Any]],
        event_name: str,
        from_block: int,
        to_block: int,
    ) -> List[ChainEvent]:
        contract = self.contract(chain_id, address, abi)
        event = getattr(contract.events, event_name)
        logs = await asyncio.to_thread(
            event.get_logs, from_block=from_block, to_block=to_block
        )
        return [
            ChainEvent(
                args=dict(log["args"]),
                block_number=int(log["blockNumber"]),
                tx_hash=log["transactionHash"].to_0x_hex(),
                log_index=int(log["logIndex"]),
            )
            for log in logs
        ]

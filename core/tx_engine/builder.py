"""Transaction builder responsible for dispatching signed transactions.

Module purpose and system role:
- Estimate gas, apply a safety margin, assign a nonce, sign and send
  contract calls on any configured chain.
- Keeps submission and confirmation as separate, separately failable steps.
- Emits JSON logs for every attempt.

Integration points and dependencies:
- Uses NonceManager for nonce management.
- Relies on ``web3`` contract functions and an ``eth_account`` local account.
- Consults kill_switch_triggered to abort operations.
"""

import json
import os
import time
from pathlib import Path
from typing import Any, Callable, Dict

from web3.exceptions import TimeExhausted

from core.errors import ConfirmationTimeout, ExecutionFailed, KillSwitchActive, TransactionReverted
from core.logger import log_error, make_json_safe
from .kill_switch import kill_switch_triggered, record_kill_event
from .nonce_manager import NonceManager

DEFAULT_GAS_MARGIN = 1.2


class TransactionBuilder:
    """Builds and dispatches signed transactions with replay defense."""

    def __init__(
        self,
        web3_for: Callable[[int], Any],
        account: Any,
        nonce_manager: NonceManager,
        *,
        gas_margin: float = DEFAULT_GAS_MARGIN,
        log_path: str | None = None,
        max_attempts: int = 3,
    ) -> None:
        """Create a new builder.

        Parameters
        ----------
        web3_for:
            Returns the ``Web3`` instance for a chain id.
        account:
            ``eth_account`` local account used to sign.
        nonce_manager:
            Instance of :class:`NonceManager` shared by every sender.
        log_path:
            Optional log file path. Defaults to ``$TX_LOG_FILE`` or ``logs/tx_log.json``.
        """

        self.web3_for = web3_for
        self.account = account
        self.nonce_manager = nonce_manager
        self.gas_margin = gas_margin
        self.max_attempts = max_attempts
        if log_path is None:
            log_path = os.getenv("TX_LOG_FILE", "logs/tx_log.json")
        self.log_file = Path(log_path)
        self.log_file.parent.mkdir(parents=True, exist_ok=True)

    @property
    def address(self) -> str:
        return self.account.address

    def _log(self, entry: Dict[str, Any]) -> None:
        with self.log_file.open("a") as fh:
            fh.write(json.dumps(make_json_safe(entry)) + "\n")
        if entry.get("error"):
            log_error(
                "TransactionBuilder",
                str(entry["error"]),
                event=entry.get("status", "log"),
                intent=entry.get("intent", ""),
                chain_id=entry.get("chain_id"),
            )

    # ------------------------------------------------------------------
    def estimate_gas(self, fn: Any, *, value: int = 0, gas_margin: float | None = None) -> int:
        """Return the estimated gas for ``fn`` with the margin applied."""

        estimated = fn.estimate_gas({"from": self.address, "value": value})
        return int(estimated * (gas_margin or self.gas_margin))

    def send_transaction(
        self,
        chain_id: int,
        fn: Any,
        *,
        value: int = 0,
        gas_margin: float | None = None,
        intent: str = "",
    ) -> str:
        """Sign and send ``fn`` on ``chain_id``; return the tx hash.

        The signed payload is reused across retries, so a retry can never
        produce a second, different transaction.
        """

        if kill_switch_triggered():
            record_kill_event("TransactionBuilder", intent=intent)
            self._log({"intent": intent, "chain_id": chain_id, "status": "killed", "error": None})
            raise KillSwitchActive()

        web3 = self.web3_for(chain_id)
        try:
            gas = self.estimate_gas(fn, value=value, gas_margin=gas_margin)
        except Exception as exc:
            self._log(
                {
                    "intent": intent,
                    "chain_id": chain_id,
                    "gas_estimate": None,
                    "status": "gas_estimate_failed",
                    "error": str(exc),
                }
            )
            raise ExecutionFailed(f"Gas estimation failed: {exc}", intent_id=intent) from exc

        nonce = self.nonce_manager.get_nonce(chain_id, self.address, intent=intent)
        try:
            tx = fn.build_transaction(
                {
                    "from": self.address,
                    "value": value,
                    "gas": gas,
                    "nonce": nonce,
                    "chainId": chain_id,
                }
            )
            signed = self.account.sign_transaction(tx)
        except Exception as exc:
            self.nonce_manager.reset_nonce(chain_id, self.address, intent=intent)
            self._log(
                {
                    "intent": intent,
                    "chain_id": chain_id,
                    "from_address": self.address,
                    "gas_estimate": gas,
                    "nonce": nonce,
                    "status": "build_failed",
                    "error": str(exc),
                }
            )
            raise ExecutionFailed(f"Transaction build failed: {exc}", intent_id=intent) from exc

        last_err: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                tx_hash = web3.eth.send_raw_transaction(signed.raw_transaction)
                tx_hex = tx_hash.to_0x_hex() if hasattr(tx_hash, "to_0x_hex") else str(tx_hash)
                self._log(
                    {
                        "intent": intent,
                        "chain_id": chain_id,
                        "from_address": self.address,
                        "gas_estimate": gas,
                        "nonce": nonce,
                        "value": value,
                        "tx_hash": tx_hex,
                        "status": "sent",
                        "error": None,
                        "attempt": attempt,
                    }
                )
                return tx_hex
            except Exception as exc:
                last_err = exc
                self._log(
                    {
                        "intent": intent,
                        "chain_id": chain_id,
                        "from_address": self.address,
                        "gas_estimate": gas,
                        "nonce": nonce,
                        "tx_hash": None,
                        "status": "send_failed",
                        "error": str(exc),
                        "attempt": attempt,
                    }
                )
                if attempt < self.max_attempts:
                    time.sleep(0.5 * attempt)

        # the nonce was never used on chain
        self.nonce_manager.reset_nonce(chain_id, self.address, intent=intent)
        raise ExecutionFailed(f"send failed: {last_err}", intent_id=intent) from last_err

    # ------------------------------------------------------------------
    def wait_for_receipt(
        self, chain_id: int, tx_hash: str, *, timeout: float, intent: str = ""
    ) -> Dict[str, Any]:
        """Block until ``tx_hash`` is mined or ``timeout`` seconds pass."""

        web3 = self.web3_for(chain_id)
        try:
            receipt = web3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except TimeExhausted as exc:
            self._log(
                {
                    "intent": intent,
                    "chain_id": chain_id,
                    "tx_hash": tx_hash,
                    "status": "confirmation_timeout",
                    "error": f"no receipt after {timeout}s",
                }
            )
            raise ConfirmationTimeout(
                f"{tx_hash} not confirmed after {timeout}s", intent_id=intent
            ) from exc
        receipt = dict(receipt)
        if receipt.get("status", 1) == 0:
            self._log(
                {
                    "intent": intent,
                    "chain_id": chain_id,
                    "tx_hash": tx_hash,
                    "status": "reverted",
                    "error": "transaction reverted",
                }
            )
            raise TransactionReverted(f"{tx_hash} reverted", intent_id=intent)
        self._log(
            {
                "intent": intent,
                "chain_id": chain_id,
                "tx_hash": tx_hash,
                "block": receipt.get("blockNumber"),
                "status": "confirmed",
                "error": None,
            }
        )
        return receipt

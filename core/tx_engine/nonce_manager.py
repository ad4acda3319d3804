"""Nonce manager with JSON-backed cache and audit logging.

Module purpose and system role:
- Maintain per-(chain, address) nonces so concurrent approvals, fills and
  refunds from one signer never collide.
- Syncs with the on-chain pending nonce when the cache is missing or reset.

Integration points and dependencies:
- Expects a callable ``chain_id -> Web3`` for RPC calls.
- Writes cache to ``state/nonce_cache.json`` and logs to ``logs/nonce_log.json``.
"""

import json
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from core.logger import log_error, make_json_safe


def _key(chain_id: int, address: str) -> str:
    return f"{int(chain_id)}:{address.lower()}"


class NonceManager:
    """Thread-safe nonce manager with disk-backed cache and JSON logging."""

    def __init__(
        self,
        web3_for: Optional[Callable[[int], Any]] = None,
        cache_file: str | None = None,
        log_file: str | None = None,
    ) -> None:
        self.web3_for = web3_for
        if cache_file is None:
            cache_file = os.getenv("NONCE_CACHE_FILE", "state/nonce_cache.json")
        if log_file is None:
            log_file = os.getenv("NONCE_LOG_FILE", "logs/nonce_log.json")

        self.cache_path = Path(cache_file)
        self.log_path = Path(log_file)
        self.cache_path.parent.mkdir(parents=True, exist_ok=True)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._nonce_lock = threading.RLock()
        self._nonces: Dict[str, int] = {}
        self._load_cache()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _load_cache(self) -> None:
        if self.cache_path.exists():
            try:
                data = json.loads(self.cache_path.read_text() or "{}")
                self._nonces = {k: int(v) for k, v in data.items()}
            except (ValueError, OSError) as exc:
                self._nonces = {}
                log_error("NonceManager", f"load_cache failed: {exc}")
        else:
            self.cache_path.write_text("{}")

    def _save_cache(self) -> None:
        try:
            with self.cache_path.open("w") as fh:
                json.dump(self._nonces, fh)
        except OSError as exc:
            log_error("NonceManager", f"save_cache failed: {exc}")

    def _fetch_onchain_nonce(self, chain_id: int, address: str) -> int:
        if self.web3_for is None:
            return 0
        web3 = self.web3_for(chain_id)
        return int(web3.eth.get_transaction_count(address, "pending"))

    def _log(
        self,
        source: str,
        chain_id: int,
        address: str,
        on_chain_nonce: Optional[int],
        local_nonce: Optional[int],
        intent: str = "",
    ) -> None:
        entry = {
            "intent": intent,
            "chain_id": chain_id,
            "address": address,
            "on_chain_nonce": on_chain_nonce,
            "local_nonce": local_nonce,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "source": source,
        }
        with self.log_path.open("a") as fh:
            fh.write(json.dumps(make_json_safe(entry)) + "\n")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def get_nonce(self, chain_id: int, address: str, intent: str = "") -> int:
        """Return next nonce for ``address`` on ``chain_id``."""
        key = _key(chain_id, address)
        with self._nonce_lock:
            if key in self._nonces:
                local_nonce = self._nonces[key] + 1
                on_chain = None
            else:
                on_chain = self._fetch_onchain_nonce(chain_id, address)
                local_nonce = on_chain
            self._nonces[key] = local_nonce
            self._save_cache()
            self._log("get", chain_id, address, on_chain, local_nonce, intent)
            return local_nonce

    def update_nonce(self, chain_id: int, address: str, nonce: int, intent: str = "") -> None:
        """Manually set the last used ``nonce`` and persist to cache."""
        with self._nonce_lock:
            self._nonces[_key(chain_id, address)] = int(nonce)
            self._save_cache()
            self._log("update", chain_id, address, None, int(nonce), intent)

    def reset_nonce(self, chain_id: int, address: str, intent: str = "") -> None:
        """Drop the cached nonce so the next call resyncs with chain."""
        with self._nonce_lock:
            self._nonces.pop(_key(chain_id, address), None)
            self._save_cache()
            self._log("reset", chain_id, address, None, None, intent)

"""Error taxonomy shared by the fill pipeline and the refund scanner.

Everything raised from prepare/fill/settle derives from :class:`SolverError`
and carries the intent id so log lines can be correlated.  Only
:class:`ConfigurationError` is allowed to halt the process.
"""

from __future__ import annotations


class SolverError(Exception):
    """Base class for per-intent failures."""

    def __init__(self, message: str, *, intent_id: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.intent_id = intent_id

    def with_intent(self, intent_id: str) -> "SolverError":
        if not self.intent_id:
            self.intent_id = intent_id
        return self

    def __str__(self) -> str:
        if self.intent_id:
            return f"{self.message} (intent {self.intent_id})"
        return self.message


class ConfigurationError(Exception):
    """Malformed metadata or config; fatal at startup."""


class FilterRejected(SolverError):
    pass


class RuleFailed(SolverError):
    def __init__(self, reason: str, *, intent_id: str = "") -> None:
        super().__init__(reason, intent_id=intent_id)
        self.reason = reason


# ---------------------------------------------------------------------------
class PrepareFailed(SolverError):
    pass


class NoAdapterForDestination(PrepareFailed):
    def __init__(self, chain_id: int, *, intent_id: str = "") -> None:
        super().__init__(f"No adapter found for destination chain {chain_id}", intent_id=intent_id)
        self.chain_id = chain_id


class InsufficientBalance(PrepareFailed):
    def __init__(
        self, chain_id: int, token: str, required: int, balance: int, *, intent_id: str = ""
    ) -> None:
        super().__init__(
            f"Insufficient balance on destination chain {chain_id} for token {token}: "
            f"required {required}, have {balance}",
            intent_id=intent_id,
        )
        self.chain_id = chain_id
        self.token = token
        self.required = required
        self.balance = balance


class ApprovalFailed(PrepareFailed):
    def __init__(self, token: str, reason: str, *, intent_id: str = "") -> None:
        super().__init__(f"Approval of {token} failed: {reason}", intent_id=intent_id)
        self.token = token


# ---------------------------------------------------------------------------
class ExecutionFailed(SolverError):
    pass


class FillTransactionFailed(ExecutionFailed):
    """Submission was rejected; nothing was committed."""


class ConfirmationTimeout(ExecutionFailed):
    """Transaction was sent but no receipt arrived in time. It may still land."""


class TransactionReverted(ExecutionFailed):
    pass


class SettlementFailed(SolverError):
    pass


class RefundFailed(SolverError):
    pass


class KillSwitchActive(ExecutionFailed):
    def __init__(self) -> None:
        super().__init__("Kill switch active")

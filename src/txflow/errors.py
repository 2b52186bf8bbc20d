"""Exception hierarchy for the transaction pipeline."""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from txflow.models import OutcomeEnvelope


class TxFlowError(Exception):
    """Base exception for every error raised by the pipeline."""


class ValidationError(TxFlowError):
    """One or more problems with a draft, all reported together."""

    def __init__(self, errors: list[str] | str):
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        if len(self.errors) == 1:
            message = self.errors[0]
        else:
            message = "Multiple errors: " + "; ".join(self.errors)
        super().__init__(message)


class AffordabilityError(TxFlowError):
    """The account would fall below its reserve, or lacks the issued balance to send."""

    def __init__(self, message: str, *, required: int | str | None = None, available: int | str | None = None):
        super().__init__(message)
        self.required = required
        self.available = available


class SigningError(TxFlowError):
    """Signing authority is misconfigured or signature aggregation failed."""


class NetworkError(TxFlowError):
    """A ledger read or write did not complete."""

    def __init__(self, message: str, *, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class StatusUnknownError(NetworkError):
    """A signed blob was sent but no conclusive verdict arrived.

    Query the transaction by hash before doing anything else; resubmitting a
    fresh operation may spend twice.
    """

    def __init__(self, tx_hash: str, last_ledger_sequence: int | None = None, reason: str = ""):
        message = f"Status unknown for {tx_hash}, check before retrying"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message, retryable=False)
        self.tx_hash = tx_hash
        self.last_ledger_sequence = last_ledger_sequence


class LedgerRejection(TxFlowError):
    """The network refused the operation. Never resubmit the same envelope."""

    def __init__(self, envelope: OutcomeEnvelope):
        super().__init__(f"{envelope.engine_result}: {envelope.diagnostic}")
        self.envelope = envelope

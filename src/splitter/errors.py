"""Error taxonomy for the reward splitter.

Validation errors are raised before any state is touched. Errors that
originate at the execution boundary carry enough context (denomination,
amount, recipients, code reference) for the caller to retry safely.
Nothing here is fatal: every error is reported to the caller.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


class SplitterError(Exception):
    """Base class for every error raised by the splitter core."""


class InvalidShareSet(SplitterError):
    """Raised when a share set fails validation."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Invalid share set: {reason}")
        self.reason = reason


class ImmutableLedger(SplitterError):
    """Raised when mutating a distributor whose ledger has been locked."""


class Unauthorized(SplitterError):
    """Raised when a non-admin sender calls an admin operation."""

    def __init__(self, sender: str, operation: str) -> None:
        super().__init__(f"Sender '{sender}' is not authorised to {operation}")
        self.sender = sender
        self.operation = operation


class UnknownRecipient(SplitterError):
    """Raised when a recipient has no share in the ledger."""


class UnknownModule(SplitterError):
    """Raised when invoking a module that was never registered."""


class InvalidAmount(SplitterError):
    """Raised for negative or non-integer token amounts."""


class InsufficientBalance(SplitterError):
    """Raised when a debit exceeds the accumulated balance."""

    def __init__(self, denomination: str, requested: int, available: int) -> None:
        super().__init__(
            f"Cannot debit {requested}{denomination}: only {available}{denomination} available"
        )
        self.denomination = denomination
        self.requested = requested
        self.available = available


class ActivationFailed(SplitterError):
    """Raised when the boundary rejects a module activation."""

    def __init__(self, code_ref: Any, reason: str) -> None:
        super().__init__(f"Activation of module {code_ref!r} failed: {reason}")
        self.code_ref = code_ref
        self.reason = reason


class SettlementFailed(SplitterError):
    """Raised when a payout batch was not confirmed.

    The accumulator is never debited when this is raised, so the caller
    may retry from the same balance.
    """

    def __init__(
        self,
        denomination: str,
        amount: int,
        recipients: Sequence[str],
        reason: str,
    ) -> None:
        super().__init__(
            f"Settlement of {amount}{denomination} to "
            f"{len(recipients)} recipient(s) failed: {reason}"
        )
        self.denomination = denomination
        self.amount = amount
        self.recipients = tuple(recipients)
        self.reason = reason


class BoundaryUnavailable(SplitterError):
    """Raised when a boundary call could not complete (timeout, network)."""

    def __init__(self, operation: str, context: Optional[dict] = None) -> None:
        super().__init__(f"Execution boundary unavailable during {operation}")
        self.operation = operation
        self.context = dict(context or {})


class OperationRejected(SplitterError):
    """Raised when the boundary answered but refused a reward operation."""

    def __init__(self, operation: str, reason: str, context: Optional[dict] = None) -> None:
        super().__init__(f"Execution boundary rejected {operation}: {reason}")
        self.operation = operation
        self.reason = reason
        self.context = dict(context or {})

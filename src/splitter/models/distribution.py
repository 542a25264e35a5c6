"""Distribution models — shares, modules, payout instructions, settlements.

Percentages are Decimal fractions, never floats. Token amounts are
integer base units of a denomination (e.g. ``aconst``), so every payout
is exact and the sum of a settlement's payouts equals the settled
balance.

Settlement state machine:
    PENDING → SNAPSHOTTED → SUBMITTED → CONFIRMED
                                      → FAILED
    PENDING → FAILED                (snapshot rejected)
    SNAPSHOTTED → CONFIRMED         (zero balance, nothing to submit)
    SNAPSHOTTED → FAILED            (no instructions could be built)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Tuple

# The chain's fixed-point Decimal carries 18 fractional digits.
SHARE_PRECISION = 18


def to_percentage(value: Any) -> Decimal:
    """Parse a share percentage from str, int or Decimal.

    Floats are rejected: a float such as 0.35 is not exactly 0.35.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(
            f"Share percentage must be str, int or Decimal, got {type(value).__name__}"
        )
    if isinstance(value, Decimal):
        pct = value
    elif isinstance(value, (int, str)):
        try:
            pct = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"Not a decimal percentage: {value!r}") from exc
    else:
        raise TypeError(
            f"Share percentage must be str, int or Decimal, got {type(value).__name__}"
        )
    if not pct.is_finite():
        raise ValueError(f"Share percentage must be finite, got {value!r}")
    return pct


@dataclass(frozen=True)
class Share:
    """A recipient's fractional entitlement to distributed rewards.

    Range checks (0 < percentage <= 1) belong to the ledger so that a
    bad entry is reported as an invalid share set.
    """
    recipient: str
    percentage: Decimal

    def __post_init__(self) -> None:
        if not isinstance(self.recipient, str):
            raise TypeError(
                f"Recipient must be a string, got {type(self.recipient).__name__}"
            )
        object.__setattr__(self, "percentage", to_percentage(self.percentage))

    def to_dict(self) -> Dict[str, str]:
        return {"recipient": self.recipient, "percentage": str(self.percentage)}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> Share:
        return Share(recipient=data["recipient"], percentage=data["percentage"])


@dataclass(frozen=True)
class Module:
    """An activated auxiliary module registered with a distributor.

    ``code_ref`` and ``init_payload`` are opaque to the core; ``address``
    is what the boundary returned on activation and is the handle used
    for every later invocation.
    """
    code_ref: Any
    init_payload: Any
    address: str
    rewards_address: Optional[str] = None
    registered_utc: Optional[datetime] = None


@dataclass(frozen=True)
class InvocationResult:
    """Outcome of a single module invocation."""
    address: str
    action: Any
    success: bool
    output: Any = None
    error: Optional[str] = None
    index: int = 0


@dataclass(frozen=True)
class PayoutInstruction:
    """Send ``amount`` base units of ``denomination`` to ``recipient``."""
    recipient: str
    denomination: str
    amount: int

    def __post_init__(self) -> None:
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise TypeError("Payout amount must be an integer number of base units")
        if self.amount <= 0:
            raise ValueError("Payout amount must be positive")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipient": self.recipient,
            "denomination": self.denomination,
            "amount": self.amount,
        }


@dataclass(frozen=True)
class Confirmation:
    """Boundary acknowledgement of a submitted payout batch.

    ``accepted`` is optional: boundaries that report per-instruction
    results fill it with one flag per instruction, in submission order.
    An empty tuple means the batch was confirmed as a whole.
    """
    reference: str
    accepted: Tuple[bool, ...] = ()


class SettlementState(str, enum.Enum):
    """Lifecycle state of a single settlement attempt."""
    PENDING = "pending"
    SNAPSHOTTED = "snapshotted"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


SETTLEMENT_TRANSITIONS: Dict[SettlementState, frozenset] = {
    SettlementState.PENDING: frozenset({
        SettlementState.SNAPSHOTTED,
        SettlementState.FAILED,
    }),
    SettlementState.SNAPSHOTTED: frozenset({
        SettlementState.SUBMITTED,
        SettlementState.CONFIRMED,
        SettlementState.FAILED,
    }),
    SettlementState.SUBMITTED: frozenset({
        SettlementState.CONFIRMED,
        SettlementState.FAILED,
    }),
    SettlementState.CONFIRMED: frozenset(),
    SettlementState.FAILED: frozenset(),
}


@dataclass
class SettlementRecord:
    """A settlement attempt.

    Mutable while the attempt runs; terminal once CONFIRMED or FAILED.
    """
    settlement_id: str
    denomination: str
    balance: int = 0
    shares: Tuple[Share, ...] = ()
    instructions: Tuple[PayoutInstruction, ...] = ()
    state: SettlementState = SettlementState.PENDING
    confirmation: Optional[Confirmation] = None
    error: Optional[str] = None
    started_utc: Optional[datetime] = None
    finished_utc: Optional[datetime] = None

    def transition_to(self, new_state: SettlementState) -> None:
        """Transition to a new state, validating the transition is legal."""
        allowed = SETTLEMENT_TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise ValueError(
                f"Invalid settlement transition: {self.state.value} → {new_state.value}. "
                f"Allowed: {', '.join(s.value for s in allowed)}"
            )
        self.state = new_state

    @property
    def total_paid(self) -> int:
        return sum(i.amount for i in self.instructions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "settlement_id": self.settlement_id,
            "denomination": self.denomination,
            "balance": self.balance,
            "state": self.state.value,
            "instructions": [i.to_dict() for i in self.instructions],
            "confirmation": self.confirmation.reference if self.confirmation else None,
            "error": self.error,
        }

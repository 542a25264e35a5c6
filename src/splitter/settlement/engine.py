"""Distribution engine — turns an accumulated balance into payouts.

Payout rule (deterministic, exact):
    for every share except the last, in ledger order:
        payout = floor(balance * percentage)
    last share:
        payout = balance - sum(previous payouts)

Earlier payouts are capped at what is left of the balance, so a share
set that totals slightly over one (within tolerance) still settles.

The last-ordered recipient absorbs the whole rounding remainder, so the
payouts always sum to exactly the settled balance. Zero payouts produce
no instruction.

Atomicity: the accumulator is debited only after the boundary confirms
the whole batch. A rejected, partially confirmed or unanswered batch
leaves the accumulator untouched, and re-running settlement from the
same state produces the same instructions.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import ROUND_FLOOR, Decimal, localcontext
from typing import List, Optional, Sequence, Tuple
from uuid import uuid4

import trio

from splitter.boundary import ExecutionBoundary
from splitter.errors import BoundaryUnavailable, InvalidShareSet, SettlementFailed
from splitter.ledger.shares import ShareLedger
from splitter.models.distribution import (
    Confirmation,
    PayoutInstruction,
    SettlementRecord,
    SettlementState,
    Share,
)
from splitter.rewards.accumulator import RewardAccumulator

logger = logging.getLogger("splitter.settlement.engine")

# Enough digits for a 128-bit balance times an 18-place percentage.
_ARITHMETIC_PRECISION = 80


def compute_payouts(
    shares: Sequence[Share],
    balance: int,
    denomination: str,
) -> Tuple[PayoutInstruction, ...]:
    """Compute per-recipient payouts for ``balance``.

    Pure function. The returned amounts sum to exactly ``balance``.
    """
    if balance < 0:
        raise ValueError("Balance must be non-negative")
    if balance == 0:
        return ()
    if not shares:
        raise InvalidShareSet("no shares to distribute to")

    amounts: List[int] = []
    distributed = 0
    with localcontext() as ctx:
        ctx.prec = _ARITHMETIC_PRECISION
        for share in shares[:-1]:
            payout = int(
                (Decimal(balance) * share.percentage).to_integral_value(rounding=ROUND_FLOOR)
            )
            # A set accepted within tolerance may total slightly over 1.
            payout = min(payout, balance - distributed)
            amounts.append(payout)
            distributed += payout

    amounts.append(balance - distributed)

    return tuple(
        PayoutInstruction(recipient=share.recipient, denomination=denomination, amount=amount)
        for share, amount in zip(shares, amounts)
        if amount > 0
    )


class DistributionEngine:
    """Settles an accumulator against a share ledger.

    Usage:
        engine = DistributionEngine(boundary)
        record = await engine.settle(ledger, accumulator, "aconst")

    The distributor splits this into ``snapshot`` (taken while share
    updates are held off) and ``execute``.
    """

    def __init__(self, boundary: ExecutionBoundary, timeout: float = 30.0) -> None:
        self._boundary = boundary
        self._timeout = timeout

    def snapshot(
        self,
        ledger: ShareLedger,
        accumulator: RewardAccumulator,
        denomination: str,
        settlement_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SettlementRecord:
        """Read shares and balance as one view and plan the payouts.

        Transitions: PENDING → SNAPSHOTTED (or FAILED if planning fails).
        Synchronous, so no other task can interleave with it.
        """
        record = SettlementRecord(
            settlement_id=settlement_id or f"settle_{uuid4().hex[:12]}",
            denomination=denomination,
            started_utc=now or datetime.now(timezone.utc),
        )
        shares = ledger.shares()
        balance = accumulator.balance(denomination)
        try:
            instructions = compute_payouts(shares, balance, denomination)
        except InvalidShareSet as exc:
            record.error = str(exc)
            record.transition_to(SettlementState.FAILED)
            raise
        record.shares = shares
        record.balance = balance
        record.instructions = instructions
        record.transition_to(SettlementState.SNAPSHOTTED)
        return record

    async def execute(
        self,
        record: SettlementRecord,
        accumulator: RewardAccumulator,
    ) -> SettlementRecord:
        """Submit a snapshotted plan and debit on confirmation.

        Transitions: SNAPSHOTTED → SUBMITTED → CONFIRMED | FAILED,
                     or SNAPSHOTTED → CONFIRMED for a zero balance.

        Raises SettlementFailed on rejection or an incomplete
        confirmation, BoundaryUnavailable on timeout. Neither debits.
        """
        if record.state != SettlementState.SNAPSHOTTED:
            raise ValueError(
                f"Settlement {record.settlement_id} is {record.state.value}, not snapshotted"
            )

        if not record.instructions:
            record.transition_to(SettlementState.CONFIRMED)
            record.finished_utc = datetime.now(timezone.utc)
            logger.info(f"Settlement {record.settlement_id}: nothing to distribute")
            return record

        record.transition_to(SettlementState.SUBMITTED)
        recipients = [i.recipient for i in record.instructions]
        try:
            with trio.fail_after(self._timeout):
                confirmation = await self._boundary.submit_instructions(record.instructions)
        except trio.TooSlowError as exc:
            self._fail(record, f"no confirmation within {self._timeout}s")
            raise BoundaryUnavailable(
                "submit_instructions",
                {
                    "settlement_id": record.settlement_id,
                    "denomination": record.denomination,
                    "amount": record.balance,
                    "recipients": recipients,
                },
            ) from exc
        except Exception as exc:
            self._fail(record, str(exc))
            raise SettlementFailed(
                record.denomination, record.balance, recipients, str(exc),
            ) from exc

        problem = self._verify(confirmation, len(record.instructions))
        if problem is not None:
            self._fail(record, problem)
            raise SettlementFailed(record.denomination, record.balance, recipients, problem)

        accumulator.debit(record.denomination, record.balance)
        record.confirmation = confirmation
        record.transition_to(SettlementState.CONFIRMED)
        record.finished_utc = datetime.now(timezone.utc)
        logger.info(
            f"Settlement {record.settlement_id}: paid {record.balance}{record.denomination} "
            f"to {len(recipients)} recipient(s) in {confirmation.reference}"
        )
        return record

    async def settle(
        self,
        ledger: ShareLedger,
        accumulator: RewardAccumulator,
        denomination: str,
        settlement_id: Optional[str] = None,
    ) -> SettlementRecord:
        """Snapshot and execute in one call."""
        record = self.snapshot(ledger, accumulator, denomination, settlement_id)
        return await self.execute(record, accumulator)

    @staticmethod
    def _verify(confirmation: object, expected: int) -> Optional[str]:
        if not isinstance(confirmation, Confirmation):
            return f"unrecognised confirmation {confirmation!r}"
        if confirmation.accepted:
            if len(confirmation.accepted) != expected:
                return (
                    f"confirmation covers {len(confirmation.accepted)} of "
                    f"{expected} instructions"
                )
            rejected = confirmation.accepted.count(False)
            if rejected:
                return f"{rejected} of {expected} instructions were not accepted"
        return None

    @staticmethod
    def _fail(record: SettlementRecord, reason: str) -> None:
        record.error = reason
        record.transition_to(SettlementState.FAILED)
        record.finished_utc = datetime.now(timezone.utc)
        logger.error(f"Settlement {record.settlement_id} failed: {reason}")

"""Reward accumulator — pending, unsettled reward balance per denomination.

Credits come from outside the core: rewards observed or withdrawn from
the chain. The only debit is a confirmed settlement. Balances are
integer base units and never go negative.
"""

from __future__ import annotations

from typing import Dict

from splitter.errors import InsufficientBalance, InvalidAmount


def check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(
            f"Amount must be an integer number of base units, got {amount!r}"
        )
    if amount < 0:
        raise InvalidAmount(f"Amount must be non-negative, got {amount}")


class RewardAccumulator:
    """Per-denomination balance owned by a single distributor.

    Usage:
        acc = RewardAccumulator()
        acc.credit("aconst", 100)
        acc.balance("aconst")   # 100
        acc.debit("aconst", 100)
    """

    def __init__(self) -> None:
        self._balances: Dict[str, int] = {}

    def credit(self, denomination: str, amount: int) -> int:
        """Increase the balance; returns the new balance."""
        check_amount(amount)
        new_balance = self._balances.get(denomination, 0) + amount
        self._balances[denomination] = new_balance
        return new_balance

    def debit(self, denomination: str, amount: int) -> int:
        """Decrease the balance; returns the new balance.

        Only the distribution engine calls this, after a confirmed payout.
        """
        check_amount(amount)
        available = self._balances.get(denomination, 0)
        if amount > available:
            raise InsufficientBalance(denomination, amount, available)
        self._balances[denomination] = available - amount
        return available - amount

    def balance(self, denomination: str) -> int:
        return self._balances.get(denomination, 0)

    def balances(self) -> Dict[str, int]:
        """Snapshot of every denomination seen so far."""
        return dict(self._balances)

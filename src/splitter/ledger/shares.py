"""Share ledger — the recipient → fractional share mapping.

The ledger is the data source for the distribution engine. It holds an
ordered set of shares whose percentages sum to one, and a mutability
flag. Order is insertion order of the most recent successful create or
update; it decides payout order and therefore which recipient absorbs
the rounding remainder.

Rules:
- Every share set is validated in full before it replaces the old one.
  A rejected set leaves the ledger exactly as it was.
- Once locked, the ledger rejects every update for its lifetime.

The ledger is a pure in-memory structure with no side effects. Audit
logging is handled by the distributor.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable, List, Optional, Tuple, Union

from splitter.errors import ImmutableLedger, InvalidShareSet, UnknownRecipient
from splitter.models.distribution import SHARE_PRECISION, Share

DEFAULT_TOLERANCE = Decimal("0.000001")

ShareLike = Union[Share, Tuple[str, Any]]


def _coerce(entries: Iterable[ShareLike]) -> List[Share]:
    shares: List[Share] = []
    for entry in entries:
        if isinstance(entry, Share):
            shares.append(entry)
            continue
        try:
            recipient, percentage = entry
            shares.append(Share(recipient=recipient, percentage=percentage))
        except (TypeError, ValueError) as exc:
            raise InvalidShareSet(f"malformed share entry {entry!r}: {exc}") from exc
    return shares


def validate_shares(
    entries: Iterable[ShareLike],
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> Tuple[Share, ...]:
    """Validate a candidate share set and return it as an ordered tuple.

    Raises InvalidShareSet when the set is empty, a recipient is blank
    or duplicated, a percentage is outside (0, 1] or finer than the
    share precision, or the total differs from one by more than
    ``tolerance``.
    """
    shares = _coerce(entries)
    if not shares:
        raise InvalidShareSet("at least one share is required")

    seen = set()
    for share in shares:
        if not share.recipient or share.recipient != share.recipient.strip():
            raise InvalidShareSet(f"invalid recipient {share.recipient!r}")
        if share.recipient in seen:
            raise InvalidShareSet(f"duplicate recipient {share.recipient}")
        seen.add(share.recipient)
        if share.percentage <= 0:
            raise InvalidShareSet(
                f"percentage for {share.recipient} must be positive, got {share.percentage}"
            )
        if share.percentage > 1:
            raise InvalidShareSet(
                f"percentage for {share.recipient} exceeds 1, got {share.percentage}"
            )
        if share.percentage.normalize().as_tuple().exponent < -SHARE_PRECISION:
            raise InvalidShareSet(
                f"percentage for {share.recipient} has more than "
                f"{SHARE_PRECISION} decimal places"
            )

    total = sum((s.percentage for s in shares), Decimal("0"))
    if total - 1 > tolerance:
        raise InvalidShareSet(f"percentages total {total}, exceeding 1")
    if 1 - total > tolerance:
        raise InvalidShareSet(f"percentages total {total}, falling short of 1")
    return tuple(shares)


class ShareLedger:
    """Ordered, validated share set with a one-way lock.

    Usage:
        ledger = ShareLedger.create([("alice", "0.25"), ("bob", "0.75")], mutable=True)
        ledger.update([("alice", "0.35"), ("bob", "0.65")])
        ledger.lock()
        ledger.shares()   # (Share(alice, 0.35), Share(bob, 0.65))
    """

    def __init__(
        self,
        shares: Tuple[Share, ...],
        mutable: bool,
        tolerance: Decimal = DEFAULT_TOLERANCE,
    ) -> None:
        self._shares = shares
        self._mutable = mutable
        self._tolerance = tolerance

    @classmethod
    def create(
        cls,
        initial_shares: Iterable[ShareLike],
        mutable: bool,
        tolerance: Decimal = DEFAULT_TOLERANCE,
    ) -> ShareLedger:
        """Create a ledger from an initial share set."""
        return cls(validate_shares(initial_shares, tolerance), bool(mutable), tolerance)

    @property
    def mutable(self) -> bool:
        return self._mutable

    @property
    def tolerance(self) -> Decimal:
        return self._tolerance

    def update(self, new_shares: Iterable[ShareLike]) -> ShareLedger:
        """Replace the entire share set.

        Raises ImmutableLedger if the ledger is locked, InvalidShareSet
        if the new set is invalid. In both cases the current set stays.
        """
        if not self._mutable:
            raise ImmutableLedger("Share ledger is immutable; updates are rejected")
        validated = validate_shares(new_shares, self._tolerance)
        self._shares = validated
        return self

    def lock(self) -> None:
        """Make the ledger immutable. Irreversible."""
        self._mutable = False

    def shares(self) -> Tuple[Share, ...]:
        """Current shares in ledger order."""
        return self._shares

    def recipients(self) -> Tuple[str, ...]:
        return tuple(s.recipient for s in self._shares)

    def share(self, recipient: str) -> Share:
        """Look up a single recipient's share."""
        for s in self._shares:
            if s.recipient == recipient:
                return s
        raise UnknownRecipient(f"No share held by {recipient}")

    def page(
        self,
        start_after: Optional[str] = None,
        limit: int = 10,
        max_limit: int = 30,
    ) -> List[Share]:
        """Paginated listing in ledger order.

        Returns up to ``limit`` shares (capped at ``max_limit``) that come
        after ``start_after``; an unknown ``start_after`` raises
        UnknownRecipient.
        """
        limit = max(0, min(limit, max_limit))
        start = 0
        if start_after is not None:
            start = self.recipients().index(self.share(start_after).recipient) + 1
        return list(self._shares[start:start + limit])

    def __len__(self) -> int:
        return len(self._shares)

    def __iter__(self):
        return iter(self._shares)

    def to_list(self) -> List[dict]:
        return [s.to_dict() for s in self._shares]

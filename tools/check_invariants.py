#!/usr/bin/env python3
"""Splitter invariant checks against the shipped configuration and payout rule."""

import json
import sys
from decimal import Decimal
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from splitter.ledger.shares import validate_shares  # noqa: E402
from splitter.settlement.engine import compute_payouts  # noqa: E402

PARAMS_PATH = ROOT / "config" / "splitter_params.json"

# Share sets covering even splits, thirds, a dominant recipient and dust.
SAMPLE_SHARE_SETS = [
    [("a", "1")],
    [("a", "0.25"), ("b", "0.75")],
    [("a", "0.35"), ("b", "0.65")],
    [("a", "0.333333"), ("b", "0.333333"), ("c", "0.333334")],
    [("a", "0.999999999999999999"), ("b", "0.000000000000000001")],
    [("a", "0.1"), ("b", "0.2"), ("c", "0.3"), ("d", "0.4")],
    # Totals 1.000001, the edge of the default tolerance.
    [("a", "0.6"), ("b", "0.4000005"), ("c", "0.0000005")],
]
SAMPLE_BALANCES = [0, 1, 2, 3, 7, 99, 100, 101, 1_000_003, 10**24 + 7]


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check() -> int:
    params = load_json(PARAMS_PATH)
    errors: list[str] = []

    # --- Configuration invariants ---
    dist = params["distribution"]
    if not dist["DENOMINATION"]:
        errors.append("DENOMINATION must not be empty")
    tolerance = Decimal(str(dist["SHARE_TOLERANCE"]))
    if not Decimal("0") <= tolerance <= Decimal("0.001"):
        errors.append(f"SHARE_TOLERANCE must be in [0, 0.001], got {tolerance}")

    queries = params["queries"]
    if not 0 < queries["DEFAULT_PAGE_LIMIT"] <= queries["MAX_PAGE_LIMIT"]:
        errors.append("DEFAULT_PAGE_LIMIT must be in (0, MAX_PAGE_LIMIT]")

    if params["boundary"]["TIMEOUT_SECONDS"] <= 0:
        errors.append("boundary TIMEOUT_SECONDS must be positive")

    # --- Payout invariants ---
    for entries in SAMPLE_SHARE_SETS:
        shares = validate_shares(entries, tolerance)
        for balance in SAMPLE_BALANCES:
            payouts = compute_payouts(shares, balance, dist["DENOMINATION"])
            total = sum(p.amount for p in payouts)
            if total != balance:
                errors.append(f"payouts for {entries} sum to {total}, not {balance}")
            if any(p.amount <= 0 for p in payouts):
                errors.append(f"zero or negative payout emitted for {entries} / {balance}")
            order = [s.recipient for s in shares]
            emitted = [p.recipient for p in payouts]
            if emitted != [r for r in order if r in emitted]:
                errors.append(f"payout order differs from ledger order for {entries}")

    if errors:
        print("Invariant check failed:")
        for error in errors:
            print(f"- {error}")
        return 1

    print("Splitter invariant checks passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(check())

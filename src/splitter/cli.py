"""Splitter CLI — operator interface for the reward splitter.

Usage:
    python -m splitter.cli config
    python -m splitter.cli check-invariants
    python -m splitter.cli payouts --share alice=0.25 --share bob=0.75 --balance 100
    python -m splitter.cli simulate --share alice=0.25 --share bob=0.75 \
        --update-share alice=0.35 --update-share bob=0.65 \
        --code-ref 7 --invocations 5 --reward-per-invocation 20
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional, Tuple

import trio

from splitter.boundary import InMemoryBoundary
from splitter.config import DEFAULT_CONFIG_DIR, SplitterConfig, load_config
from splitter.distributor import Distributor
from splitter.errors import SplitterError
from splitter.ledger.shares import validate_shares
from splitter.persistence.event_log import EventLog
from splitter.settlement.engine import compute_payouts

ADMIN = "admin"
DISTRIBUTOR_ADDRESS = "splitter"


def _parse_share(text: str) -> Tuple[str, str]:
    recipient, sep, percentage = text.partition("=")
    if not sep or not recipient or not percentage:
        raise argparse.ArgumentTypeError(
            f"Share must look like recipient=percentage, got {text!r}"
        )
    return recipient, percentage


def cmd_config(args: argparse.Namespace, config: SplitterConfig) -> int:
    data = asdict(config)
    print(json.dumps(data, indent=2, default=str))
    return 0


def cmd_payouts(args: argparse.Namespace, config: SplitterConfig) -> int:
    """Preview the payouts for a share set and balance, without settling."""
    if args.balance < 0:
        print("Failed: balance must be non-negative", file=sys.stderr)
        return 1
    shares = validate_shares(args.share, config.share_tolerance)
    denomination = args.denom or config.denomination
    instructions = compute_payouts(shares, args.balance, denomination)
    print(json.dumps([i.to_dict() for i in instructions], indent=2))
    return 0


def cmd_simulate(args: argparse.Namespace, config: SplitterConfig) -> int:
    """Run create → update → register → invoke → withdraw → settle in memory."""
    denomination = args.denom or config.denomination
    event_log = None
    if args.data:
        args.data.mkdir(parents=True, exist_ok=True)
        event_log = EventLog(storage_path=args.data / "events.jsonl")

    boundary = InMemoryBoundary(
        creator=DISTRIBUTOR_ADDRESS,
        reward_per_invocation=args.reward_per_invocation,
        denomination=denomination,
    )
    _script_invocations(boundary, args.invocations, args.fail_invocation)

    async def run() -> dict:
        distributor = Distributor(
            admin=ADMIN,
            address=DISTRIBUTOR_ADDRESS,
            shares=args.share,
            mutable=not args.immutable,
            boundary=boundary,
            config=config,
            event_log=event_log,
        )
        if args.update_share:
            await distributor.update_shares(ADMIN, args.update_share)

        invocations = []
        if args.code_ref is not None:
            module = await distributor.register_module(ADMIN, args.code_ref, {})
            actions = [{"increment": {}}] * args.invocations
            async for result in distributor.invoke_module_many(module, actions):
                invocations.append({
                    "index": result.index,
                    "success": result.success,
                    "error": result.error,
                })
            await distributor.withdraw_rewards(ADMIN)

        if args.credit:
            await distributor.credit_rewards(denomination, args.credit)

        before = distributor.balance(denomination)
        record = await distributor.settle(ADMIN, denomination)
        balances = {
            share.recipient: await boundary.query_balance(share.recipient, denomination)
            for share in distributor.shares()
        }
        return {
            "distributor": distributor.status(),
            "invocations": invocations,
            "settled": before,
            "settlement": record.to_dict(),
            "recipient_balances": balances,
        }

    print(json.dumps(trio.run(run), indent=2, default=str))
    return 0


def cmd_check_invariants(args: argparse.Namespace, config: SplitterConfig) -> int:
    """Run the configuration and payout invariant checks."""
    tools_dir = Path(__file__).resolve().parents[2] / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    return check()


def _script_invocations(boundary: InMemoryBoundary, count: int, failing: List[int]) -> None:
    if not failing:
        return
    for index in range(count):
        if index in failing:
            boundary.fail_next("invoke_module")
        else:
            boundary.pass_next("invoke_module")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="splitter",
        description="Reward splitter — share ledger and settlement CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_DIR,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument("--log-level", help="Logging level (default: from config)")
    sub = parser.add_subparsers(dest="command")

    # config
    sub.add_parser("config", help="Show effective configuration")

    # payouts
    p_pay = sub.add_parser("payouts", help="Preview payouts for a balance")
    p_pay.add_argument(
        "--share", type=_parse_share, action="append", required=True,
        help="recipient=percentage (repeat, in payout order)",
    )
    p_pay.add_argument("--balance", type=int, required=True, help="Balance in base units")
    p_pay.add_argument("--denom", help="Denomination (default: from config)")

    # simulate
    p_sim = sub.add_parser("simulate", help="Run a full distribution against an in-memory chain")
    p_sim.add_argument(
        "--share", type=_parse_share, action="append", required=True,
        help="Initial recipient=percentage (repeat)",
    )
    p_sim.add_argument(
        "--update-share", type=_parse_share, action="append", default=[],
        help="Replacement recipient=percentage applied after creation (repeat)",
    )
    p_sim.add_argument("--immutable", action="store_true", help="Create the distributor locked")
    p_sim.add_argument("--code-ref", help="Module code reference to register")
    p_sim.add_argument("--invocations", type=int, default=5, help="Module invocations (default: 5)")
    p_sim.add_argument(
        "--fail-invocation", type=int, action="append", default=[],
        help="Zero-based invocation index that the chain rejects (repeat)",
    )
    p_sim.add_argument(
        "--reward-per-invocation", type=int, default=0,
        help="Rewards accrued per successful invocation (base units)",
    )
    p_sim.add_argument("--credit", type=int, default=0, help="Extra rewards credited before settling")
    p_sim.add_argument("--denom", help="Denomination (default: from config)")
    p_sim.add_argument("--data", type=Path, help="Directory for events.jsonl (default: no persistence)")

    # check-invariants
    sub.add_parser("check-invariants", help="Run configuration and payout invariant checks")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    config = load_config(args.config)
    logging.basicConfig(
        level=(args.log_level or config.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    commands = {
        "config": cmd_config,
        "payouts": cmd_payouts,
        "simulate": cmd_simulate,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args, config)
    except SplitterError as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

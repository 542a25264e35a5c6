"""Execution boundary — the only way the core reaches the chain.

The ledger, registry and settlement engine never hold a network client.
They talk to an object satisfying ``ExecutionBoundary``; swapping the
chain (or a test double) requires zero changes to core logic.

A boundary signals an explicit rejection by raising any exception. A
call that never answers is cut off by the caller's timeout and treated
exactly like a rejection.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections import deque
from dataclasses import dataclass
from typing import (
    Any,
    Deque,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Set,
    Tuple,
    runtime_checkable,
)

import trio

from splitter.models.distribution import Confirmation, PayoutInstruction

logger = logging.getLogger("splitter.boundary")


@runtime_checkable
class ExecutionBoundary(Protocol):
    """Abstract contract for the surrounding ledger/consensus system."""

    async def activate_module(self, code_ref: Any, init_payload: Any) -> str:
        """Instantiate a module and return its resolved address."""
        ...

    async def invoke_module(self, address: str, action: Any) -> Any:
        """Execute an opaque action against an activated module."""
        ...

    async def submit_instructions(
        self,
        instructions: Sequence[PayoutInstruction],
    ) -> Confirmation:
        """Submit a payout batch. All instructions succeed together or the call fails."""
        ...

    async def query_balance(self, recipient: str, denomination: str) -> int:
        """Read an account balance. Never used for core invariants."""
        ...


@runtime_checkable
class RewardsBoundary(ExecutionBoundary, Protocol):
    """Boundary that also exposes the chain's reward-metadata hooks."""

    async def update_reward_metadata(
        self,
        address: str,
        owner_address: Optional[str],
        rewards_address: Optional[str],
    ) -> None:
        """Point a contract's reward owner and payee at new addresses."""
        ...

    async def withdraw_rewards(self, address: str) -> Dict[str, int]:
        """Withdraw accrued rewards for ``address``; returns amount per denomination."""
        ...


class BoundaryRejected(Exception):
    """Raised by InMemoryBoundary for scripted or rule-based rejections."""


@dataclass
class _Scripted:
    error: Optional[Exception] = None
    stall: Optional[float] = None


class InMemoryBoundary:
    """Deterministic in-process boundary.

    Used by the CLI's simulation mode and by tests. Behaviour:
    - Addresses are derived from (creator, code_ref, init_payload), so
      activating the same module twice collides and is rejected.
    - Every successful invocation accrues ``reward_per_invocation`` to
      the module's rewards address (or the module itself).
    - Payout batches are applied to bank balances all-or-nothing.

    Failures and hangs are scripted per operation:
        boundary.fail_next("submit_instructions")
        boundary.stall_next("invoke_module", seconds=60)
    """

    OPERATIONS = (
        "activate_module",
        "invoke_module",
        "submit_instructions",
        "update_reward_metadata",
        "withdraw_rewards",
    )

    def __init__(
        self,
        creator: str = "splitter",
        accepted_code_refs: Optional[Set[Any]] = None,
        reward_per_invocation: int = 0,
        denomination: str = "aconst",
        address_prefix: str = "archway1",
    ) -> None:
        self.creator = creator
        self.accepted_code_refs = accepted_code_refs
        self.reward_per_invocation = reward_per_invocation
        self.denomination = denomination
        self.address_prefix = address_prefix
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []
        self._modules: Dict[str, Any] = {}
        self._metadata: Dict[str, Tuple[Optional[str], Optional[str]]] = {}
        self._pending: Dict[str, Dict[str, int]] = {}
        self._bank: Dict[Tuple[str, str], int] = {}
        self._script: Dict[str, Deque[_Scripted]] = {op: deque() for op in self.OPERATIONS}
        self._partial: Deque[Tuple[bool, ...]] = deque()
        self._tx_counter = 0

    # ---- Scripting ----

    def fail_next(
        self,
        operation: str,
        error: Optional[Exception] = None,
        times: int = 1,
    ) -> None:
        """Reject the next ``times`` calls of ``operation``."""
        for _ in range(times):
            self._queue(operation).append(
                _Scripted(error=error or BoundaryRejected(f"{operation} rejected")),
            )

    def stall_next(self, operation: str, seconds: float = 3600.0, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` hang for ``seconds``."""
        for _ in range(times):
            self._queue(operation).append(_Scripted(stall=seconds))

    def confirm_partially_next(self, accepted: Sequence[bool]) -> None:
        """Report per-instruction flags for the next submitted batch."""
        self._partial.append(tuple(accepted))

    def pass_next(self, operation: str) -> None:
        """Let the next call of ``operation`` through (placeholder in a script)."""
        self._queue(operation).append(_Scripted())

    # ---- ExecutionBoundary ----

    async def activate_module(self, code_ref: Any, init_payload: Any) -> str:
        self.calls.append(("activate_module", (code_ref, init_payload)))
        await self._play("activate_module")
        if self.accepted_code_refs is not None and code_ref not in self.accepted_code_refs:
            raise BoundaryRejected(f"No code stored under {code_ref!r}")
        address = self._derive_address(code_ref, init_payload)
        if address in self._modules:
            raise BoundaryRejected(f"Address already in use: {address}")
        self._modules[address] = code_ref
        logger.debug(f"Activated module {code_ref!r} at {address}")
        return address

    async def invoke_module(self, address: str, action: Any) -> Any:
        self.calls.append(("invoke_module", (address, action)))
        await self._play("invoke_module")
        if address not in self._modules:
            raise BoundaryRejected(f"No contract at {address}")
        if self.reward_per_invocation:
            _, rewards_address = self._metadata.get(address, (None, None))
            payee = rewards_address or address
            pending = self._pending.setdefault(payee, {})
            pending[self.denomination] = (
                pending.get(self.denomination, 0) + self.reward_per_invocation
            )
        return {"address": address, "action": action}

    async def submit_instructions(
        self,
        instructions: Sequence[PayoutInstruction],
    ) -> Confirmation:
        batch = tuple(instructions)
        self.calls.append(("submit_instructions", (batch,)))
        await self._play("submit_instructions")
        self._tx_counter += 1
        reference = f"tx-{self._tx_counter:06d}"
        if self._partial:
            # Partial batches report flags but move no funds.
            return Confirmation(reference=reference, accepted=self._partial.popleft())
        for instr in batch:
            key = (instr.recipient, instr.denomination)
            self._bank[key] = self._bank.get(key, 0) + instr.amount
        return Confirmation(reference=reference)

    async def query_balance(self, recipient: str, denomination: str) -> int:
        return self._bank.get((recipient, denomination), 0)

    # ---- RewardsBoundary ----

    async def update_reward_metadata(
        self,
        address: str,
        owner_address: Optional[str],
        rewards_address: Optional[str],
    ) -> None:
        self.calls.append(("update_reward_metadata", (address, owner_address, rewards_address)))
        await self._play("update_reward_metadata")
        if address not in self._modules:
            raise BoundaryRejected(f"No contract at {address}")
        owner, payee = self._metadata.get(address, (None, None))
        self._metadata[address] = (
            owner_address if owner_address is not None else owner,
            rewards_address if rewards_address is not None else payee,
        )

    async def withdraw_rewards(self, address: str) -> Dict[str, int]:
        self.calls.append(("withdraw_rewards", (address,)))
        await self._play("withdraw_rewards")
        withdrawn = self._pending.pop(address, {})
        for denom, amount in withdrawn.items():
            key = (address, denom)
            self._bank[key] = self._bank.get(key, 0) + amount
        return dict(withdrawn)

    # ---- Inspection ----

    def reward_metadata(self, address: str) -> Tuple[Optional[str], Optional[str]]:
        return self._metadata.get(address, (None, None))

    def pending_rewards(self, address: str) -> Mapping[str, int]:
        return dict(self._pending.get(address, {}))

    def call_count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)

    # ---- Internals ----

    def _queue(self, operation: str) -> Deque[_Scripted]:
        if operation not in self._script:
            raise ValueError(f"Unknown boundary operation: {operation}")
        return self._script[operation]

    async def _play(self, operation: str) -> None:
        queue = self._script[operation]
        if not queue:
            return
        step = queue.popleft()
        if step.stall is not None:
            await trio.sleep(step.stall)
        if step.error is not None:
            raise step.error

    def _derive_address(self, code_ref: Any, init_payload: Any) -> str:
        salt = json.dumps(init_payload, sort_keys=True, default=str)
        digest = hashlib.sha256(
            f"{self.creator}|{code_ref}|{salt}".encode("utf-8"),
        ).hexdigest()
        return f"{self.address_prefix}{digest[:38]}"

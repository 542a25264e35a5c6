"""Distributor — the aggregate that owns a ledger, registry and accumulator.

This is the primary programmatic interface. It adds to the components:
- Admin authorisation on every mutating operation.
- Serialisation: share updates, registration, credits and settlement
  run one at a time. Module invocations run concurrently with each
  other but never while shares are being replaced or a settlement is
  taking its snapshot.
- An audit record for every successful mutation and every settlement
  outcome, if an event log is attached.

All boundary calls are bounded by the configured timeout. The
distributor never retries; retry policy belongs to the caller.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

import trio

from splitter.boundary import ExecutionBoundary, RewardsBoundary
from splitter.config import SplitterConfig
from splitter.errors import (
    BoundaryUnavailable,
    ImmutableLedger,
    OperationRejected,
    SettlementFailed,
    SplitterError,
    Unauthorized,
)
from splitter.ledger.shares import ShareLedger, ShareLike
from splitter.models.distribution import (
    InvocationResult,
    Module,
    SettlementRecord,
    Share,
)
from splitter.modules.registry import ModuleRef, ModuleRegistry
from splitter.persistence.event_log import EventKind, EventLog, EventRecord
from splitter.rewards.accumulator import RewardAccumulator, check_amount
from splitter.settlement.engine import DistributionEngine

logger = logging.getLogger("splitter.distributor")


class _ReadWriteGate:
    """Many shared holders or one exclusive holder, never both."""

    def __init__(self) -> None:
        self._cond = trio.Condition()
        self._readers = 0
        self._writer = False

    @asynccontextmanager
    async def shared(self) -> AsyncIterator[None]:
        async with self._cond:
            while self._writer:
                await self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with trio.CancelScope(shield=True):
                async with self._cond:
                    self._readers -= 1
                    self._cond.notify_all()

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[None]:
        async with self._cond:
            while self._writer or self._readers:
                await self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with trio.CancelScope(shield=True):
                async with self._cond:
                    self._writer = False
                    self._cond.notify_all()


class Distributor:
    """Reward-distribution authority for one account.

    Usage:
        distributor = Distributor(
            admin="admin",
            address="splitter1...",
            shares=[("alice", "0.25"), ("bob", "0.75")],
            mutable=True,
            boundary=boundary,
        )
        await distributor.update_shares("admin", [("alice", "0.35"), ("bob", "0.65")])
        module = await distributor.register_module("admin", code_ref=7, init_payload={})
        async for result in distributor.invoke_module_many(module, [{"increment": {}}] * 5):
            ...
        await distributor.withdraw_rewards("admin")
        record = await distributor.settle("admin")
    """

    def __init__(
        self,
        admin: str,
        address: str,
        shares: Iterable[ShareLike],
        mutable: bool,
        boundary: ExecutionBoundary,
        config: Optional[SplitterConfig] = None,
        event_log: Optional[EventLog] = None,
    ) -> None:
        if not admin:
            raise ValueError("Distributor admin must not be empty")
        if not address:
            raise ValueError("Distributor address must not be empty")
        self._config = config or SplitterConfig()
        self._admin = admin
        self._address = address
        self._boundary = boundary
        self._ledger = ShareLedger.create(shares, mutable, self._config.share_tolerance)
        self._registry = ModuleRegistry(boundary, self._config.boundary_timeout)
        self._accumulator = RewardAccumulator()
        self._engine = DistributionEngine(boundary, self._config.boundary_timeout)
        self._event_log = event_log
        self._lock = trio.Lock()
        self._gate = _ReadWriteGate()

        self._record(EventKind.DISTRIBUTOR_CREATED, admin, {
            "address": address,
            "mutable": self._ledger.mutable,
            "shares": self._ledger.to_list(),
        })

    # ---- Read accessors ----

    @property
    def admin(self) -> str:
        return self._admin

    @property
    def address(self) -> str:
        return self._address

    @property
    def config(self) -> SplitterConfig:
        return self._config

    @property
    def mutable(self) -> bool:
        return self._ledger.mutable

    @property
    def ledger(self) -> ShareLedger:
        return self._ledger

    @property
    def registry(self) -> ModuleRegistry:
        return self._registry

    @property
    def accumulator(self) -> RewardAccumulator:
        return self._accumulator

    def shares(self) -> tuple:
        return self._ledger.shares()

    def share(self, recipient: str) -> Share:
        return self._ledger.share(recipient)

    def shares_page(self, start_after: Optional[str] = None, limit: Optional[int] = None) -> List[Share]:
        return self._ledger.page(
            start_after,
            self._config.default_page_limit if limit is None else limit,
            self._config.max_page_limit,
        )

    def balance(self, denomination: Optional[str] = None) -> int:
        return self._accumulator.balance(denomination or self._config.denomination)

    def status(self) -> Dict[str, Any]:
        """JSON-ready summary of the distributor."""
        return {
            "admin": self._admin,
            "address": self._address,
            "mutable": self._ledger.mutable,
            "shares": self._ledger.to_list(),
            "modules": [
                {
                    "code_ref": str(m.code_ref),
                    "address": m.address,
                    "rewards_address": m.rewards_address,
                }
                for m in self._registry.modules()
            ],
            "balances": self._accumulator.balances(),
        }

    # ---- Share ledger ----

    async def update_shares(self, sender: str, new_shares: Iterable[ShareLike]) -> tuple:
        """Replace the share set. Admin only; fails on a locked ledger."""
        self._require_admin(sender, "update shares")
        async with self._lock:
            async with self._gate.exclusive():
                self._ledger.update(new_shares)
        logger.info(f"Shares updated: {len(self._ledger)} recipient(s)")
        self._record(EventKind.SHARES_UPDATED, sender, {"shares": self._ledger.to_list()})
        return self._ledger.shares()

    async def lock(self, sender: str) -> None:
        """Make the distributor immutable for the rest of its life."""
        self._require_admin(sender, "lock the distributor")
        async with self._lock:
            self._ledger.lock()
        logger.info(f"Distributor {self._address} locked")
        self._record(EventKind.LEDGER_LOCKED, sender, {})

    # ---- Modules ----

    async def register_module(self, sender: str, code_ref: Any, init_payload: Any) -> Module:
        """Activate a module and point its rewards at this distributor.

        Admin only, mutable distributors only. If the boundary supports
        reward metadata, the module's owner and rewards address are set
        to the distributor; a rejected metadata update is logged and
        leaves ``rewards_address`` unset, since the module itself is
        already live on the chain.
        """
        self._require_admin(sender, "register modules")
        async with self._lock:
            self._require_mutable("register modules")
            module = await self._registry.register(code_ref, init_payload)
            if isinstance(self._boundary, RewardsBoundary):
                try:
                    await self._set_reward_metadata(module.address, self._address, self._address)
                except (BoundaryUnavailable, OperationRejected) as exc:
                    logger.warning(
                        f"Module {module.address} registered without reward metadata: {exc}"
                    )
                else:
                    module = self._registry.set_rewards_address(module.address, self._address)
        self._record(EventKind.MODULE_REGISTERED, sender, {
            "code_ref": str(module.code_ref),
            "address": module.address,
            "rewards_address": module.rewards_address,
        })
        return module

    async def update_module_reward_metadata(
        self,
        sender: str,
        handle: ModuleRef,
        owner_address: Optional[str] = None,
        rewards_address: Optional[str] = None,
    ) -> Module:
        """Re-point a registered module's reward owner and payee.

        Raises BoundaryUnavailable on timeout, OperationRejected if the
        boundary refuses the update.
        """
        self._require_admin(sender, "update module reward metadata")
        if not isinstance(self._boundary, RewardsBoundary):
            raise TypeError("Execution boundary does not support reward metadata")
        async with self._lock:
            self._require_mutable("update module reward metadata")
            module = self._registry.get(handle)
            await self._set_reward_metadata(module.address, owner_address, rewards_address)
            if rewards_address is not None:
                module = self._registry.set_rewards_address(module.address, rewards_address)
        self._record(EventKind.MODULE_METADATA_UPDATED, sender, {
            "address": module.address,
            "owner_address": owner_address,
            "rewards_address": rewards_address,
        })
        return module

    async def invoke_module(self, handle: ModuleRef, action: Any, index: int = 0) -> InvocationResult:
        """Invoke a registered module. Open to any caller."""
        async with self._gate.shared():
            return await self._registry.invoke(handle, action, index=index)

    async def invoke_module_many(
        self,
        handle: ModuleRef,
        actions: Iterable[Any],
    ) -> AsyncIterator[InvocationResult]:
        """Independent invocations, one result per action, lazily."""
        for index, action in enumerate(actions):
            yield await self.invoke_module(handle, action, index=index)

    # ---- Rewards ----

    async def credit_rewards(self, denomination: str, amount: int, source: str = "external") -> int:
        """Record an observed inflow. Returns the new balance."""
        async with self._lock:
            new_balance = self._accumulator.credit(denomination, amount)
        self._record(EventKind.REWARDS_CREDITED, source, {
            "denomination": denomination,
            "amount": amount,
            "balance": new_balance,
        })
        return new_balance

    async def withdraw_rewards(self, sender: str) -> Dict[str, int]:
        """Withdraw rewards accrued to this distributor and credit them.

        Admin only. Requires a boundary with reward hooks. Nothing is
        credited unless every returned amount is valid.

        Raises BoundaryUnavailable if the boundary does not answer in
        time and OperationRejected if it refuses the withdrawal.
        """
        self._require_admin(sender, "withdraw rewards")
        if not isinstance(self._boundary, RewardsBoundary):
            raise TypeError("Execution boundary does not support reward withdrawal")
        async with self._lock:
            try:
                with trio.fail_after(self._config.boundary_timeout):
                    withdrawn = await self._boundary.withdraw_rewards(self._address)
            except trio.TooSlowError as exc:
                raise BoundaryUnavailable(
                    "withdraw_rewards", {"address": self._address, "reason": "timeout"},
                ) from exc
            except Exception as exc:
                raise OperationRejected(
                    "withdraw_rewards", str(exc), {"address": self._address},
                ) from exc
            withdrawn = dict(withdrawn or {})
            for amount in withdrawn.values():
                check_amount(amount)
            for denomination, amount in withdrawn.items():
                self._accumulator.credit(denomination, amount)
        logger.info(f"Withdrew rewards for {self._address}: {withdrawn}")
        self._record(EventKind.REWARDS_WITHDRAWN, sender, {"withdrawn": withdrawn})
        return withdrawn

    # ---- Settlement ----

    async def settle(self, sender: str, denomination: Optional[str] = None) -> SettlementRecord:
        """Distribute the accumulated balance of ``denomination``.

        Admin only. Holds the distributor for the whole attempt; holds
        off share updates and module invocations while the snapshot is
        taken. Raises SettlementFailed or BoundaryUnavailable without
        debiting anything.
        """
        self._require_admin(sender, "settle rewards")
        denomination = denomination or self._config.denomination
        async with self._lock:
            async with self._gate.exclusive():
                record = self._engine.snapshot(self._ledger, self._accumulator, denomination)
            try:
                record = await self._engine.execute(record, self._accumulator)
            except (SettlementFailed, BoundaryUnavailable):
                self._record(EventKind.SETTLEMENT_FAILED, sender, record.to_dict())
                raise
        self._record(EventKind.SETTLEMENT_CONFIRMED, sender, record.to_dict())
        return record

    # ---- Internals ----

    def _require_admin(self, sender: str, operation: str) -> None:
        if sender != self._admin:
            raise Unauthorized(sender, operation)

    def _require_mutable(self, operation: str) -> None:
        if not self._ledger.mutable:
            raise ImmutableLedger(f"Distributor is immutable; cannot {operation}")

    async def _set_reward_metadata(
        self,
        address: str,
        owner_address: Optional[str],
        rewards_address: Optional[str],
    ) -> None:
        try:
            with trio.fail_after(self._config.boundary_timeout):
                await self._boundary.update_reward_metadata(
                    address, owner_address, rewards_address,
                )
        except trio.TooSlowError as exc:
            raise BoundaryUnavailable(
                "update_reward_metadata", {"address": address, "reason": "timeout"},
            ) from exc
        except SplitterError:
            raise
        except Exception as exc:
            raise OperationRejected(
                "update_reward_metadata", str(exc), {"address": address},
            ) from exc

    def _record(self, kind: EventKind, actor_id: str, payload: Dict[str, Any]) -> None:
        if self._event_log is None:
            return
        self._event_log.append(EventRecord.create(kind, actor_id, payload))

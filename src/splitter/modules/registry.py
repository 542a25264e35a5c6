"""Module registry — auxiliary modules registered with a distributor.

A module is externally defined code that the distributor activates
through the execution boundary and may invoke any number of times to
generate reward-producing activity. What a module does is opaque: the
registry only records that it exists and reports, per invocation,
whether the boundary accepted the call.

Modules are never deleted. A failed activation leaves the registry
unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Union

import trio

from splitter.boundary import ExecutionBoundary
from splitter.errors import ActivationFailed, BoundaryUnavailable, UnknownModule
from splitter.models.distribution import InvocationResult, Module

logger = logging.getLogger("splitter.modules.registry")

ModuleRef = Union[Module, str]


class ModuleRegistry:
    """Registered modules, keyed by their activated address.

    Usage:
        registry = ModuleRegistry(boundary)
        module = await registry.register(7, {"count": 0})
        result = await registry.invoke(module, {"increment": {}})
        async for result in registry.invoke_many(module, [{"increment": {}}] * 5):
            ...
    """

    def __init__(self, boundary: ExecutionBoundary, timeout: float = 30.0) -> None:
        self._boundary = boundary
        self._timeout = timeout
        self._modules: Dict[str, Module] = {}

    async def register(
        self,
        code_ref: Any,
        init_payload: Any,
        now: Optional[datetime] = None,
    ) -> Module:
        """Activate a module through the boundary and record it.

        Raises ActivationFailed if the boundary rejects the activation
        or returns an address that is already registered, and
        BoundaryUnavailable if it does not answer in time.
        """
        try:
            with trio.fail_after(self._timeout):
                address = await self._boundary.activate_module(code_ref, init_payload)
        except trio.TooSlowError as exc:
            logger.warning(f"Activation of {code_ref!r} timed out after {self._timeout}s")
            raise BoundaryUnavailable(
                "activate_module", {"code_ref": code_ref},
            ) from exc
        except Exception as exc:
            logger.warning(f"Activation of {code_ref!r} rejected: {exc}")
            raise ActivationFailed(code_ref, str(exc)) from exc

        if not address:
            raise ActivationFailed(code_ref, "boundary returned no address")
        if address in self._modules:
            raise ActivationFailed(code_ref, f"address {address} is already registered")

        module = Module(
            code_ref=code_ref,
            init_payload=init_payload,
            address=address,
            registered_utc=now or datetime.now(timezone.utc),
        )
        self._modules[address] = module
        logger.info(f"Registered module {code_ref!r} at {address}")
        return module

    def set_rewards_address(self, address: str, rewards_address: Optional[str]) -> Module:
        """Record where a module's rewards are paid."""
        module = replace(self.get(address), rewards_address=rewards_address)
        self._modules[address] = module
        return module

    async def invoke(
        self,
        handle: ModuleRef,
        action: Any,
        index: int = 0,
    ) -> InvocationResult:
        """Forward an opaque action to a registered module.

        Raises UnknownModule for unregistered handles. Boundary
        rejections and timeouts are reported in the result, not raised.
        """
        module = self.get(handle)
        try:
            with trio.fail_after(self._timeout):
                output = await self._boundary.invoke_module(module.address, action)
        except trio.TooSlowError:
            logger.warning(f"Invocation #{index} of {module.address} timed out")
            return InvocationResult(
                address=module.address,
                action=action,
                success=False,
                error=f"timed out after {self._timeout}s",
                index=index,
            )
        except Exception as exc:
            logger.warning(f"Invocation #{index} of {module.address} failed: {exc}")
            return InvocationResult(
                address=module.address,
                action=action,
                success=False,
                error=str(exc),
                index=index,
            )
        return InvocationResult(
            address=module.address,
            action=action,
            success=True,
            output=output,
            index=index,
        )

    async def invoke_many(
        self,
        handle: ModuleRef,
        actions: Iterable[Any],
    ) -> AsyncIterator[InvocationResult]:
        """Invoke a module once per action, yielding each result as it lands.

        Invocations are independent: a failure never stops the rest.
        """
        for index, action in enumerate(actions):
            yield await self.invoke(handle, action, index=index)

    def get(self, handle: ModuleRef) -> Module:
        address = handle.address if isinstance(handle, Module) else handle
        module = self._modules.get(address)
        if module is None:
            raise UnknownModule(f"Unknown module: {address}")
        return module

    def modules(self) -> List[Module]:
        """Registered modules in registration order."""
        return list(self._modules.values())

    def __len__(self) -> int:
        return len(self._modules)

    def __contains__(self, handle: object) -> bool:
        address = handle.address if isinstance(handle, Module) else handle
        return address in self._modules

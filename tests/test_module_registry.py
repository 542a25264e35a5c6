"""Tests for the module registry — activation and independent invocations."""

import pytest
import trio
import trio.testing

from splitter.boundary import InMemoryBoundary
from splitter.errors import ActivationFailed, BoundaryUnavailable, UnknownModule
from splitter.models.distribution import Module
from splitter.modules.registry import ModuleRegistry


def _registry(**kwargs) -> tuple:
    boundary = InMemoryBoundary(**kwargs)
    return ModuleRegistry(boundary, timeout=5), boundary


async def _collect(registry: ModuleRegistry, handle, actions) -> list:
    return [result async for result in registry.invoke_many(handle, actions)]


class TestRegister:
    def test_register_records_module(self) -> None:
        registry, _ = _registry()
        module = trio.run(registry.register, 7, {"count": 0})
        assert isinstance(module, Module)
        assert module.code_ref == 7
        assert module.address.startswith("archway1")
        assert module.registered_utc is not None
        assert len(registry) == 1
        assert module in registry
        assert module.address in registry

    def test_rejected_activation_leaves_registry_unchanged(self) -> None:
        registry, boundary = _registry()
        boundary.fail_next("activate_module")
        with pytest.raises(ActivationFailed) as exc_info:
            trio.run(registry.register, 7, {})
        assert exc_info.value.code_ref == 7
        assert len(registry) == 0

    def test_unknown_code_ref_rejected(self) -> None:
        registry, _ = _registry(accepted_code_refs={1, 2})
        with pytest.raises(ActivationFailed, match="No code stored"):
            trio.run(registry.register, 9, {})
        assert registry.modules() == []

    def test_address_collision_rejected(self) -> None:
        registry, _ = _registry()
        trio.run(registry.register, 7, {"count": 0})
        with pytest.raises(ActivationFailed, match="already in use"):
            trio.run(registry.register, 7, {"count": 0})
        assert len(registry) == 1

    def test_same_code_with_different_payload_is_distinct(self) -> None:
        registry, _ = _registry()
        first = trio.run(registry.register, 7, {"count": 0})
        second = trio.run(registry.register, 7, {"count": 1})
        assert first.address != second.address
        assert [m.address for m in registry.modules()] == [first.address, second.address]

    def test_activation_timeout(self) -> None:
        registry, boundary = _registry()
        boundary.stall_next("activate_module", seconds=60)
        with pytest.raises(BoundaryUnavailable) as exc_info:
            trio.run(
                registry.register, 7, {},
                clock=trio.testing.MockClock(autojump_threshold=0),
            )
        assert exc_info.value.context == {"code_ref": 7}
        assert len(registry) == 0

    def test_set_rewards_address(self) -> None:
        registry, _ = _registry()
        module = trio.run(registry.register, 7, {})
        updated = registry.set_rewards_address(module.address, "splitter")
        assert updated.rewards_address == "splitter"
        assert registry.get(module.address).rewards_address == "splitter"


class TestInvoke:
    def test_successful_invocation(self) -> None:
        registry, _ = _registry()
        module = trio.run(registry.register, 7, {})
        result = trio.run(registry.invoke, module, {"increment": {}})
        assert result.success is True
        assert result.error is None
        assert result.output == {"address": module.address, "action": {"increment": {}}}

    def test_invoke_by_address(self) -> None:
        registry, _ = _registry()
        module = trio.run(registry.register, 7, {})
        result = trio.run(registry.invoke, module.address, {"reset": {}})
        assert result.success is True

    def test_unknown_module(self) -> None:
        registry, _ = _registry()
        with pytest.raises(UnknownModule):
            trio.run(registry.invoke, "archway1nothere", {})

    def test_rejection_is_reported_not_raised(self) -> None:
        registry, boundary = _registry()
        module = trio.run(registry.register, 7, {})
        boundary.fail_next("invoke_module")
        result = trio.run(registry.invoke, module, {"increment": {}})
        assert result.success is False
        assert "rejected" in result.error

    def test_timeout_is_reported_as_failure(self) -> None:
        registry, boundary = _registry()
        module = trio.run(registry.register, 7, {})
        boundary.stall_next("invoke_module", seconds=60)
        result = trio.run(
            registry.invoke, module, {"increment": {}},
            clock=trio.testing.MockClock(autojump_threshold=0),
        )
        assert result.success is False
        assert "timed out" in result.error

    def test_third_of_five_fails_rest_still_run(self) -> None:
        registry, boundary = _registry()
        module = trio.run(registry.register, 7, {})
        boundary.pass_next("invoke_module")
        boundary.pass_next("invoke_module")
        boundary.fail_next("invoke_module")

        results = trio.run(_collect, registry, module, [{"increment": {}}] * 5)

        assert [r.success for r in results] == [True, True, False, True, True]
        assert [r.index for r in results] == [0, 1, 2, 3, 4]
        assert boundary.call_count("invoke_module") == 5

    def test_invocations_accrue_rewards(self) -> None:
        registry, boundary = _registry(reward_per_invocation=20)
        module = trio.run(registry.register, 7, {})
        trio.run(_collect, registry, module, [{"increment": {}}] * 3)
        assert boundary.pending_rewards(module.address) == {"aconst": 60}

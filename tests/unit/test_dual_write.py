"""
Unit tests for DualWriteController and DualWriteInterceptor.

Tests cover:
- Toggle semantics and read-back confirmation
- Serialized toggles
- Interceptor write semantics (source authoritative, target best-effort)
- Failure history tracking
"""

import asyncio
from typing import Any
from unittest.mock import AsyncMock

import pytest

from cutover.dual_write import DUAL_WRITE_FLAG, DualWriteController, DualWriteInterceptor
from cutover.exceptions import DualWriteError
from cutover.repositories import InMemoryConfigRegistry

# =============================================================================
# Test Fixtures
# =============================================================================


class StuckRegistry(InMemoryConfigRegistry):
    """Registry that accepts writes but never changes the stored value."""

    async def set(self, key: str, value: Any) -> None:
        self.writes.append((key, value))


@pytest.fixture
def registry() -> InMemoryConfigRegistry:
    return InMemoryConfigRegistry({DUAL_WRITE_FLAG: False})


@pytest.fixture
def controller(registry: InMemoryConfigRegistry) -> DualWriteController:
    return DualWriteController(registry, enable_tracing=False)


# =============================================================================
# DualWriteController
# =============================================================================


class TestDualWriteController:
    """Tests for toggling the flag."""

    async def test_enable_and_disable(
        self, controller: DualWriteController, registry: InMemoryConfigRegistry
    ) -> None:
        await controller.enable()
        assert (await controller.status()).active is True
        assert registry.values()[DUAL_WRITE_FLAG] is True

        await controller.disable()
        assert (await controller.status()).active is False

    async def test_status_reports_flag_key(self, controller: DualWriteController) -> None:
        status = await controller.status()
        assert status.flag_key == DUAL_WRITE_FLAG

    async def test_non_boolean_flag_is_inactive(self) -> None:
        controller = DualWriteController(
            InMemoryConfigRegistry({DUAL_WRITE_FLAG: "yes"}), enable_tracing=False
        )
        assert (await controller.status()).active is False

    async def test_custom_flag_key(self) -> None:
        registry = InMemoryConfigRegistry()
        controller = DualWriteController(registry, flag_key="feature.dw", enable_tracing=False)

        await controller.enable()

        assert registry.values() == {"feature.dw": True}

    async def test_unconfirmed_toggle_raises(self) -> None:
        controller = DualWriteController(
            StuckRegistry({DUAL_WRITE_FLAG: False}), enable_tracing=False
        )

        with pytest.raises(DualWriteError) as exc_info:
            await controller.enable()

        assert exc_info.value.expected is True
        assert exc_info.value.observed is False

    async def test_concurrent_toggles_are_serialized(
        self, controller: DualWriteController, registry: InMemoryConfigRegistry
    ) -> None:
        await asyncio.gather(*(controller.set_active(i % 2 == 0) for i in range(10)))

        # Each toggle writes once and reads back its own value
        assert len(registry.writes) == 10
        assert registry.values()[DUAL_WRITE_FLAG] in (True, False)


# =============================================================================
# DualWriteInterceptor
# =============================================================================


class TestDualWriteInterceptor:
    """Tests for the application write path."""

    @pytest.fixture
    def source(self) -> AsyncMock:
        store = AsyncMock()
        store.write = AsyncMock()
        return store

    @pytest.fixture
    def target(self) -> AsyncMock:
        store = AsyncMock()
        store.write = AsyncMock()
        return store

    async def test_inactive_writes_source_only(
        self, controller: DualWriteController, source: AsyncMock, target: AsyncMock
    ) -> None:
        interceptor = DualWriteInterceptor(controller, source, target)

        await interceptor.write("order:1", {"total": 10})

        source.write.assert_awaited_once_with("order:1", {"total": 10})
        target.write.assert_not_awaited()

    async def test_active_writes_both(
        self, controller: DualWriteController, source: AsyncMock, target: AsyncMock
    ) -> None:
        await controller.enable()
        interceptor = DualWriteInterceptor(controller, source, target)

        await interceptor.write("order:1", {"total": 10})

        source.write.assert_awaited_once()
        target.write.assert_awaited_once_with("order:1", {"total": 10})

    async def test_disable_stops_duplication(
        self, controller: DualWriteController, source: AsyncMock, target: AsyncMock
    ) -> None:
        await controller.enable()
        interceptor = DualWriteInterceptor(controller, source, target)
        await interceptor.write("a", 1)

        await controller.disable()
        await interceptor.write("b", 2)

        assert target.write.await_count == 1

    async def test_source_failure_propagates(
        self, controller: DualWriteController, source: AsyncMock, target: AsyncMock
    ) -> None:
        await controller.enable()
        source.write.side_effect = ConnectionError("source down")
        interceptor = DualWriteInterceptor(controller, source, target)

        with pytest.raises(ConnectionError):
            await interceptor.write("a", 1)
        target.write.assert_not_awaited()

    async def test_target_failure_is_tracked(
        self, controller: DualWriteController, source: AsyncMock, target: AsyncMock
    ) -> None:
        await controller.enable()
        target.write.side_effect = ConnectionError("target down")
        interceptor = DualWriteInterceptor(controller, source, target)

        await interceptor.write("a", 1)

        failures = interceptor.get_failed_writes()
        assert len(failures) == 1
        assert failures[0].key == "a"
        assert failures[0].error_message == "target down"

    async def test_failure_history_is_bounded(
        self, controller: DualWriteController, source: AsyncMock, target: AsyncMock
    ) -> None:
        await controller.enable()
        target.write.side_effect = ConnectionError("target down")
        interceptor = DualWriteInterceptor(controller, source, target, max_failure_history=3)

        for i in range(5):
            await interceptor.write(f"k{i}", i)

        assert [f.key for f in interceptor.get_failed_writes()] == ["k2", "k3", "k4"]
        assert interceptor.clear_failure_history() == 3
        assert interceptor.get_failed_writes() == []

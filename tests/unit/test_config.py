"""
Unit tests for HealthPollConfig and OrchestratorConfig.
"""

import dataclasses

import pytest

from cutover.config import HealthPollConfig, OrchestratorConfig


class TestHealthPollConfig:
    """Tests for HealthPollConfig."""

    def test_defaults(self) -> None:
        config = HealthPollConfig()
        assert config.max_attempts == 10
        assert config.interval_ms == 30_000
        assert config.max_consecutive_failures == 3
        assert config.probe_timeout_seconds == 10.0
        assert config.history_size == 10

    def test_is_frozen(self) -> None:
        config = HealthPollConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.max_attempts = 5  # type: ignore[misc]

    @pytest.mark.parametrize(
        "kwargs,field",
        [
            ({"max_attempts": 0}, "max_attempts"),
            ({"interval_ms": -1}, "interval_ms"),
            ({"max_consecutive_failures": 0}, "max_consecutive_failures"),
            ({"probe_timeout_seconds": 0}, "probe_timeout_seconds"),
            ({"history_size": 0}, "history_size"),
        ],
    )
    def test_rejects_invalid_values(self, kwargs: dict, field: str) -> None:
        with pytest.raises(ValueError, match=field):
            HealthPollConfig(**kwargs)

    def test_zero_interval_allowed(self) -> None:
        assert HealthPollConfig(interval_ms=0).interval_ms == 0

    def test_dict_round_trip(self) -> None:
        config = HealthPollConfig(max_attempts=4, interval_ms=500)
        assert HealthPollConfig.from_dict(config.to_dict()) == config

    def test_from_dict_fills_defaults(self) -> None:
        assert HealthPollConfig.from_dict({}) == HealthPollConfig()


class TestOrchestratorConfig:
    """Tests for OrchestratorConfig."""

    def test_defaults(self) -> None:
        config = OrchestratorConfig()
        assert config.action_timeout_seconds == 300.0
        assert config.rollback_enabled is True
        assert config.verification == HealthPollConfig()

    def test_rejects_non_positive_timeouts(self) -> None:
        with pytest.raises(ValueError, match="action_timeout_seconds"):
            OrchestratorConfig(action_timeout_seconds=0)
        with pytest.raises(ValueError, match="notification_timeout_seconds"):
            OrchestratorConfig(notification_timeout_seconds=-1)

    def test_to_dict_nests_verification(self) -> None:
        config = OrchestratorConfig(verification=HealthPollConfig(max_attempts=3))
        data = config.to_dict()
        assert data["verification"]["max_attempts"] == 3

    def test_from_dict(self) -> None:
        config = OrchestratorConfig.from_dict(
            {"rollback_enabled": False, "verification": {"interval_ms": 0}}
        )
        assert config.rollback_enabled is False
        assert config.verification.interval_ms == 0
        assert config.action_timeout_seconds == 300.0

"""
Component configuration for the cutover orchestrator.

Both configs are immutable so a running orchestrator cannot be retuned
halfway through a run.

Example:
    >>> config = OrchestratorConfig(
    ...     action_timeout_seconds=120,
    ...     verification=HealthPollConfig(max_attempts=5, interval_ms=10_000),
    ... )
    >>> config.verification.max_consecutive_failures
    3
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class HealthPollConfig:
    """
    Tuning for the health verification poll loop.

    Attributes:
        max_attempts: Rounds of ``check_all`` before concluding (default 10).
        interval_ms: Delay between rounds in milliseconds (default 30000).
        max_consecutive_failures: Failing rounds in a row that end the poll
            as unstable (default 3).
        probe_timeout_seconds: Timeout applied to every individual probe
            (default 10.0).
        history_size: Snapshots kept in the bounded history window
            (default 10).
    """

    max_attempts: int = 10
    interval_ms: int = 30_000
    max_consecutive_failures: int = 3
    probe_timeout_seconds: float = 10.0
    history_size: int = 10

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")

        if self.interval_ms < 0:
            raise ValueError(f"interval_ms must be >= 0, got {self.interval_ms}")

        if self.max_consecutive_failures < 1:
            raise ValueError(
                f"max_consecutive_failures must be >= 1, got {self.max_consecutive_failures}"
            )

        if self.probe_timeout_seconds <= 0:
            raise ValueError(
                f"probe_timeout_seconds must be > 0, got {self.probe_timeout_seconds}"
            )

        if self.history_size < 1:
            raise ValueError(f"history_size must be >= 1, got {self.history_size}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_attempts": self.max_attempts,
            "interval_ms": self.interval_ms,
            "max_consecutive_failures": self.max_consecutive_failures,
            "probe_timeout_seconds": self.probe_timeout_seconds,
            "history_size": self.history_size,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HealthPollConfig:
        """
        Create from dictionary.

        Args:
            data: Dictionary containing configuration values.

        Returns:
            HealthPollConfig instance.
        """
        return cls(
            max_attempts=data.get("max_attempts", 10),
            interval_ms=data.get("interval_ms", 30_000),
            max_consecutive_failures=data.get("max_consecutive_failures", 3),
            probe_timeout_seconds=data.get("probe_timeout_seconds", 10.0),
            history_size=data.get("history_size", 10),
        )


@dataclass(frozen=True)
class OrchestratorConfig:
    """
    Tuning for the orchestrator.

    Attributes:
        action_timeout_seconds: Timeout for every mutating call (default 300).
        notification_timeout_seconds: Upper bound on the reporting broadcast
            (default 10).
        rollback_enabled: Roll back automatically on failure (default True).
        verification: Poll settings for the final stability pass.
    """

    action_timeout_seconds: float = 300.0
    notification_timeout_seconds: float = 10.0
    rollback_enabled: bool = True
    verification: HealthPollConfig = field(default_factory=HealthPollConfig)

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.action_timeout_seconds <= 0:
            raise ValueError(
                f"action_timeout_seconds must be > 0, got {self.action_timeout_seconds}"
            )

        if self.notification_timeout_seconds <= 0:
            raise ValueError(
                "notification_timeout_seconds must be > 0, "
                f"got {self.notification_timeout_seconds}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "action_timeout_seconds": self.action_timeout_seconds,
            "notification_timeout_seconds": self.notification_timeout_seconds,
            "rollback_enabled": self.rollback_enabled,
            "verification": self.verification.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OrchestratorConfig:
        return cls(
            action_timeout_seconds=data.get("action_timeout_seconds", 300.0),
            notification_timeout_seconds=data.get("notification_timeout_seconds", 10.0),
            rollback_enabled=data.get("rollback_enabled", True),
            verification=HealthPollConfig.from_dict(data.get("verification", {})),
        )


__all__ = [
    "HealthPollConfig",
    "OrchestratorConfig",
]

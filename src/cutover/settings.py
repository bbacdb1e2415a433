"""Process-level settings for the cutover CLI using pydantic-settings.

Every setting can be overridden by an environment variable with the
``CUTOVER_`` prefix. Dict and list settings are read as JSON, for example::

    CUTOVER_TARGET_CONFIG='{"cache.url": "redis://old-cache:6379/0"}'
    CUTOVER_COMMANDS='{"cache": {"stop-migration-process": ["cache-ctl", "stop", "{process}"]}}'

Command templates are argv lists keyed by subsystem value and then by
action value. Placeholders are filled from the step parameters.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from cutover.config import HealthPollConfig, OrchestratorConfig
from cutover.exceptions import ValidationError
from cutover.models import Subsystem


class CutoverSettings(BaseSettings):
    """Configuration for a cutover CLI invocation."""

    model_config = SettingsConfigDict(env_prefix="CUTOVER_")

    # =========================================================================
    # Run identity and storage
    # =========================================================================

    environment: str = Field(
        default="production",
        description="Environment tag recorded on runs and used for the lease",
    )

    artifact_dir: str = Field(
        default="./rollback-states",
        description="Directory run artifacts are written to",
    )

    registry_url: str = Field(
        default="sqlite+aiosqlite:///cutover.db",
        description=(
            "SQLAlchemy async URL of the database holding the configuration "
            "registry and environment leases"
        ),
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level for the CLI",
    )

    # =========================================================================
    # Health probes
    # =========================================================================

    source_database_url: str | None = Field(
        default=None,
        description="SQLAlchemy async URL of the source database",
    )

    target_database_url: str | None = Field(
        default=None,
        description="SQLAlchemy async URL of the replacement database",
    )

    compare_tables: list[str] = Field(
        default_factory=list,
        description="Tables whose row counts must match between databases",
    )

    source_redis_url: str | None = Field(
        default=None,
        description="Redis URL of the source cache",
    )

    target_redis_url: str | None = Field(
        default=None,
        description="Redis URL of the replacement cache",
    )

    max_key_drift: int = Field(
        default=0,
        description="Allowed key-count difference between caches",
    )

    health_url: str | None = Field(
        default=None,
        description="Application health endpoint",
    )

    slow_threshold_ms: float = Field(
        default=1000.0,
        description="Health responses slower than this are reported as warn",
    )

    routing_hostname: str | None = Field(
        default=None,
        description="Public hostname that must resolve to routing.primary_target",
    )

    verify_config_keys: list[str] = Field(
        default_factory=list,
        description="Registry keys that must equal their target_config value",
    )

    # =========================================================================
    # Subsystem adapters
    # =========================================================================

    commands: dict[str, dict[str, list[str]]] = Field(
        default_factory=dict,
        description="Forward command templates: subsystem -> action -> argv",
    )

    rollback_commands: dict[str, dict[str, list[str]]] = Field(
        default_factory=dict,
        description="Rollback command templates: subsystem -> action -> argv",
    )

    command_env: dict[str, str] = Field(
        default_factory=dict,
        description="Extra environment variables for adapter commands",
    )

    target_config: dict[str, Any] = Field(
        default_factory=dict,
        description="Values written by configuration steps, keyed by registry key",
    )

    # =========================================================================
    # Timeouts and verification
    # =========================================================================

    action_timeout_seconds: float = Field(
        default=300.0,
        description="Timeout for every mutating call",
    )

    notification_timeout_seconds: float = Field(
        default=10.0,
        description="Upper bound on delivering the run summary",
    )

    rollback_enabled: bool = Field(
        default=True,
        description="Roll back automatically when a run fails",
    )

    poll_max_attempts: int = Field(default=10)
    poll_interval_ms: int = Field(default=30_000)
    poll_max_consecutive_failures: int = Field(default=3)
    probe_timeout_seconds: float = Field(default=10.0)

    # =========================================================================
    # Reporting
    # =========================================================================

    report_url: str | None = Field(
        default=None,
        description="Webhook the run summary is POSTed to",
    )

    def adapter_subsystems(self) -> set[Subsystem]:
        """Subsystems with at least one forward or rollback command."""
        names = set(self.commands) | set(self.rollback_commands)
        return {Subsystem(name) for name in names}

    def expected_config(self) -> dict[str, Any]:
        """Target values for ``verify_config_keys``."""
        missing = [key for key in self.verify_config_keys if key not in self.target_config]
        if missing:
            raise ValidationError(
                f"verify_config_keys not in target_config: {', '.join(missing)}",
                environment=self.environment,
            )
        return {key: self.target_config[key] for key in self.verify_config_keys}

    def orchestrator_config(self) -> OrchestratorConfig:
        return OrchestratorConfig(
            action_timeout_seconds=self.action_timeout_seconds,
            notification_timeout_seconds=self.notification_timeout_seconds,
            rollback_enabled=self.rollback_enabled,
            verification=HealthPollConfig(
                max_attempts=self.poll_max_attempts,
                interval_ms=self.poll_interval_ms,
                max_consecutive_failures=self.poll_max_consecutive_failures,
                probe_timeout_seconds=self.probe_timeout_seconds,
            ),
        )


__all__ = ["CutoverSettings"]

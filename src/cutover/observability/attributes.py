"""
Standard span and metric attributes for cutover.

This module defines attribute constants used across all cutover components
for consistent span naming and metrics labeling. These follow OpenTelemetry
semantic conventions where applicable.

Example:
    >>> from cutover.observability.attributes import (
    ...     ATTR_RUN_ID,
    ...     ATTR_STEP_NAME,
    ... )
    >>>
    >>> with tracer.span(
    ...     "cutover.orchestrator.execute_step",
    ...     {
    ...         ATTR_RUN_ID: run.id,
    ...         ATTR_STEP_NAME: step.name,
    ...     },
    ... ):
    ...     pass
"""

# =============================================================================
# Run Attributes
# =============================================================================

ATTR_RUN_ID = "cutover.run.id"
"""Unique identifier for the migration run (string)."""

ATTR_PHASE = "cutover.run.phase"
"""Phase selector of the run (e.g., 'cache', 'full')."""

ATTR_ENVIRONMENT = "cutover.run.environment"
"""Environment tag the run targets (e.g., 'production')."""

ATTR_RUN_STATUS = "cutover.run.status"
"""Overall run status (string)."""

ATTR_OUTCOME = "cutover.run.outcome"
"""Terminal outcome classification of the run (string)."""

ATTR_DRY_RUN = "cutover.run.dry_run"
"""Whether the run was a dry run (boolean)."""

# =============================================================================
# Step Attributes
# =============================================================================

ATTR_STEP_NAME = "cutover.step.name"
"""Name of the step being executed (string)."""

ATTR_STEP_INDEX = "cutover.step.index"
"""Zero-based position of the step within its phase (integer)."""

ATTR_STEP_ACTION = "cutover.step.action"
"""Action performed by the step (e.g., 'update-routing')."""

# =============================================================================
# Subsystem and Health Attributes
# =============================================================================

ATTR_SUBSYSTEM = "cutover.subsystem"
"""Subsystem a probe or mutation targets (e.g., 'database')."""

ATTR_HEALTH_ATTEMPT = "cutover.health.attempt"
"""One-based attempt number inside a stability poll (integer)."""

ATTR_HEALTH_STABLE = "cutover.health.stable"
"""Whether a stability poll concluded stable (boolean)."""

# =============================================================================
# Rollback Attributes
# =============================================================================

ATTR_ROLLBACK_MUTATIONS = "cutover.rollback.mutations"
"""Number of mutating calls issued by a rollback (integer)."""

ATTR_ROLLBACK_FAILED_SUBSYSTEMS = "cutover.rollback.failed_subsystems"
"""Number of subsystems that could not be reverted (integer)."""

# =============================================================================
# Database Attributes (OpenTelemetry Semantic Conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (e.g., 'sqlite', 'postgresql')."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation type (e.g., 'INSERT', 'SELECT')."""

__all__ = [
    "ATTR_RUN_ID",
    "ATTR_PHASE",
    "ATTR_ENVIRONMENT",
    "ATTR_RUN_STATUS",
    "ATTR_OUTCOME",
    "ATTR_DRY_RUN",
    "ATTR_STEP_NAME",
    "ATTR_STEP_INDEX",
    "ATTR_STEP_ACTION",
    "ATTR_SUBSYSTEM",
    "ATTR_HEALTH_ATTEMPT",
    "ATTR_HEALTH_STABLE",
    "ATTR_ROLLBACK_MUTATIONS",
    "ATTR_ROLLBACK_FAILED_SUBSYSTEMS",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_OPERATION",
]

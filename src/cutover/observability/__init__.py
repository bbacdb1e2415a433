"""
Observability utilities for cutover.

Provides the composition-based tracer used by every component and the
standard span attribute names.

Example:
    >>> from cutover.observability import create_tracer
    >>>
    >>> class MyAdapter:
    ...     def __init__(self, enable_tracing: bool = True):
    ...         self._tracer = create_tracer(__name__, enable_tracing)
    ...         self._enable_tracing = self._tracer.enabled
"""

from cutover.observability.attributes import (
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_DRY_RUN,
    ATTR_ENVIRONMENT,
    ATTR_HEALTH_ATTEMPT,
    ATTR_HEALTH_STABLE,
    ATTR_OUTCOME,
    ATTR_PHASE,
    ATTR_ROLLBACK_FAILED_SUBSYSTEMS,
    ATTR_ROLLBACK_MUTATIONS,
    ATTR_RUN_ID,
    ATTR_RUN_STATUS,
    ATTR_STEP_ACTION,
    ATTR_STEP_INDEX,
    ATTR_STEP_NAME,
    ATTR_SUBSYSTEM,
)
from cutover.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)

__all__ = [
    # Tracer
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    # Attributes
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

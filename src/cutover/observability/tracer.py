"""
Tracing seam shared by the orchestrator, verifier, rollback coordinator,
repositories and adapters.

Every component takes an optional ``tracer`` and falls back to
``create_tracer(__name__, enable_tracing)``. Spans are opened with
``tracer.span(name, attributes)`` and never touch the OpenTelemetry API
directly, so a run can be traced in production and asserted on in tests
with MockTracer.

Example:
    >>> from cutover.observability import ATTR_RUN_ID, create_tracer
    >>>
    >>> tracer = create_tracer(__name__)
    >>> with tracer.span("cutover.snapshot.capture", {ATTR_RUN_ID: str(run.id)}):
    ...     original = await registry.get("cache.url")
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterator, Mapping
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from opentelemetry import trace

if TYPE_CHECKING:
    from opentelemetry.trace import Span

SpanAttributes = Mapping[str, Any]


@runtime_checkable
class Tracer(Protocol):
    """
    Anything that can open a named span around a block of work.

    ``enabled`` tells callers whether computing expensive attributes is
    worth it; a disabled tracer discards them anyway.
    """

    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> AbstractContextManager[Span | None]: ...

    @property
    def enabled(self) -> bool: ...


class NullTracer:
    """Tracer used when tracing is switched off; spans yield None."""

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> Iterator[None]:
        yield None

    @property
    def enabled(self) -> bool:
        return False


class OpenTelemetryTracer:
    """
    Tracer backed by the OpenTelemetry API.

    With no SDK installed the API hands out non-recording spans, so the
    CLI enables this tracer by default. Attributes whose value is None are
    dropped because OpenTelemetry rejects them.

    Args:
        tracer_name: Instrumentation scope, usually the module ``__name__``
    """

    def __init__(self, tracer_name: str) -> None:
        self._tracer = trace.get_tracer(tracer_name)

    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> AbstractContextManager[Span | None]:
        cleaned = {k: v for k, v in (attributes or {}).items() if v is not None}
        return self._tracer.start_as_current_span(name, attributes=cleaned)

    @property
    def enabled(self) -> bool:
        return True


class MockTracer:
    """
    In-memory tracer for tests.

    Each opened span is appended to ``spans`` as ``(name, attributes)`` in
    the order the spans were entered.

    Example:
        >>> tracer = MockTracer()
        >>> orchestrator = CutoverOrchestrator(..., tracer=tracer)
        >>> await orchestrator.execute("routing")
        >>> tracer.span_names.count("cutover.step")
        3
    """

    def __init__(self) -> None:
        self.spans: list[tuple[str, dict[str, Any] | None]] = []

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> Iterator[None]:
        self.spans.append((name, None if attributes is None else dict(attributes)))
        yield None

    @property
    def enabled(self) -> bool:
        return True

    @property
    def span_names(self) -> list[str]:
        return [name for name, _ in self.spans]

    def attributes_of(self, name: str) -> list[dict[str, Any]]:
        """Attributes of every recorded span called ``name``."""
        return [attrs or {} for span_name, attrs in self.spans if span_name == name]

    def clear(self) -> None:
        self.spans.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """
    Pick the tracer for a component.

    Returns an OpenTelemetryTracer scoped to ``name`` when tracing is
    enabled, otherwise a NullTracer.
    """
    if enable_tracing:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "SpanAttributes",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
]

"""
Protocols for the narrow interfaces the orchestrator calls on subsystems.

A subsystem is represented by two objects: a Probe that reports health and
a SubsystemAdapter that applies forward and rollback actions. Concrete
backing services (database engine, object store, DNS provider, container
platform) are reached only through these.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from cutover.models import ProbeResult, StepAction, Subsystem


@runtime_checkable
class Probe(Protocol):
    """
    Health probe for one subsystem.

    ``probe()`` is expected not to raise; the health verifier still treats
    an exception or a timeout as a ``fail`` result.
    """

    subsystem: Subsystem

    async def probe(self) -> ProbeResult:
        """
        Check the subsystem once.

        Returns:
            ProbeResult with pass, warn or fail and a detail string
        """
        ...


@runtime_checkable
class SubsystemAdapter(Protocol):
    """Applies step actions to one subsystem."""

    subsystem: Subsystem

    async def apply_forward(self, action: StepAction, params: dict[str, Any]) -> None:
        """
        Apply a forward action.

        Raises:
            SubsystemActionError: If the action did not succeed
        """
        ...

    async def apply_rollback(self, action: StepAction, params: dict[str, Any]) -> None:
        """
        Apply the inverse of an action.

        Raises:
            SubsystemActionError: If the action did not succeed
        """
        ...


__all__ = [
    "Probe",
    "SubsystemAdapter",
]

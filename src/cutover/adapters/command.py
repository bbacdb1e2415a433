"""
Subsystem adapter that shells out to external CLIs.

Each action maps to an argv template. Template items are formatted with
the action's parameters, so ``["kubectl", "rollout", "undo",
"deployment/{deployment}"]`` with ``{"deployment": "web"}`` runs
``kubectl rollout undo deployment/web``. Commands never go through a
shell.

Example:
    >>> adapter = CommandSubsystem(
    ...     Subsystem.APPLICATION,
    ...     forward={
    ...         "roll-back-deployment": ["kubectl", "rollout", "undo", "deployment/{deployment}"],
    ...     },
    ...     timeout_seconds=120,
    ... )
    >>> await adapter.apply_forward(StepAction.ROLL_BACK_DEPLOYMENT, {"deployment": "web"})
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any

from cutover.exceptions import SubsystemActionError
from cutover.models import StepAction, Subsystem
from cutover.observability import ATTR_STEP_ACTION, ATTR_SUBSYSTEM, Tracer, create_tracer

logger = logging.getLogger(__name__)

CommandTemplates = dict[str, list[str]]


class CommandSubsystem:
    """
    Runs configured commands for forward and rollback actions.

    Actions without a configured template are skipped with a warning.

    Args:
        subsystem: Subsystem this adapter acts on
        forward: Action value to argv template for ``apply_forward``
        rollback: Action value to argv template for ``apply_rollback``
        timeout_seconds: Upper bound on each command's runtime
        env: Extra environment variables for the child process
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing
    """

    def __init__(
        self,
        subsystem: Subsystem,
        forward: CommandTemplates | None = None,
        rollback: CommandTemplates | None = None,
        timeout_seconds: float = 300.0,
        env: dict[str, str] | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self.subsystem = subsystem
        self._forward = dict(forward or {})
        self._rollback = dict(rollback or {})
        self._timeout = timeout_seconds
        self._env = env
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def apply_forward(self, action: StepAction, params: dict[str, Any]) -> None:
        await self._run(self._forward, action, params, "forward")

    async def apply_rollback(self, action: StepAction, params: dict[str, Any]) -> None:
        await self._run(self._rollback, action, params, "rollback")

    def render(self, template: list[str], params: dict[str, Any], action: StepAction) -> list[str]:
        """Format an argv template with action parameters."""
        try:
            return [part.format(**params) for part in template]
        except KeyError as e:
            raise SubsystemActionError(
                self.subsystem, action.value, f"missing parameter {e.args[0]!r}"
            ) from None

    async def _run(
        self,
        templates: CommandTemplates,
        action: StepAction,
        params: dict[str, Any],
        direction: str,
    ) -> None:
        template = templates.get(action.value)
        if template is None:
            logger.warning(
                "No %s command configured for %s on %s; skipping",
                direction,
                action.value,
                self.subsystem.value,
            )
            return

        argv = self.render(template, params, action)
        with self._tracer.span(
            f"cutover.command.{direction}",
            {
                ATTR_SUBSYSTEM: self.subsystem.value,
                ATTR_STEP_ACTION: action.value,
            },
        ):
            logger.info("Running %s", " ".join(argv))
            try:
                process = await asyncio.create_subprocess_exec(
                    *argv,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    env={**os.environ, **self._env} if self._env else None,
                )
            except OSError as e:
                raise SubsystemActionError(self.subsystem, action.value, str(e)) from e

            try:
                stdout, stderr = await asyncio.wait_for(
                    process.communicate(), timeout=self._timeout
                )
            except TimeoutError:
                process.kill()
                await process.wait()
                raise SubsystemActionError(
                    self.subsystem,
                    action.value,
                    f"command timed out after {self._timeout}s",
                ) from None

            if process.returncode != 0:
                detail = stderr.decode(errors="replace").strip() or f"exit {process.returncode}"
                raise SubsystemActionError(self.subsystem, action.value, detail)

            logger.debug(
                "%s %s output: %s",
                self.subsystem.value,
                action.value,
                stdout.decode(errors="replace").strip(),
            )


__all__ = [
    "CommandSubsystem",
    "CommandTemplates",
]

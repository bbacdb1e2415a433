"""Cutover CLI entry point.

Commands:
    cutover migrate PHASE [--dry-run] [--force] [--no-backup] [--skip-verification]
    cutover rollback ARTIFACT
    cutover show ARTIFACT

Exit codes for ``migrate``: 0 success (or dry run), 1 failure with rollback
attempted or skipped, 2 rollback itself failed. Invalid input exits 1
before anything runs.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import AsyncIterator, Iterator
from contextlib import AsyncExitStack, asynccontextmanager

import click
import httpx
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import create_async_engine

from cutover import __version__
from cutover.adapters import (
    CommandSubsystem,
    ConfigurationProbe,
    DnsProbe,
    HttpProbe,
    Probe,
    RedisProbe,
    SQLAlchemyProbe,
)
from cutover.exceptions import CutoverError, NoSnapshotAvailableError
from cutover.health import HealthVerifier
from cutover.models import ExecuteOptions, ExecutionResult, MigrationRun, RunOutcome
from cutover.orchestrator import CutoverOrchestrator
from cutover.reporting import HttpReportingSink, LoggingReportingSink, ReportingSink
from cutover.repositories import (
    FileAuditArtifactStore,
    RunArtifact,
    SQLConfigRegistry,
    SQLEnvironmentLease,
    load,
)
from cutover.settings import CutoverSettings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def open_orchestrator(
    settings: CutoverSettings,
    prepare: bool = True,
) -> AsyncIterator[CutoverOrchestrator]:
    """
    Build an orchestrator from settings and close its clients afterwards.

    Args:
        settings: CLI settings
        prepare: Create the registry and lease tables before yielding
    """
    async with AsyncExitStack() as stack:
        engine = create_async_engine(settings.registry_url)
        stack.push_async_callback(engine.dispose)
        registry = SQLConfigRegistry(engine)
        lease = SQLEnvironmentLease(engine)
        if prepare:
            await registry.create_schema()
            await lease.create_schema()

        probes: list[Probe] = []
        if settings.source_database_url:
            source = create_async_engine(settings.source_database_url)
            stack.push_async_callback(source.dispose)
            target = None
            if settings.target_database_url:
                target = create_async_engine(settings.target_database_url)
                stack.push_async_callback(target.dispose)
            probes.append(SQLAlchemyProbe(source, target, settings.compare_tables))

        if settings.source_redis_url:
            source_redis = Redis.from_url(settings.source_redis_url)
            stack.push_async_callback(source_redis.aclose)
            target_redis = None
            if settings.target_redis_url:
                target_redis = Redis.from_url(settings.target_redis_url)
                stack.push_async_callback(target_redis.aclose)
            probes.append(RedisProbe(source_redis, target_redis, settings.max_key_drift))

        http = await stack.enter_async_context(
            httpx.AsyncClient(timeout=settings.probe_timeout_seconds)
        )
        if settings.health_url:
            probes.append(
                HttpProbe(http, settings.health_url, slow_threshold_ms=settings.slow_threshold_ms)
            )
        if settings.routing_hostname:
            probes.append(DnsProbe(settings.routing_hostname, registry))
        if settings.verify_config_keys:
            probes.append(ConfigurationProbe(registry, settings.expected_config()))

        sinks: list[ReportingSink] = [LoggingReportingSink()]
        if settings.report_url:
            sinks.append(HttpReportingSink(http, settings.report_url))

        adapters = {
            subsystem: CommandSubsystem(
                subsystem,
                forward=settings.commands.get(subsystem.value),
                rollback=settings.rollback_commands.get(subsystem.value),
                timeout_seconds=settings.action_timeout_seconds,
                env=settings.command_env or None,
            )
            for subsystem in settings.adapter_subsystems()
        }

        config = settings.orchestrator_config()
        yield CutoverOrchestrator(
            registry,
            FileAuditArtifactStore(settings.artifact_dir),
            HealthVerifier(probes, config.verification),
            environment=settings.environment,
            adapters=adapters,
            lease=lease,
            sinks=sinks,
            target_config=settings.target_config,
            config=config,
        )


def _abort(error: CutoverError) -> click.ClickException:
    """Log ``error`` at its severity and turn it into a click failure (exit 1)."""
    logger.log(error.severity.log_level, "%s [%s]", error, error.error_code)
    return click.ClickException(f"{error}\nHint: {error.hint}")


@contextlib.contextmanager
def _interrupt_on_signals(orchestrator: CutoverOrchestrator) -> Iterator[None]:
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        # add_signal_handler is unavailable on some platforms (Windows)
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, orchestrator.request_interrupt)
            installed.append(sig)
    try:
        yield
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


async def _migrate(
    settings: CutoverSettings,
    phase: str,
    options: ExecuteOptions,
) -> ExecutionResult:
    async with open_orchestrator(settings, prepare=not options.dry_run) as orchestrator:
        with _interrupt_on_signals(orchestrator):
            return await orchestrator.execute(phase, options)


async def _rollback(settings: CutoverSettings, artifact: str) -> ExecutionResult:
    async with open_orchestrator(settings) as orchestrator:
        return await orchestrator.rollback_artifact(artifact)


def _echo_run(run: MigrationRun) -> None:
    click.echo(f"Run:         {run.id}")
    click.echo(f"Phase:       {run.phase.value}")
    click.echo(f"Environment: {run.environment}")
    click.echo(f"Status:      {run.status.value}")
    if run.outcome:
        click.echo(f"Outcome:     {run.outcome.value}")
    if run.error:
        click.echo(f"Error:       {run.error}")
    click.echo("Steps:")
    for index, step in enumerate(run.steps, start=1):
        line = f"  {index}. {step.name:<32} {step.status.value}"
        if step.error:
            line += f"  ({step.error})"
        click.echo(line)
    for subsystem, error in run.rollback_failures.items():
        click.echo(f"Not reverted: {subsystem}: {error}", err=True)


@click.group()
@click.version_option(version=__version__, prog_name="cutover")
@click.option("--log-level", default=None, help="Logging level (overrides CUTOVER_LOG_LEVEL)")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """Cutover - staged infrastructure migration and rollback orchestrator."""
    overrides = {"log_level": log_level} if log_level else {}
    settings = CutoverSettings(**overrides)
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = settings


@cli.command()
@click.argument("phase")
@click.option("--dry-run", is_flag=True, help="Show the plan without executing anything")
@click.option("--force", is_flag=True, help="Do not roll back automatically on failure")
@click.option("--no-backup", is_flag=True, help="Skip the configuration snapshot")
@click.option(
    "--skip-verification",
    is_flag=True,
    help="Skip the integrity step and the final stability poll",
)
@click.option("--environment", default=None, help="Environment tag (overrides settings)")
@click.pass_obj
def migrate(
    settings: CutoverSettings,
    phase: str,
    dry_run: bool,
    force: bool,
    no_backup: bool,
    skip_verification: bool,
    environment: str | None,
) -> None:
    """Execute PHASE: database, object-storage, cache, application, routing or full."""
    if environment:
        settings = settings.model_copy(update={"environment": environment})
    options = ExecuteOptions(
        dry_run=dry_run,
        skip_verification=skip_verification,
        force=force,
        backup_state=not no_backup,
    )

    try:
        result = asyncio.run(_migrate(settings, phase, options))
    except CutoverError as e:
        raise _abort(e) from e

    if result.outcome is RunOutcome.DRY_RUN:
        click.echo(f"Plan for {result.run.phase.value} in {result.run.environment}:")
        for index, name in enumerate(result.plan, start=1):
            click.echo(f"  {index}. {name}")
        for problem in result.problems:
            click.echo(f"Problem: {problem}", err=True)
    else:
        _echo_run(result.run)
        if result.artifact_location:
            click.echo(f"Artifact:    {result.artifact_location}")

    raise SystemExit(result.exit_code)


@cli.command()
@click.argument("artifact")
@click.pass_obj
def rollback(settings: CutoverSettings, artifact: str) -> None:
    """Roll back the run persisted in ARTIFACT.

    Exits 0 when every subsystem was reverted and 2 otherwise.
    """
    try:
        result = asyncio.run(_rollback(settings, artifact))
    except NoSnapshotAvailableError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(2) from e
    except CutoverError as e:
        raise _abort(e) from e

    _echo_run(result.run)
    if result.rollback is not None:
        click.echo(f"Mutations:   {result.rollback.mutations}")
    if result.artifact_location:
        click.echo(f"Artifact:    {result.artifact_location}")
    raise SystemExit(0 if result.outcome is RunOutcome.ROLLED_BACK else 2)


@cli.command()
@click.argument("artifact")
@click.option("--json", "as_json", is_flag=True, help="Print the artifact as JSON")
def show(artifact: str, as_json: bool) -> None:
    """Print the run persisted in ARTIFACT."""
    try:
        run = asyncio.run(load(artifact))
    except CutoverError as e:
        raise _abort(e) from e

    if as_json:
        click.echo(RunArtifact.from_run(run).to_json())
    else:
        _echo_run(run)


def main() -> None:
    cli()


__all__ = ["cli", "main", "open_orchestrator"]

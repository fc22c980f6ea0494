# src/resubmitter/cli.py
"""Resubmitter Command Line Interface.

Entry point for the resubmitter CLI tool.
"""

from __future__ import annotations

import asyncio
import json
import signal
from datetime import datetime
from pathlib import Path
from typing import Literal

import structlog
import typer
from pydantic import ValidationError

from resubmitter import __version__
from resubmitter.clients.auth import TokenProvider
from resubmitter.clients.management import ManagementClient
from resubmitter.contracts import (
    BatchResult,
    ProgressCallback,
    ProgressEvent,
    ProgressStatus,
    ResubmitError,
    RunStatus,
    TriggerType,
    WorkflowReference,
    WorkflowRun,
)
from resubmitter.core.cancellation import CancellationToken
from resubmitter.core.config import ResubmitterSettings, load_settings
from resubmitter.engine.cache import TriggerMetadataCache, supports_callback_replay
from resubmitter.engine.orchestrator import BatchOptions, BatchOrchestrator
from resubmitter.engine.search import RunSearchPaginator, parse_timestamp

__all__ = ["app"]

logger = structlog.get_logger(__name__)

# Conventional exit status for a run interrupted by SIGINT
EXIT_INTERRUPTED = 130

app = typer.Typer(
    name="resubmitter",
    help="Resubmit Logic Apps Standard workflow runs without tripping rate limits.",
    no_args_is_help=True,
)

# Settings path chosen by the global --settings option
_settings_path: Path | None = None


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"resubmitter version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from .env file.

    Args:
        env_file: Explicit path to .env file. If None, searches for .env
                 in current directory and parent directories.

    Returns:
        True if .env was found and loaded, False otherwise.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(
                f"Error: .env file not found: {env_file}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)  # Don't override existing env vars


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    settings: Path | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Path to settings YAML file (environment variables alone are used if omitted).",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
        exists=False,  # Existence is checked in _load_dotenv for a clearer message
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """Resubmitter: rate-limit-aware resubmission of workflow runs."""
    global _settings_path

    from resubmitter.core.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "INFO")
    _settings_path = settings

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho(
            "Warning: --env-file ignored because --no-dotenv is set.",
            fg=typer.colors.YELLOW,
            err=True,
        )


# === Shared helpers ===


def _load_settings_or_exit() -> ResubmitterSettings:
    try:
        return load_settings(_settings_path)
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {_settings_path}", err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None


def _token_provider_or_exit(settings: ResubmitterSettings) -> TokenProvider:
    try:
        return settings.auth.create_token_provider()
    except ImportError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None


def _workflow_ref_or_exit(subscription: str, resource_group: str, app_name: str, workflow: str) -> WorkflowReference:
    ref = WorkflowReference(
        subscription_id=subscription,
        resource_group=resource_group,
        app_name=app_name,
        workflow_name=workflow,
    )
    try:
        ref.validate()
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    return ref


def _parse_window_or_exit(start: str, end: str) -> tuple[datetime, datetime]:
    try:
        start_time, end_time = parse_timestamp(start), parse_timestamp(end)
    except ValueError as e:
        typer.echo(f"Error: Invalid timestamp: {e}", err=True)
        raise typer.Exit(1) from None
    if start_time > end_time:
        typer.echo("Error: --start must not be after --end", err=True)
        raise typer.Exit(1)
    return start_time, end_time


def _remote_error_exit(e: ResubmitError) -> typer.Exit:
    typer.echo(f"Error: {e}", err=True)
    return typer.Exit(1)


SUBSCRIPTION_OPTION = typer.Option(..., "--subscription", envvar="RESUBMITTER_SUBSCRIPTION_ID", help="Azure subscription ID.")
RESOURCE_GROUP_OPTION = typer.Option(..., "--resource-group", "-g", envvar="RESUBMITTER_RESOURCE_GROUP", help="Resource group of the Logic App.")
APP_OPTION = typer.Option(..., "--app", envvar="RESUBMITTER_APP_NAME", help="Logic App (Standard) site name.")
WORKFLOW_OPTION = typer.Option(..., "--workflow", "-w", help="Workflow name.")
STATUS_OPTION = typer.Option(None, "--status", case_sensitive=False, help="Keep only runs with this status (repeatable).")
FORMAT_OPTION = typer.Option("console", "--format", "-f", help="Output format: 'console' (human-readable) or 'json' (structured JSON).")


# === Commands ===


@app.command()
def search(
    subscription: str = SUBSCRIPTION_OPTION,
    resource_group: str = RESOURCE_GROUP_OPTION,
    app_name: str = APP_OPTION,
    workflow: str = WORKFLOW_OPTION,
    start: str = typer.Option(..., "--start", help="Window start (ISO 8601, inclusive; naive = UTC)."),
    end: str = typer.Option(..., "--end", help="Window end (ISO 8601, inclusive; naive = UTC)."),
    status: list[RunStatus] | None = STATUS_OPTION,
    output_format: Literal["console", "json"] = FORMAT_OPTION,
) -> None:
    """List workflow runs that started inside a time window."""
    settings = _load_settings_or_exit()
    ref = _workflow_ref_or_exit(subscription, resource_group, app_name, workflow)
    start_time, end_time = _parse_window_or_exit(start, end)
    token_provider = _token_provider_or_exit(settings)

    async def _search() -> list[WorkflowRun]:
        async with ManagementClient.from_settings(token_provider, settings.http) as client:
            paginator = RunSearchPaginator(client, page_delay_seconds=settings.batch.page_delay_seconds)
            return await paginator.collect(ref, start_time, end_time, frozenset(status or ()))

    try:
        runs = asyncio.run(_search())
    except ResubmitError as e:
        raise _remote_error_exit(e) from None

    if output_format == "json":
        for run in runs:
            typer.echo(
                json.dumps(
                    {
                        "id": run.id,
                        "name": run.name,
                        "status": run.status.value,
                        "start_time": run.start_time.isoformat(),
                        "end_time": run.end_time.isoformat() if run.end_time else None,
                    }
                )
            )
        return

    for run in runs:
        typer.echo(f"{run.name}  {run.status.value:<10}  {run.start_time.isoformat()}")
    typer.echo(f"{len(runs)} run(s) found")


@app.command("trigger-type")
def trigger_type(
    subscription: str = SUBSCRIPTION_OPTION,
    resource_group: str = RESOURCE_GROUP_OPTION,
    app_name: str = APP_OPTION,
    workflow: str = WORKFLOW_OPTION,
) -> None:
    """Show the workflow's trigger type and whether it supports callback replay."""
    settings = _load_settings_or_exit()
    ref = _workflow_ref_or_exit(subscription, resource_group, app_name, workflow)
    token_provider = _token_provider_or_exit(settings)

    async def _resolve() -> TriggerType:
        async with ManagementClient.from_settings(token_provider, settings.http) as client:
            return await TriggerMetadataCache(client).resolve_trigger_type(ref)

    try:
        kind = asyncio.run(_resolve())
    except ResubmitError as e:
        raise _remote_error_exit(e) from None

    typer.echo(f"Trigger type: {kind.value}")
    typer.echo(f"Callback replay supported: {'yes' if supports_callback_replay(kind) else 'no'}")


def _progress_printer(output_format: str) -> ProgressCallback:
    if output_format == "json":

        def _print_json(event: ProgressEvent) -> None:
            typer.echo(json.dumps({"event": "progress", **event.to_dict()}))

        return _print_json

    def _print_console(event: ProgressEvent) -> None:
        position = f"[{event.current}/{event.total}]"
        if event.status == ProgressStatus.PREFETCHING:
            typer.echo(f"{position} Prefetching trigger payload links...")
        elif event.status == ProgressStatus.RETRYING:
            typer.echo(
                f"{position} {event.run_id} retry after attempt {event.retry_attempt}: "
                f"{event.retry_reason}, waiting {event.retry_delay_ms}ms"
            )
        elif event.status == ProgressStatus.SUCCESS:
            typer.echo(f"{position} {event.run_id} ✓")
        elif event.status == ProgressStatus.ERROR:
            typer.echo(f"{position} {event.run_id} ✗ {event.error}", err=True)
        else:
            typer.echo(f"{position} {event.run_id} cancelled")

    return _print_console


def _print_summary(result: BatchResult, output_format: str) -> None:
    if output_format == "json":
        typer.echo(json.dumps({"event": "batch_completed", **result.to_dict()}))
        return

    typer.echo("")
    typer.echo(f"Total: {result.total}  Succeeded: {result.success_count}  Failed: {result.failed_count}  Cancelled: {result.cancelled_count}")
    if result.cancelled:
        typer.echo("Batch was cancelled.")
    for error in result.errors:
        typer.echo(f"  - {error.run_id}: {error.error}", err=True)


@app.command()
def resubmit(
    subscription: str = SUBSCRIPTION_OPTION,
    resource_group: str = RESOURCE_GROUP_OPTION,
    app_name: str = APP_OPTION,
    workflow: str = WORKFLOW_OPTION,
    run_id: list[str] | None = typer.Option(None, "--run-id", "-r", help="Run to resubmit (repeatable)."),
    start: str | None = typer.Option(None, "--start", help="Select runs from this time (ISO 8601) instead of --run-id."),
    end: str | None = typer.Option(None, "--end", help="Select runs up to this time (ISO 8601)."),
    status: list[RunStatus] | None = STATUS_OPTION,
    sequential: bool = typer.Option(False, "--sequential", help="Resubmit one run at a time, in order."),
    callback: bool = typer.Option(
        False,
        "--callback",
        help="Replay the captured request to the trigger callback URL (HTTP triggers only; creates new runs).",
    ),
    execute: bool = typer.Option(
        False,
        "--execute",
        "-x",
        help="Actually resubmit. Without this flag the selected runs are only listed.",
    ),
    output_format: Literal["console", "json"] = FORMAT_OPTION,
) -> None:
    """Resubmit runs by id, or every run matching a time window."""
    if not run_id and (start is None or end is None):
        typer.echo("Error: provide --run-id, or both --start and --end", err=True)
        raise typer.Exit(1)
    if run_id and (start is not None or end is not None):
        typer.echo("Error: --run-id cannot be combined with --start/--end", err=True)
        raise typer.Exit(1)

    settings = _load_settings_or_exit()
    ref = _workflow_ref_or_exit(subscription, resource_group, app_name, workflow)
    window = _parse_window_or_exit(start, end) if start is not None and end is not None else None
    token_provider = _token_provider_or_exit(settings)
    options = BatchOptions(sequential=sequential, use_callback_url=callback)
    on_progress = _progress_printer(output_format)

    async def _select(client: ManagementClient) -> list[str]:
        if run_id:
            return list(run_id)
        assert window is not None
        paginator = RunSearchPaginator(client, page_delay_seconds=settings.batch.page_delay_seconds)
        runs = await paginator.collect(ref, window[0], window[1], frozenset(status or ()))
        return [run.name for run in runs]

    async def _resubmit() -> BatchResult | None:
        async with ManagementClient.from_settings(token_provider, settings.http) as client:
            orchestrator = BatchOrchestrator.from_settings(client, settings)

            if callback:
                kind = await orchestrator.cache.resolve_trigger_type(ref)
                if not supports_callback_replay(kind):
                    typer.echo(f"Error: callback replay needs an HTTP trigger, workflow trigger is {kind.value}", err=True)
                    raise typer.Exit(1)

            run_ids = await _select(client)
            if not run_ids:
                typer.echo("No runs selected.")
                return None

            if not execute:
                typer.echo(f"Would resubmit {len(run_ids)} run(s) via {'callback replay' if callback else 'resubmit'}:")
                for selected in run_ids:
                    typer.echo(f"  {selected}")
                typer.echo("")
                typer.echo("To execute, add --execute (or -x) flag", err=True)
                raise typer.Exit(1)

            token = CancellationToken()
            loop = asyncio.get_running_loop()

            def _on_sigint() -> None:
                logger.warning("cancellation_requested", workflow=str(ref))
                token.cancel()
                # Second Ctrl-C falls through to the default handler
                loop.remove_signal_handler(signal.SIGINT)

            handler_installed = True
            try:
                loop.add_signal_handler(signal.SIGINT, _on_sigint)
            except NotImplementedError:
                # Event loops without signal support (Windows); Ctrl-C aborts instead
                handler_installed = False
                logger.debug("sigint_handler_unavailable")
            try:
                return await orchestrator.run_batch(ref, run_ids, options, on_progress=on_progress, cancellation=token)
            finally:
                if handler_installed:
                    loop.remove_signal_handler(signal.SIGINT)

    try:
        result = asyncio.run(_resubmit())
    except ResubmitError as e:
        raise _remote_error_exit(e) from None

    if result is None:
        return
    _print_summary(result, output_format)
    if result.failed_count:
        raise typer.Exit(1)
    if result.cancelled:
        raise typer.Exit(EXIT_INTERRUPTED)


if __name__ == "__main__":
    app()

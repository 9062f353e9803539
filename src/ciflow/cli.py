"""CLI entrypoint.

Primary mode:
- ciflow run ...        evaluate an event and run the workflow

Utilities:
- ciflow trigger ...    dry check: would this event start a run?
- ciflow status ...     print RUN_STATUS.json of a run
- ciflow validate       load and validate the workflow file
- ciflow init
- ciflow doctor

CONTRACT
- Inputs: Command line arguments (parsed by Typer)
- Outputs (required):
  - Exit code: 0 success or rejected trigger, 1 failure, 2 configuration
    error, 3 canceled
  - Console output (stdout/stderr) describing progress/results
- Invariants:
  - All commands validate their inputs (run_id, event) before execution
  - Credentials are snapshotted from the process environment at this boundary
- Failure:
  - Invalid arguments raise Typer exit/error
  - ConfigurationError is printed and exits 2
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import RunConfig, WorkflowConfig, resolve_workflow
from .doctor import doctor_report
from .errors import ConfigurationError
from .orchestrator import EXIT_CONFIG, run_workflow_session
from .secrets import MappingSecretStore
from .trigger import EventKind, TriggerEvent
from .util.ids import new_run_id, validate_run_id

app = typer.Typer(add_completion=False, help="Declarative CI step-graph executor.")

console = Console()


def _version_callback(value: bool):
    if value:
        console.print(f"ciflow version: {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    level = "DEBUG" if verbose else os.environ.get("CIFLOW_LOG_LEVEL", "INFO").upper()
    logger.remove()
    logger.add(sys.stderr, level=level)


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
):
    _configure_logging(verbose)


_REPO_OPTION = typer.Option(
    Path("."),
    "--repo",
    help="Repository checkout (default: current dir).",
)
_WORKFLOW_FILE_OPTION = typer.Option(
    None,
    "--workflow-file",
    help="Workflow YAML (default: <repo>/.ciflow/workflow.yaml, else the bundled one).",
)
_ARTIFACTS_DIR_OPTION = typer.Option(
    Path(".ciflow/runs"),
    "--artifacts-dir",
    envvar="CIFLOW_ARTIFACTS_DIR",
    help="Artifacts root dir.",
)
_RUN_ID_OPTION = typer.Option(
    None,
    "--run-id",
    help="Run id (default: auto).",
)
_RUN_ID_REQUIRED_OPTION = typer.Option(
    ...,
    "--run",
    help="Run id.",
)
_EVENT_OPTION = typer.Option(
    "manual",
    "--event",
    help="Event kind: push, pull_request or manual (GitHub event name with --event-file).",
)
_REF_OPTION = typer.Option(
    None,
    "--ref",
    help="Branch (push) or head branch (pull_request).",
)
_ACTION_OPTION = typer.Option(
    None,
    "--action",
    help="Pull request lifecycle action (opened, synchronize, ...).",
)
_SHA_OPTION = typer.Option(
    None,
    "--sha",
    help="Commit under test.",
)
_HEAD_SHA_OPTION = typer.Option(
    None,
    "--head-sha",
    help="Pull request head commit (used as the analysis revision).",
)
_EVENT_FILE_OPTION = typer.Option(
    None,
    "--event-file",
    help="GitHub-style event payload JSON; --event is then the event name.",
)


def _build_event(
    event: str,
    ref: str | None,
    action: str | None,
    sha: str | None,
    head_sha: str | None,
    event_file: Path | None,
) -> TriggerEvent:
    if event_file is not None:
        if not event_file.exists():
            raise typer.BadParameter(f"Event file not found: {event_file}")
        try:
            payload = json.loads(event_file.read_text(encoding="utf-8"))
            return TriggerEvent.from_github(event, payload)
        except (json.JSONDecodeError, ValueError) as e:
            raise typer.BadParameter(f"Bad event file {event_file}: {e}") from e
    try:
        kind = EventKind(event)
    except ValueError as e:
        raise typer.BadParameter(f"Unknown event kind: {event}") from e
    return TriggerEvent(kind=kind, ref=ref, action=action, sha=sha, head_sha=head_sha)


def _load_workflow(repo: Path, workflow_file: Path | None) -> WorkflowConfig:
    try:
        return resolve_workflow(repo, workflow_file)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=EXIT_CONFIG) from e


@app.command()
def init(
    repo: Path = _REPO_OPTION,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing workflow file."),
) -> None:
    """Write `.ciflow/workflow.yaml` into a target repo."""
    from .init import write_templates

    written = write_templates(repo, force=force)
    if written is None:
        console.print(f"[yellow]Kept existing[/yellow] {repo / '.ciflow' / 'workflow.yaml'} (use --force)")
    else:
        console.print(f"[green]Wrote workflow to[/green] {written}")


@app.command()
def doctor(
    repo: Path = _REPO_OPTION,
    workflow_file: Path | None = _WORKFLOW_FILE_OPTION,
    verbose: bool = typer.Option(False, "--verbose", help="Show more details."),
) -> None:
    """Environment and preflight checks."""
    report = doctor_report(repo=repo, workflow_file=workflow_file, verbose=verbose)
    table = Table(title="ciflow doctor")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Details")
    for item in report.items:
        table.add_row(item.name, item.status, item.details)
    console.print(table)
    if report.ok:
        console.print("[green]OK[/green]")
    else:
        raise typer.Exit(code=EXIT_CONFIG)


@app.command()
def validate(
    repo: Path = _REPO_OPTION,
    workflow_file: Path | None = _WORKFLOW_FILE_OPTION,
) -> None:
    """Load the workflow and print what would run."""
    wf = _load_workflow(repo, workflow_file)
    table = Table(title=f"{wf.name} ({wf.source})")
    table.add_column("#")
    table.add_column("Step")
    table.add_column("Kind")
    table.add_column("If")
    for i, s in enumerate([*wf.provision.tools, *wf.steps]):
        table.add_row(f"{i:02d}", s.name, s.kind, s.condition.value)
    for t in wf.report:
        table.add_row("--", t.name, f"report:{t.kind}", t.condition.value)
    console.print(table)
    console.print("[green]Workflow is valid[/green]")


@app.command()
def trigger(
    repo: Path = _REPO_OPTION,
    workflow_file: Path | None = _WORKFLOW_FILE_OPTION,
    event: str = _EVENT_OPTION,
    ref: str | None = _REF_OPTION,
    action: str | None = _ACTION_OPTION,
    event_file: Path | None = _EVENT_FILE_OPTION,
) -> None:
    """Report whether an event would start a run (nothing is executed)."""
    ev = _build_event(event, ref, action, None, None, event_file)
    wf = _load_workflow(repo, workflow_file)
    if wf.triggers.admits(ev):
        console.print(f"[green]admitted[/green] {ev.kind.value} {ev.ref or ''}".rstrip())
    else:
        console.print(f"[yellow]rejected[/yellow] {wf.triggers.reason(ev)}")


@app.command()
def run(
    repo: Path = _REPO_OPTION,
    workflow_file: Path | None = _WORKFLOW_FILE_OPTION,
    artifacts_dir: Path = _ARTIFACTS_DIR_OPTION,
    run_id: str | None = _RUN_ID_OPTION,
    event: str = _EVENT_OPTION,
    ref: str | None = _REF_OPTION,
    action: str | None = _ACTION_OPTION,
    sha: str | None = _SHA_OPTION,
    head_sha: str | None = _HEAD_SHA_OPTION,
    event_file: Path | None = _EVENT_FILE_OPTION,
) -> None:
    """Evaluate the event and, if admitted, run the workflow."""
    ev = _build_event(event, ref, action, sha, head_sha, event_file)
    rid = validate_run_id(run_id or new_run_id())
    wf = _load_workflow(repo, workflow_file)
    secrets = MappingSecretStore.from_environ(wf.credential_names())

    repo_path = repo.resolve()
    root = artifacts_dir if artifacts_dir.is_absolute() else repo_path / artifacts_dir
    cfg = RunConfig(repo_path=repo_path, run_id=rid, artifacts_root=root, workflow_file=workflow_file)
    try:
        result = asyncio.run(run_workflow_session(cfg, ev, workflow=wf, secrets=secrets))
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=EXIT_CONFIG) from e

    if result.rejected:
        console.print(f"[yellow]Event rejected[/yellow]: {wf.triggers.reason(ev)}")
        return
    console.print(f"[bold]Run[/bold] {rid} finished with status: {result.status}")
    if result.failed_step:
        console.print(f"Failed at: {result.failed_step}")
    if result.superseded_by:
        console.print(f"Superseded by: {result.superseded_by}")
    console.print(f"Artifacts: {result.run_dir}")
    if result.exit_code:
        raise typer.Exit(code=result.exit_code)


@app.command()
def status(
    run_id: str = _RUN_ID_REQUIRED_OPTION,
    artifacts_dir: Path = _ARTIFACTS_DIR_OPTION,
) -> None:
    """Print RUN_STATUS.json of a run."""
    validate_run_id(run_id)
    status_path = artifacts_dir / run_id / "RUN_STATUS.json"
    if not status_path.exists():
        raise typer.BadParameter(f"No status found: {status_path}")
    console.print_json(status_path.read_text(encoding="utf-8"))


if __name__ == "__main__":
    app()

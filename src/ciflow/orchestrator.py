from __future__ import annotations

"""Orchestrator for workflow runs.

CONTRACT
- Inputs: RunConfig (repo, run id, artifacts root, workflow file), TriggerEvent
- Outputs (required):
  - RunResult (status, run_dir, exit_code, failed_step)
  - Artifacts in .ciflow/runs/<run_id>/
    - RUN.json, RUN_STATUS.json, STEPS.json, REPORT.json, events.jsonl, logs/
- Invariants:
  - A rejected trigger creates no run and no run directory
  - Trigger -> gate -> provision -> steps -> report, strictly in that order
  - The gate is released on every exit path
  - Always writes RUN_STATUS.json once a run directory exists
  - Catches unexpected exceptions, writes CRASH.txt, and reports FAILURE
- Failure:
  - Raises ConfigurationError for an invalid workflow or missing credentials
    (nothing has run yet)
  - Everything else is folded into the returned RunResult
"""

import asyncio
import traceback
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from .artifacts.schemas import ReportRecord, RunMeta, RunStatus, StepRecord
from .artifacts.store import ArtifactStore
from .concurrency import ConcurrencyGate
from .config import RunConfig, WorkflowConfig, resolve_workflow
from .environment import SharedEnvironment
from .errors import CancellationSignal, ConfigurationError, ProvisioningError
from .executor import StepExecutor, build_record
from .model import RunOutcome, StepStatus, WorkflowRun
from .provisioner import EnvironmentProvisioner
from .reporting import CommandPublisher, Publisher, ResultReporter
from .secrets import MappingSecretStore, SecretStore, resolve
from .trigger import TriggerEvent
from .util.events import EventLog
from .util.redaction import Redactor
from .util.shell import run_cmd

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_CANCELED = 3

_EXIT_CODES = {
    RunOutcome.SUCCESS: EXIT_SUCCESS,
    RunOutcome.FAILURE: EXIT_FAILURE,
    RunOutcome.CANCELED: EXIT_CANCELED,
}

# Shared by every session in this process that is not handed a gate explicitly.
DEFAULT_GATE = ConcurrencyGate()


@dataclass(frozen=True)
class RunResult:
    status: str
    run_dir: Path | None
    exit_code: int
    failed_step: str | None = None
    error_kind: str | None = None
    superseded_by: str | None = None
    steps: list[StepRecord] = field(default_factory=list)
    report: list[ReportRecord] = field(default_factory=list)

    @property
    def rejected(self) -> bool:
        return self.status == "REJECTED"


def exit_code_for(outcome: RunOutcome) -> int:
    return _EXIT_CODES.get(outcome, EXIT_FAILURE)


def check_credentials(workflow: WorkflowConfig, secrets: SecretStore) -> dict[str, str]:
    found, missing = resolve(secrets, sorted(workflow.credential_names()))
    if missing:
        raise ConfigurationError(f"Workflow {workflow.name!r} needs missing credential(s): {', '.join(missing)}")
    return found


def _head_revision(store: ArtifactStore, repo: Path) -> str | None:
    if not (repo / ".git").exists():
        return None
    res = run_cmd(
        ["git", "rev-parse", "HEAD"],
        cwd=repo,
        stdout_path=store.path("logs", "revision.stdout.log"),
        stderr_path=store.path("logs", "revision.stderr.log"),
        timeout_s=30,
    )
    if not res.ok:
        return None
    return res.stdout.strip() or None


async def run_workflow_session(
    cfg: RunConfig,
    event: TriggerEvent,
    *,
    workflow: WorkflowConfig | None = None,
    gate: ConcurrencyGate | None = None,
    secrets: SecretStore | None = None,
    publisher: Publisher | None = None,
) -> RunResult:
    if workflow is None:
        workflow = resolve_workflow(cfg.repo_path, cfg.workflow_file)

    if not workflow.triggers.admits(event):
        logger.info(f"Event rejected for {workflow.name!r}: {workflow.triggers.reason(event)}")
        return RunResult(status="REJECTED", run_dir=None, exit_code=EXIT_SUCCESS)

    secrets = secrets if secrets is not None else MappingSecretStore()
    credentials = check_credentials(workflow, secrets)

    store = ArtifactStore(cfg.run_dir())
    store.ensure()
    redactor = Redactor().with_secrets(credentials.values())
    ev = EventLog(store.path("events.jsonl"), run_id=cfg.run_id, redactor=redactor)
    run = WorkflowRun(workflow=workflow.name, run_id=cfg.run_id, event_kind=event.kind, ref=event.ref)

    gate = gate if gate is not None else DEFAULT_GATE
    gated = workflow.concurrency.enabled
    superseded = None
    if gated:
        admission = gate.admit(run)
        superseded = admission.superseded
        ev.emit(stage="gate", action="admitted", group_key=admission.group_key, superseded=superseded)

    steps: list[StepRecord] = []
    report: list[ReportRecord] = []
    failed_step: str | None = None
    error_kind: str | None = None
    message = ""

    try:
        store.write_run_meta(
            RunMeta(
                run_id=cfg.run_id,
                workflow=workflow.name,
                workflow_source=workflow.source,
                repo_path=str(cfg.repo_path),
                group_key=run.group_key,
                event=event.to_dict(),
                superseded=superseded,
                steps=[
                    {"name": s.name, "kind": s.kind, "if": s.condition.value}
                    for s in [*workflow.provision.tools, *workflow.steps]
                ],
            )
        )
        store.write_status(
            RunStatus(run_id=cfg.run_id, workflow=workflow.name, status="RUNNING", message="starting")
        )
        logger.info(f"Run {cfg.run_id} started ({event.kind.value} {event.ref or ''})".rstrip())

        env = SharedEnvironment.from_process(cfg.repo_path, exclude=workflow.credential_names())
        provisioner = EnvironmentProvisioner(store, secrets, redactor, ev, run_id=cfg.run_id)
        executor = StepExecutor(
            store, secrets, redactor, provisioner, ev, start_index=len(workflow.provision.tools)
        )

        outcome = RunOutcome.PENDING
        try:
            await asyncio.to_thread(provisioner.provision, workflow.provision, env, run.token)
        except CancellationSignal:
            outcome = RunOutcome.CANCELED
        except ProvisioningError as e:
            logger.error(f"Provisioning failed: {e}")
            ev.emit(stage="provision", action="aborted", error=str(e))
            outcome = RunOutcome.FAILURE
            failed_step = e.action
            error_kind = "provisioning"
            message = str(e)
        steps.extend(provisioner.records)

        if outcome is RunOutcome.PENDING:
            result = await asyncio.to_thread(executor.run, workflow.steps, env, run.token)
            steps.extend(result.records)
            outcome = result.outcome
            if result.errors:
                failed_step = result.failed_step
                error_kind = "step"
                message = str(result.errors[0])
        else:
            status = StepStatus.CANCELED if outcome is RunOutcome.CANCELED else StepStatus.SKIPPED
            steps.extend(
                build_record(executor.start_index + i, s, status) for i, s in enumerate(workflow.steps)
            )

        if outcome is not RunOutcome.CANCELED and error_kind != "provisioning" and not run.cancelled:
            revision = event.revision or _head_revision(store, cfg.repo_path)
            reporter = ResultReporter(
                secrets,
                publisher or CommandPublisher(store, redactor, run.token),
                ev,
            )
            rep = await asyncio.to_thread(reporter.report, workflow.report, outcome, env, revision)
            report = rep.records
            fatal = rep.fatal
            if fatal is not None and outcome is RunOutcome.SUCCESS:
                outcome = RunOutcome.FAILURE
                failed_step = fatal.target
                error_kind = "reporting"
                message = str(fatal)
            for err in rep.errors:
                if err is not fatal:
                    ev.emit(stage="report", action="warning", error=str(err))

        outcome = run.finish(outcome)
        exit_code = exit_code_for(outcome)
        if outcome is RunOutcome.CANCELED:
            message = f"superseded by {run.superseded_by}" if run.superseded_by else "canceled"
            error_kind = "canceled"
        elif outcome is RunOutcome.SUCCESS:
            message = "completed"

    except ConfigurationError as exc:
        ev.emit(stage="config", action="error", error=str(exc))
        logger.error(str(exc))
        outcome = run.finish(RunOutcome.FAILURE)
        exit_code = EXIT_CONFIG if outcome is RunOutcome.FAILURE else exit_code_for(outcome)
        error_kind = "configuration"
        message = str(exc)
    except Exception as exc:
        ev.emit(stage="crash", action="exception", error=str(exc))
        store.write_text("CRASH.txt", redactor.redact(traceback.format_exc()))
        outcome = run.finish(RunOutcome.FAILURE)
        exit_code = exit_code_for(outcome)
        error_kind = "crash"
        message = f"crash: {exc}"
    finally:
        if gated:
            gate.release(run)

    status = outcome.value.upper()
    store.write_steps(steps)
    store.write_report(report)
    store.write_status(
        RunStatus(
            run_id=cfg.run_id,
            workflow=workflow.name,
            status=status,
            message=redactor.redact(message),
            exit_code=exit_code,
            failed_step=failed_step,
            error_kind=error_kind,
            superseded_by=run.superseded_by,
        )
    )
    ev.emit(stage="run", action="finished", status=status, exit_code=exit_code)
    logger.info(f"Run {cfg.run_id} finished: {status} (exit {exit_code})")
    return RunResult(
        status=status,
        run_dir=store.run_dir,
        exit_code=exit_code,
        failed_step=failed_step,
        error_kind=error_kind,
        superseded_by=run.superseded_by,
        steps=steps,
        report=report,
    )


async def run_sessions(
    requests: Sequence[tuple[RunConfig, TriggerEvent]],
    *,
    workflow: WorkflowConfig | None = None,
    gate: ConcurrencyGate | None = None,
    secrets: SecretStore | None = None,
    publisher: Publisher | None = None,
) -> list[RunResult]:
    """Run several sessions concurrently behind one gate. Results keep request order."""
    gate = gate if gate is not None else ConcurrencyGate()
    return list(
        await asyncio.gather(
            *[
                run_workflow_session(
                    cfg, event, workflow=workflow, gate=gate, secrets=secrets, publisher=publisher
                )
                for cfg, event in requests
            ]
        )
    )

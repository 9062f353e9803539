from __future__ import annotations

"""Step executor.

CONTRACT
- Inputs: ordered steps, SharedEnvironment, CancellationToken
- Outputs (required):
  - ExecutionResult(outcome, records, errors)
  - logs/<nn>_<step>.stdout.log / .stderr.log for every executed step
- Invariants:
  - Steps run strictly in declared order, one at a time
  - A step runs only if its condition holds for the outcome so far
    (default: every prior step succeeded); otherwise it is recorded as skipped
  - First non-zero exit flips the outcome to failure for the rest of the run;
    `always` steps still run
  - Cancellation is checked before every step; once seen, every remaining
    step is recorded as canceled and nothing else is started
  - Same steps + same tool exit codes -> same outcome and same decisions
- Failure:
  - Never raises for step failures; they are returned as StepExecutionError values
  - Raises ConfigurationError if a step needs a credential the store lacks
"""

import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from .artifacts.schemas import StepRecord
from .artifacts.store import ArtifactStore
from .concurrency import CancellationToken
from .environment import SharedEnvironment
from .errors import ConfigurationError, StepExecutionError
from .model import RunOutcome, StepStatus
from .secrets import SecretStore, resolve
from .steps import Step, ToolInstall
from .util.events import EventLog
from .util.paths import expand_path
from .util.redaction import Redactor
from .util.shell import CmdResult, run_cmd, shell_argv

if TYPE_CHECKING:
    from .provisioner import EnvironmentProvisioner


@dataclass
class ExecutionResult:
    outcome: RunOutcome
    records: list[StepRecord] = field(default_factory=list)
    errors: list[StepExecutionError] = field(default_factory=list)

    @property
    def failed_step(self) -> str | None:
        return self.errors[0].step if self.errors else None

    def decisions(self) -> list[tuple[str, str]]:
        return [r.decision() for r in self.records]


def step_credentials(secrets: SecretStore, step: Step) -> dict[str, str]:
    found, missing = resolve(secrets, step.secrets)
    if missing:
        raise ConfigurationError(f"Step {step.name!r} needs missing credential(s): {', '.join(missing)}")
    return found


def invoke_step(
    store: ArtifactStore,
    index: int,
    step: Step,
    command: str,
    env: SharedEnvironment,
    *,
    credentials: Mapping[str, str] | None = None,
    token: CancellationToken | None = None,
    redactor: Redactor | None = None,
    log_name: str | None = None,
    extra_path: Sequence[str] = (),
) -> tuple[CmdResult, Path, Path]:
    """Run one command of a step with the run's environment.

    Returns the command result plus the step's CIFLOW_ENV / CIFLOW_PATH files.
    """
    stdout_path, stderr_path = store.step_log_paths(index, log_name or step.name)
    env_file, path_file = store.export_files(index)
    overrides = {
        **step.env,
        "CI": "true",
        "CIFLOW_ENV": str(env_file),
        "CIFLOW_PATH": str(path_file),
        "CIFLOW_WORKSPACE": str(env.workdir),
    }
    child_env = env.flatten(overrides, credentials)
    if extra_path:
        extra = [str(expand_path(p, env.workdir)) for p in extra_path]
        child_env["PATH"] = os.pathsep.join([*extra, child_env["PATH"]])
    cwd = expand_path(step.working_directory, env.workdir) if step.working_directory else env.workdir
    res = run_cmd(
        shell_argv(command, step.shell),
        cwd=cwd,
        stdout_path=stdout_path,
        stderr_path=stderr_path,
        env=child_env,
        timeout_s=step.timeout_s,
        inherit_env=False,
        cancel=token,
        redactor=redactor,
    )
    return res, env_file, path_file


def missing_products(step: Step, workdir: Path) -> list[str]:
    return [p for p in step.produces if not expand_path(p, workdir).exists()]


def build_record(
    index: int,
    step: Step,
    status: StepStatus,
    *,
    phase: str = "steps",
    res: CmdResult | None = None,
    error: str | None = None,
) -> StepRecord:
    return StepRecord(
        index=index,
        name=step.name,
        kind=step.kind,
        phase=phase,
        status=status.value,
        condition=step.condition.value,
        exit_code=res.returncode if res else None,
        elapsed_s=round(res.elapsed_s, 3) if res else 0.0,
        stdout_log=str(res.stdout_path) if res else None,
        stderr_log=str(res.stderr_path) if res else None,
        error=error,
    )


@dataclass
class StepExecutor:
    store: ArtifactStore
    secrets: SecretStore
    redactor: Redactor = field(default_factory=Redactor)
    provisioner: EnvironmentProvisioner | None = None
    events: EventLog | None = None
    start_index: int = 0

    def _emit(self, **event: object) -> None:
        if self.events is not None:
            self.events.emit(stage="steps", **event)

    def run(
        self,
        steps: Sequence[Step],
        env: SharedEnvironment,
        token: CancellationToken,
    ) -> ExecutionResult:
        result = ExecutionResult(outcome=RunOutcome.PENDING)
        failed = False

        for offset, step in enumerate(steps):
            index = self.start_index + offset

            if token.is_cancelled:
                for rest_offset, rest in enumerate(steps[offset:]):
                    result.records.append(build_record(index + rest_offset, rest, StepStatus.CANCELED))
                self._emit(action="canceled", step=step.name)
                break

            if not step.condition.should_run(failed):
                logger.info(f"[{index:02d}] {step.name}: skipped (if: {step.condition.value})")
                result.records.append(build_record(index, step, StepStatus.SKIPPED))
                self._emit(action="skipped", step=step.name, condition=step.condition.value)
                continue

            credentials = step_credentials(self.secrets, step)
            logger.info(f"[{index:02d}] {step.name}: running")
            self._emit(action="start", step=step.name, kind=step.kind)

            if isinstance(step, ToolInstall) and self.provisioner is not None:
                record = self.provisioner.install(step, env, token, index, credentials=credentials)
            else:
                record = self._run_shell(index, step, env, token, credentials)

            result.records.append(record)
            if record.status == StepStatus.CANCELED.value:
                for rest_offset, rest in enumerate(steps[offset + 1:], start=1):
                    result.records.append(build_record(index + rest_offset, rest, StepStatus.CANCELED))
                self._emit(action="canceled", step=step.name)
                break
            if record.status == StepStatus.FAILURE.value:
                failed = True
                err = StepExecutionError(step.name, record.exit_code or 0, record.error or "")
                result.errors.append(err)
                logger.warning(str(err))
                self._emit(action="failure", step=step.name, exit_code=record.exit_code, error=record.error)
            else:
                self._emit(action="success", step=step.name, elapsed_s=record.elapsed_s)

        if token.is_cancelled:
            result.outcome = RunOutcome.CANCELED
        elif failed:
            result.outcome = RunOutcome.FAILURE
        else:
            result.outcome = RunOutcome.SUCCESS
        return result

    def _run_shell(
        self,
        index: int,
        step: Step,
        env: SharedEnvironment,
        token: CancellationToken,
        credentials: Mapping[str, str],
    ) -> StepRecord:
        res, env_file, path_file = invoke_step(
            self.store,
            index,
            step,
            step.command,
            env,
            credentials=credentials,
            token=token,
            redactor=self.redactor,
        )
        if res.killed or token.is_cancelled:
            return build_record(index, step, StepStatus.CANCELED, res=res, error="killed on cancellation")
        if res.returncode != 0:
            return build_record(index, step, StepStatus.FAILURE, res=res, error=f"exited with {res.returncode}")
        missing = missing_products(step, env.workdir)
        if missing:
            return build_record(
                index,
                step,
                StepStatus.FAILURE,
                res=res,
                error=f"did not produce declared artifact(s): {', '.join(missing)}",
            )
        try:
            env.apply_exports(env_file=env_file, path_file=path_file)
        except ValueError as e:
            return build_record(index, step, StepStatus.FAILURE, res=res, error=f"bad CIFLOW_ENV export: {e}")
        return build_record(index, step, StepStatus.SUCCESS, res=res)

from __future__ import annotations

"""Result reporting.

CONTRACT
- Inputs: ReportTargets (analysis, coverage), run outcome, SharedEnvironment,
  revision of the commit under test
- Outputs (required):
  - ReportResult(records, errors); one ReportRecord per target
  - logs/report.<kind>.stdout.log / .stderr.log for every publish attempt
- Invariants:
  - Nothing is published for a canceled run
  - Per target: credentials, then artifact, then publish
  - Credentials of every runnable target are resolved before the first publish
  - The publisher only ever sees the target's own credentials
- Failure:
  - Raises ConfigurationError if a runnable target lacks a credential
  - Missing / malformed artifact -> fatal ReportingError
  - Publisher failure -> ReportingError(kind="transport"), fatal only when
    `fail_ci_if_error` is set, otherwise logged as a warning
"""

import shlex
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from loguru import logger

from .artifacts.formats import VALIDATORS, ArtifactFormatError, find_profile_files
from .artifacts.schemas import ReportRecord
from .artifacts.store import ArtifactStore
from .concurrency import CancellationToken
from .config import ReportTarget
from .environment import SharedEnvironment
from .errors import ConfigurationError, ReportingError
from .model import RunOutcome
from .secrets import SecretStore, resolve
from .util.events import EventLog
from .util.paths import expand_path
from .util.redaction import Redactor
from .util.shell import run_cmd, shell_argv


@dataclass(frozen=True)
class PublishResult:
    ok: bool
    returncode: int
    details: str = ""


class Publisher(Protocol):
    def publish(
        self,
        target: ReportTarget,
        artifact: Path,
        *,
        revision: str | None,
        credentials: Mapping[str, str],
        env: SharedEnvironment,
    ) -> PublishResult: ...


def render_command(target: ReportTarget, artifact: Path, revision: str | None) -> str:
    """Fill the target's command template; paths and revision are shell-quoted."""
    values = {
        "findings": shlex.quote(str(artifact)),
        "report": shlex.quote(str(artifact)),
        "revision": shlex.quote(revision or ""),
        "verbose_flag": "--verbose" if target.verbose else "",
    }
    try:
        return target.run.format_map(values)
    except (KeyError, IndexError, ValueError) as e:
        raise ConfigurationError(f"Bad command template for {target.name!r}: {e}") from e


@dataclass
class CommandPublisher:
    """Publishes by running the target's configured upload command."""

    store: ArtifactStore
    redactor: Redactor = field(default_factory=Redactor)
    token: CancellationToken | None = None

    def publish(
        self,
        target: ReportTarget,
        artifact: Path,
        *,
        revision: str | None,
        credentials: Mapping[str, str],
        env: SharedEnvironment,
    ) -> PublishResult:
        command = render_command(target, artifact, revision)
        res = run_cmd(
            shell_argv(command, "sh"),
            cwd=env.workdir,
            stdout_path=self.store.path("logs", f"report.{target.kind}.stdout.log"),
            stderr_path=self.store.path("logs", f"report.{target.kind}.stderr.log"),
            env=env.flatten({"CI": "true"}, credentials),
            timeout_s=target.timeout_s,
            inherit_env=False,
            cancel=self.token,
            redactor=self.redactor,
        )
        if res.ok:
            return PublishResult(ok=True, returncode=0)
        tail = self.redactor.redact(res.stderr.strip().splitlines()[-1]) if res.stderr.strip() else ""
        return PublishResult(ok=False, returncode=res.returncode, details=tail or f"exited with {res.returncode}")


@dataclass
class ReportResult:
    records: list[ReportRecord] = field(default_factory=list)
    errors: list[ReportingError] = field(default_factory=list)

    @property
    def fatal(self) -> ReportingError | None:
        fatal_targets = {r.target for r in self.records if r.fatal}
        for err in self.errors:
            if err.target in fatal_targets:
                return err
        return None


@dataclass
class ResultReporter:
    secrets: SecretStore
    publisher: Publisher
    events: EventLog | None = None

    def _emit(self, **event: object) -> None:
        if self.events is not None:
            self.events.emit(stage="report", **event)

    def _skip(self, target: ReportTarget, reason: str) -> ReportRecord:
        self._emit(action="skipped", target=target.name, reason=reason)
        return ReportRecord(
            target=target.name, kind=target.kind, status="skipped", details=reason, artifact=target.artifact
        )

    def report(
        self,
        targets: Sequence[ReportTarget],
        outcome: RunOutcome,
        env: SharedEnvironment,
        revision: str | None = None,
    ) -> ReportResult:
        result = ReportResult()
        if outcome is RunOutcome.CANCELED:
            result.records = [self._skip(t, "run canceled") for t in targets]
            return result

        failed = outcome is RunOutcome.FAILURE
        runnable = [t for t in targets if t.condition.should_run(failed)]

        credentials: dict[str, dict[str, str]] = {}
        for t in runnable:
            found, missing = resolve(self.secrets, t.credentials)
            if missing:
                self._emit(action="missing_credentials", target=t.name, names=missing)
                raise ConfigurationError(f"Report target {t.name!r} needs missing credential(s): {', '.join(missing)}")
            credentials[t.name] = found

        for t in targets:
            if t not in runnable:
                result.records.append(self._skip(t, f"if: {t.condition.value}"))
                continue
            record, error = self._report_one(t, credentials[t.name], env, revision)
            result.records.append(record)
            if error is not None:
                result.errors.append(error)
        return result

    def _report_one(
        self,
        target: ReportTarget,
        credentials: Mapping[str, str],
        env: SharedEnvironment,
        revision: str | None,
    ) -> tuple[ReportRecord, ReportingError | None]:
        artifact = expand_path(target.artifact, env.workdir)
        try:
            count = VALIDATORS[target.kind](artifact)
        except ArtifactFormatError as e:
            kind = "missing_artifact" if e.missing else "malformed_artifact"
            err = ReportingError(target.name, kind, str(e))
            logger.error(str(err))
            self._emit(action="artifact_error", target=target.name, error_kind=kind, error=str(e))
            record = ReportRecord(
                target=target.name,
                kind=target.kind,
                status="failed",
                fatal=True,
                error_kind=kind,
                details=str(e),
                artifact=str(artifact),
            )
            return record, err

        if target.kind == "analysis":
            details = f"{count} issue(s), revision {revision or 'unknown'}"
        else:
            profiles = len(find_profile_files(env.workdir))
            details = f"{count} source file(s), {profiles} raw profile(s)"

        logger.info(f"Publishing {target.name}: {details}")
        self._emit(action="publish", target=target.name, details=details)
        pub = self.publisher.publish(target, artifact, revision=revision, credentials=credentials, env=env)
        if pub.ok:
            self._emit(action="published", target=target.name)
            record = ReportRecord(
                target=target.name,
                kind=target.kind,
                status="published",
                details=details,
                artifact=str(artifact),
                exit_code=pub.returncode,
            )
            return record, None

        err = ReportingError(target.name, "transport", pub.details or f"exited with {pub.returncode}")
        if target.fail_ci_if_error:
            logger.error(str(err))
        else:
            logger.warning(f"{err} (ignored, fail_ci_if_error is off)")
        self._emit(action="transport_error", target=target.name, exit_code=pub.returncode, fatal=target.fail_ci_if_error)
        record = ReportRecord(
            target=target.name,
            kind=target.kind,
            status="failed",
            fatal=target.fail_ci_if_error,
            error_kind="transport",
            details=pub.details,
            artifact=str(artifact),
            exit_code=pub.returncode,
        )
        return record, err

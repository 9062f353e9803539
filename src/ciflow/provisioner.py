from __future__ import annotations

"""Environment provisioning.

CONTRACT
- Inputs: ProvisionConfig (checkout + ordered ToolInstall actions), SharedEnvironment
- Outputs (required):
  - SharedEnvironment with tool paths / exports added
  - StepRecord per action (phase="provision"), logs/<nn>_<tool>.*.log
- Invariants:
  - Actions run once, in order, each idempotent (a passing `check` skips the install)
  - No retries
- Failure:
  - Raises ProvisioningError on the first failing action (checkout included)
  - Raises CancellationSignal if the run is canceled between or during actions
"""

from collections.abc import Mapping
from dataclasses import dataclass, field

from loguru import logger

from .artifacts.schemas import StepRecord
from .artifacts.store import ArtifactStore
from .concurrency import CancellationToken
from .config import CheckoutConfig, ProvisionConfig
from .environment import SharedEnvironment
from .errors import CancellationSignal, ProvisioningError
from .executor import build_record, invoke_step, missing_products, step_credentials
from .model import StepStatus
from .secrets import MappingSecretStore, SecretStore
from .steps import ToolInstall
from .util.events import EventLog
from .util.redaction import Redactor
from .util.shell import run_cmd


@dataclass
class EnvironmentProvisioner:
    store: ArtifactStore
    secrets: SecretStore = field(default_factory=MappingSecretStore)
    redactor: Redactor = field(default_factory=Redactor)
    events: EventLog | None = None
    run_id: str = ""
    records: list[StepRecord] = field(default_factory=list)

    def _emit(self, **event: object) -> None:
        if self.events is not None:
            self.events.emit(stage="provision", **event)

    def checkout(self, cfg: CheckoutConfig, env: SharedEnvironment) -> None:
        """Make sure the working tree is usable; unshallow it when full history is requested."""
        if not env.workdir.is_dir():
            raise ProvisioningError("checkout", f"working directory does not exist: {env.workdir}")
        if cfg.fetch_depth != 0 or not (env.workdir / ".git").exists():
            return
        probe = run_cmd(
            ["git", "rev-parse", "--is-shallow-repository"],
            cwd=env.workdir,
            stdout_path=self.store.path("logs", "checkout.probe.stdout.log"),
            stderr_path=self.store.path("logs", "checkout.probe.stderr.log"),
            timeout_s=30,
        )
        if probe.returncode != 0 or probe.stdout.strip() != "true":
            return
        logger.info("Shallow checkout; fetching full history")
        res = run_cmd(
            ["git", "fetch", "--unshallow", "--tags"],
            cwd=env.workdir,
            stdout_path=self.store.path("logs", "checkout.stdout.log"),
            stderr_path=self.store.path("logs", "checkout.stderr.log"),
            redactor=self.redactor,
        )
        if res.returncode != 0:
            raise ProvisioningError("checkout", "git fetch --unshallow failed", res.returncode)
        self._emit(action="unshallow")

    def install(
        self,
        tool: ToolInstall,
        env: SharedEnvironment,
        token: CancellationToken,
        index: int,
        *,
        credentials: Mapping[str, str] | None = None,
        phase: str = "steps",
    ) -> StepRecord:
        if tool.check:
            probe, _, _ = invoke_step(
                self.store,
                index,
                tool,
                tool.check,
                env,
                credentials=credentials,
                token=token,
                redactor=self.redactor,
                log_name=f"{tool.name}.check",
                extra_path=tool.path,
            )
            if probe.killed or token.is_cancelled:
                return build_record(index, tool, StepStatus.CANCELED, phase=phase, res=probe)
            if probe.returncode == 0:
                logger.info(f"{tool.tool} already present; skipping install")
                self._emit(action="present", tool=tool.tool)
                self._register(tool, env)
                return build_record(index, tool, StepStatus.SUCCESS, phase=phase, res=probe)

        res, env_file, path_file = invoke_step(
            self.store,
            index,
            tool,
            tool.install,
            env,
            credentials=credentials,
            token=token,
            redactor=self.redactor,
        )
        if res.killed or token.is_cancelled:
            return build_record(index, tool, StepStatus.CANCELED, phase=phase, res=res)
        if res.returncode != 0:
            return build_record(
                index, tool, StepStatus.FAILURE, phase=phase, res=res, error=f"installer exited with {res.returncode}"
            )
        missing = missing_products(tool, env.workdir)
        if missing:
            return build_record(
                index,
                tool,
                StepStatus.FAILURE,
                phase=phase,
                res=res,
                error=f"did not produce declared artifact(s): {', '.join(missing)}",
            )
        try:
            env.apply_exports(env_file=env_file, path_file=path_file)
        except ValueError as e:
            return build_record(index, tool, StepStatus.FAILURE, phase=phase, res=res, error=f"bad CIFLOW_ENV export: {e}")
        self._register(tool, env)
        self._emit(action="installed", tool=tool.tool, version=tool.version)
        return build_record(index, tool, StepStatus.SUCCESS, phase=phase, res=res)

    def _register(self, tool: ToolInstall, env: SharedEnvironment) -> None:
        for entry in tool.path:
            env.add_path(entry)
        for key, value in tool.exports.items():
            env.set(key, value)

    def provision(self, cfg: ProvisionConfig, env: SharedEnvironment, token: CancellationToken) -> list[StepRecord]:
        token.raise_if_cancelled(self.run_id)
        self._emit(action="checkout", fetch_depth=cfg.checkout.fetch_depth)
        self.checkout(cfg.checkout, env)

        for index, tool in enumerate(cfg.tools):
            token.raise_if_cancelled(self.run_id)
            logger.info(f"[{index:02d}] {tool.name}: provisioning {tool.tool}")
            self._emit(action="start", tool=tool.tool, step=tool.name)
            credentials = step_credentials(self.secrets, tool)
            record = self.install(tool, env, token, index, credentials=credentials, phase="provision")
            self.records.append(record)
            if record.status == StepStatus.CANCELED.value:
                raise CancellationSignal(self.run_id)
            if record.status == StepStatus.FAILURE.value:
                self._emit(action="failure", tool=tool.tool, exit_code=record.exit_code)
                raise ProvisioningError(tool.name, record.error or "install failed", record.exit_code)
        self._emit(action="complete", env=env.snapshot())
        return list(self.records)

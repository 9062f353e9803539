from __future__ import annotations

"""Environment health checks.

CONTRACT
- Inputs: Repo path, optional workflow file, secret store (default: process env)
- Outputs (required):
  - DoctorReport (ok=bool, items=[(name, status, details)])
- Invariants:
  - Checks: workflow validity, git binary, pipeline tools, credentials
  - Does not modify system state (read-only checks)
- Failure:
  - Returns DoctorReport with ok=False if critical checks fail
    (invalid workflow, git binary, missing credentials)
"""

from dataclasses import dataclass
from pathlib import Path

from .config import WorkflowConfig, resolve_workflow
from .errors import ConfigurationError
from .secrets import MappingSecretStore, SecretStore
from .util.shell import which

# Tools the bundled workflow shells out to; provisioning can install all but git.
PIPELINE_TOOLS = [
    ("rustup", "installs the pinned toolchain"),
    ("cargo", "clippy, nextest and sonar subcommands"),
    ("grcov", "lcov report generation"),
    ("cargo-nextest", "test runner"),
    ("anvil", "local chain used by tests"),
    ("sonar-scanner", "analysis upload"),
    ("codecov", "coverage upload"),
]


@dataclass(frozen=True)
class DoctorItem:
    name: str
    status: str
    details: str


@dataclass(frozen=True)
class DoctorReport:
    ok: bool
    items: list[DoctorItem]


def doctor_report(
    repo: Path,
    workflow_file: Path | None = None,
    secrets: SecretStore | None = None,
    verbose: bool = False,
) -> DoctorReport:
    items: list[DoctorItem] = []
    ok = True

    # 1. Critical: workflow definition
    workflow: WorkflowConfig | None = None
    try:
        workflow = resolve_workflow(repo, workflow_file)
        details = f"{workflow.source}: {len(workflow.provision.tools)} tools, {len(workflow.steps)} steps"
        items.append(DoctorItem("workflow", "OK", details))
    except ConfigurationError as e:
        ok = False
        items.append(DoctorItem("workflow", "FAIL", str(e)))

    # 2. Checkout
    if (repo / ".git").exists():
        items.append(DoctorItem("git repo", "OK", str(repo)))
    else:
        items.append(DoctorItem("git repo", "WARN", "Not a git repo; fetch_depth and revision lookup are skipped"))

    git_bin = which("git")
    if git_bin:
        items.append(DoctorItem("git binary", "OK", git_bin))
    else:
        ok = False
        items.append(DoctorItem("git binary", "FAIL", "git not found in PATH"))

    # 3. Pipeline tools (provisioning installs what is missing)
    for tool, purpose in PIPELINE_TOOLS:
        found = which(tool)
        if found:
            items.append(DoctorItem(tool, "OK", found if verbose else purpose))
        else:
            items.append(DoctorItem(tool, "INFO", f"not found; provisioned at run time ({purpose})"))

    # 4. Credentials (names only, never values)
    if workflow is not None:
        if secrets is None:
            secrets = MappingSecretStore.from_environ(workflow.credential_names())
        for name in sorted(workflow.credential_names()):
            if secrets.get(name) is not None:
                items.append(DoctorItem(f"secret {name}", "OK", "present"))
            else:
                ok = False
                items.append(DoctorItem(f"secret {name}", "FAIL", "missing; runs will stop with a configuration error"))

    return DoctorReport(ok=ok, items=items)

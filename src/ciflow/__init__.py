"""ciflow package.

Simple API for scripts and other orchestrators:

    import ciflow
    from ciflow.trigger import EventKind, TriggerEvent

    # Run the repo's workflow for a push to main
    result = ciflow.run("/path/to/repo", TriggerEvent(EventKind.PUSH, ref="main"))

    # result["status"] in {"SUCCESS", "FAILURE", "CANCELED", "REJECTED", "ERROR"}
"""

import asyncio
from pathlib import Path
from typing import Optional

__version__ = "0.1.0"

from .config import RunConfig, WorkflowConfig
from .errors import ConfigurationError
from .orchestrator import EXIT_CONFIG, run_sessions, run_workflow_session
from .secrets import MappingSecretStore, SecretStore
from .trigger import TriggerEvent
from .util.ids import new_run_id


def run(
    repo: str | Path,
    event: TriggerEvent,
    *,
    workflow_file: Optional[str | Path] = None,
    run_id: Optional[str] = None,
    secrets: Optional[SecretStore] = None,
) -> dict:
    """Run the workflow for one event. Returns structured result.

    Args:
        repo: Path to the repository checkout
        event: Trigger event descriptor
        workflow_file: Optional workflow YAML (default: <repo>/.ciflow/workflow.yaml, else bundled)
        run_id: Optional custom run ID (auto-generated if not provided)
        secrets: Credential store (default: empty, so credentialed targets fail fast)

    Returns:
        dict with keys: status, exit_code, run_dir, steps, failed_step
    """
    repo_path = Path(repo).resolve()
    cfg = RunConfig(
        repo_path=repo_path,
        run_id=run_id or new_run_id(),
        artifacts_root=repo_path / ".ciflow" / "runs",
        workflow_file=Path(workflow_file) if workflow_file else None,
    )
    try:
        result = asyncio.run(run_workflow_session(cfg, event, secrets=secrets or MappingSecretStore()))
    except ConfigurationError as e:
        return {
            "status": "ERROR",
            "exit_code": EXIT_CONFIG,
            "run_dir": None,
            "steps": [],
            "failed_step": None,
            "error": str(e),
        }

    return {
        "status": result.status,
        "exit_code": result.exit_code,
        "run_dir": str(result.run_dir) if result.run_dir else None,
        "steps": [(r.name, r.status) for r in result.steps],
        "failed_step": result.failed_step,
    }


__all__ = [
    "run",
    "RunConfig",
    "WorkflowConfig",
    "TriggerEvent",
    "MappingSecretStore",
    "run_workflow_session",
    "run_sessions",
    "__version__",
]

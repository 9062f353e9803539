from __future__ import annotations

"""Artifact schemas.

CONTRACT
- Inputs: Pydantic models
- Outputs:
  - Validated JSON-serializable objects
- Invariants:
  - Defines the shape of all run artifacts (RUN.json, RUN_STATUS.json, STEPS.json, REPORT.json)
  - All schemas have schema_version int field
- Failure:
  - Raises ValidationError on schema mismatch
"""

from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

RunState = Literal["PENDING", "RUNNING", "SUCCESS", "FAILURE", "CANCELED"]


class RunStatus(BaseModel):
    schema_version: int = 1
    run_id: str
    workflow: str
    status: RunState
    message: str = ""
    exit_code: int | None = None
    failed_step: str | None = None
    error_kind: str | None = None
    superseded_by: str | None = None


class RunMeta(BaseModel):
    schema_version: int = 1
    run_id: str
    workflow: str
    workflow_source: str | None = None
    repo_path: str
    group_key: str
    event: dict[str, Any] = Field(default_factory=dict)
    superseded: str | None = None
    steps: list[dict[str, Any]] = Field(default_factory=list)


class StepRecord(BaseModel):
    schema_version: int = 1
    index: int
    name: str
    kind: Literal["shell", "tool-install"]
    phase: Literal["provision", "steps"] = "steps"
    status: Literal["success", "failure", "skipped", "canceled"]
    condition: str = "success"
    exit_code: int | None = None
    elapsed_s: float = 0.0
    stdout_log: str | None = None
    stderr_log: str | None = None
    error: str | None = None

    def decision(self) -> tuple[str, str]:
        """(name, status) pair; what the determinism guarantee is stated over."""
        return self.name, self.status


class ReportRecord(BaseModel):
    schema_version: int = 1
    target: str
    kind: Literal["analysis", "coverage"]
    status: Literal["published", "failed", "skipped"]
    fatal: bool = False
    error_kind: str | None = None
    details: str = ""
    artifact: str | None = None
    exit_code: int | None = None


def validate_run_status(data: dict[str, Any]) -> tuple[bool, RunStatus | None, str]:
    """Validate RUN_STATUS.json against schema."""
    try:
        status = RunStatus(**data)
        return True, status, ""
    except ValidationError as e:
        return False, None, str(e)

from __future__ import annotations

"""Configuration models.

CONTRACT
- Inputs: YAML workflow file path (workflow.yaml) or dictionary data
- Outputs (required):
  - Validated WorkflowConfig (triggers, concurrency, provision, steps, report)
  - RunConfig for one invocation
- Invariants:
  - Step names are unique and match validate_step_name()
  - Every step is exactly one of `run` (ShellCommand) or `install` (ToolInstall)
  - Defaults reproduce the hosted coverage workflow (push to main, PR lifecycle
    opened/synchronize/reopened/ready_for_review, manual dispatch)
- Failure:
  - Raises ConfigurationError on invalid schema, names or duplicate steps
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import jsonschema
import yaml

from .errors import ConfigurationError
from .steps import RunCondition, ShellCommand, Step, ToolInstall
from .trigger import DEFAULT_PR_ACTIONS, TriggerPolicy
from .util.ids import validate_step_name
from .util.paths import read_template

DEFAULT_WORKFLOW_TEMPLATE = "workflow.yaml"
REPO_WORKFLOW_PATH = Path(".ciflow") / "workflow.yaml"

TargetKind = Literal["analysis", "coverage"]


@dataclass(frozen=True)
class CheckoutConfig:
    fetch_depth: int = 1


@dataclass(frozen=True)
class ProvisionConfig:
    checkout: CheckoutConfig = field(default_factory=CheckoutConfig)
    tools: list[ToolInstall] = field(default_factory=list)


@dataclass(frozen=True)
class ConcurrencyConfig:
    enabled: bool = True


@dataclass(frozen=True)
class ReportTarget:
    name: str
    kind: TargetKind
    artifact: str
    run: str
    credentials: tuple[str, ...] = ()
    fail_ci_if_error: bool = False
    verbose: bool = False
    condition: RunCondition = RunCondition.SUCCESS
    timeout_s: float | None = None


@dataclass(frozen=True)
class WorkflowConfig:
    name: str
    triggers: TriggerPolicy = field(default_factory=TriggerPolicy)
    concurrency: ConcurrencyConfig = field(default_factory=ConcurrencyConfig)
    provision: ProvisionConfig = field(default_factory=ProvisionConfig)
    steps: list[Step] = field(default_factory=list)
    report: list[ReportTarget] = field(default_factory=list)
    source: str | None = None

    def credential_names(self) -> set[str]:
        names: set[str] = set()
        for s in [*self.provision.tools, *self.steps]:
            names.update(s.secrets)
        for t in self.report:
            names.update(t.credentials)
        return names


@dataclass(frozen=True)
class RunConfig:
    repo_path: Path
    run_id: str
    artifacts_root: Path
    workflow_file: Path | None = None

    def run_dir(self) -> Path:
        return self.artifacts_root / self.run_id


_CONDITION = {"type": "string", "enum": [c.value for c in RunCondition]}
_STR_LIST = {"type": "array", "items": {"type": "string"}}
_ENV = {"type": "object", "additionalProperties": {"type": ["string", "number", "boolean"]}}

_STEP_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "run": {"type": "string"},
        "install": {"type": "string"},
        "tool": {"type": "string"},
        "check": {"type": "string"},
        "version": {"type": "string"},
        "path": _STR_LIST,
        "exports": _ENV,
        "shell": {"type": "string", "enum": ["sh", "bash"]},
        "env": _ENV,
        "if": _CONDITION,
        "secrets": _STR_LIST,
        "working_directory": {"type": "string"},
        "timeout_s": {"type": "number", "exclusiveMinimum": 0},
        "produces": _STR_LIST,
    },
    "required": ["name"],
    "oneOf": [{"required": ["run"]}, {"required": ["install"]}],
    "additionalProperties": False,
}

_TARGET_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "run": {"type": "string"},
        "credentials": _STR_LIST,
        "fail_ci_if_error": {"type": "boolean"},
        "verbose": {"type": "boolean"},
        "if": _CONDITION,
        "timeout_s": {"type": "number", "exclusiveMinimum": 0},
    },
    "required": ["run"],
}

WORKFLOW_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "on": {
            "type": "object",
            "properties": {
                "push": {
                    "type": ["object", "null"],
                    "properties": {"branches": _STR_LIST},
                },
                "pull_request": {
                    "type": ["object", "null"],
                    "properties": {"types": _STR_LIST},
                },
                "manual": {"type": "boolean"},
            },
            "additionalProperties": False,
        },
        "concurrency": {
            "type": "object",
            "properties": {"enabled": {"type": "boolean"}},
        },
        "provision": {
            "type": "object",
            "properties": {
                "checkout": {
                    "type": "object",
                    "properties": {"fetch_depth": {"type": "integer", "minimum": 0}},
                },
                "tools": {"type": "array", "items": _STEP_SCHEMA},
            },
        },
        "steps": {"type": "array", "items": _STEP_SCHEMA},
        "report": {
            "type": "object",
            "properties": {
                "analysis": {
                    **_TARGET_SCHEMA,
                    "properties": {**_TARGET_SCHEMA["properties"], "findings": {"type": "string"}},
                    "required": ["run", "findings"],
                },
                "coverage": {
                    **_TARGET_SCHEMA,
                    "properties": {**_TARGET_SCHEMA["properties"], "report": {"type": "string"}},
                    "required": ["run", "report"],
                },
            },
            "additionalProperties": False,
        },
    },
    "required": ["name", "steps"],
}


def _str_env(raw: dict[str, Any] | None) -> dict[str, str]:
    out: dict[str, str] = {}
    for k, v in (raw or {}).items():
        if isinstance(v, bool):
            out[str(k)] = "true" if v else "false"
        else:
            out[str(k)] = str(v)
    return out


def _parse_step(raw: dict[str, Any]) -> Step:
    name = validate_step_name(str(raw["name"]))
    common: dict[str, Any] = {
        "name": name,
        "shell": str(raw.get("shell", "sh")),
        "env": _str_env(raw.get("env")),
        "condition": RunCondition(raw.get("if", RunCondition.SUCCESS.value)),
        "secrets": tuple(raw.get("secrets", []) or []),
        "working_directory": raw.get("working_directory"),
        "timeout_s": float(raw["timeout_s"]) if raw.get("timeout_s") is not None else None,
        "produces": tuple(raw.get("produces", []) or []),
    }
    if "install" in raw:
        return ToolInstall(
            tool=str(raw.get("tool", name)),
            install=str(raw["install"]),
            check=raw.get("check"),
            version=raw.get("version"),
            path=tuple(raw.get("path", []) or []),
            exports=_str_env(raw.get("exports")),
            **common,
        )
    return ShellCommand(run=str(raw["run"]), **common)


def _parse_target(kind: TargetKind, raw: dict[str, Any]) -> ReportTarget:
    artifact_key = "findings" if kind == "analysis" else "report"
    default_name = "Static analysis upload" if kind == "analysis" else "Coverage upload"
    return ReportTarget(
        name=validate_step_name(str(raw.get("name", default_name))),
        kind=kind,
        artifact=str(raw[artifact_key]),
        run=str(raw["run"]),
        credentials=tuple(raw.get("credentials", []) or []),
        # Coverage uploads are fatal unless explicitly relaxed.
        fail_ci_if_error=bool(raw.get("fail_ci_if_error", kind == "coverage")),
        verbose=bool(raw.get("verbose", False)),
        condition=RunCondition(raw.get("if", RunCondition.SUCCESS.value)),
        timeout_s=float(raw["timeout_s"]) if raw.get("timeout_s") is not None else None,
    )


def parse_workflow(data: dict[str, Any], source: str | None = None) -> WorkflowConfig:
    # YAML 1.1 reads a bare `on:` key as boolean True.
    if True in data and "on" not in data:
        data = {("on" if k is True else k): v for k, v in data.items()}
    try:
        jsonschema.validate(instance=data, schema=WORKFLOW_SCHEMA)
    except jsonschema.ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigurationError(f"Invalid workflow schema at {where}: {e.message}") from e

    try:
        steps = [_parse_step(s) for s in data.get("steps", [])]
        prov_raw = data.get("provision", {}) or {}
        tools = [_parse_step(s) for s in prov_raw.get("tools", []) or []]
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    for t in tools:
        if not isinstance(t, ToolInstall):
            raise ConfigurationError(f"Provision entry {t.name!r} must use `install`, not `run`")

    seen: set[str] = set()
    for s in [*tools, *steps]:
        if s.name in seen:
            raise ConfigurationError(f"Duplicate step name: {s.name!r}")
        seen.add(s.name)

    on_raw = data.get("on")
    if on_raw is None:
        triggers = TriggerPolicy()
    else:
        push = on_raw.get("push", None) if "push" in on_raw else None
        pr = on_raw.get("pull_request", None) if "pull_request" in on_raw else None
        triggers = TriggerPolicy(
            push_enabled="push" in on_raw,
            push_branches=tuple((push or {}).get("branches", ["main"])),
            pull_request_enabled="pull_request" in on_raw,
            pull_request_actions=tuple((pr or {}).get("types", DEFAULT_PR_ACTIONS)),
            manual=bool(on_raw.get("manual", True)),
        )

    report_raw = data.get("report", {}) or {}
    report: list[ReportTarget] = []
    try:
        for kind in ("analysis", "coverage"):
            if kind in report_raw:
                report.append(_parse_target(kind, report_raw[kind]))
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    checkout_raw = prov_raw.get("checkout", {}) or {}
    return WorkflowConfig(
        name=str(data["name"]),
        triggers=triggers,
        concurrency=ConcurrencyConfig(
            enabled=bool((data.get("concurrency", {}) or {}).get("enabled", True))
        ),
        provision=ProvisionConfig(
            checkout=CheckoutConfig(fetch_depth=int(checkout_raw.get("fetch_depth", 1))),
            tools=tools,
        ),
        steps=steps,
        report=report,
        source=source,
    )


def load_workflow_text(text: str, source: str | None = None) -> WorkflowConfig:
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid workflow YAML ({source or 'inline'}): {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError("Workflow file must contain a mapping at the top level")
    return parse_workflow(data, source=source)


def load_workflow_file(path: Path) -> WorkflowConfig:
    if not path.exists():
        raise ConfigurationError(f"Workflow file not found: {path}")
    return load_workflow_text(path.read_text(encoding="utf-8"), source=str(path))


def resolve_workflow(repo: Path, workflow_file: Path | None = None) -> WorkflowConfig:
    """Explicit file, then <repo>/.ciflow/workflow.yaml, then the bundled template."""
    if workflow_file is not None:
        return load_workflow_file(workflow_file)
    repo_workflow = repo / REPO_WORKFLOW_PATH
    if repo_workflow.exists():
        return load_workflow_file(repo_workflow)
    return load_workflow_text(
        read_template(DEFAULT_WORKFLOW_TEMPLATE), source=f"<bundled {DEFAULT_WORKFLOW_TEMPLATE}>"
    )


if __name__ == "__main__":
    import argparse
    import sys

    parser = argparse.ArgumentParser(description="Workflow loader CLI")
    parser.add_argument("--workflow", required=True, help="Path to workflow.yaml")
    args = parser.parse_args()

    try:
        cfg = load_workflow_file(Path(args.workflow))
        print(f"Loaded workflow {cfg.name!r}: {len(cfg.provision.tools)} tools, {len(cfg.steps)} steps.")
        print(f"Triggers: {cfg.triggers}")
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

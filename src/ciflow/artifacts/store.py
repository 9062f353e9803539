from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..util.paths import safe_filename
from .schemas import ReportRecord, RunMeta, RunStatus, StepRecord


@dataclass(frozen=True)
class ArtifactStore:
    """Run directory manager.

    CONTRACT
    - Inputs: Run directory path
    - Outputs:
      - Writes files to .ciflow/runs/<id>/...
    - Invariants:
      - Enforces path safety (prevents traversal outside run_dir)
      - Ensures parent directories exist on write
    - Failure:
      - Raises ValueError on unsafe path access
    """
    run_dir: Path

    def ensure(self) -> None:
        self.run_dir.mkdir(parents=True, exist_ok=True)
        (self.run_dir / "logs").mkdir(exist_ok=True)
        (self.run_dir / "exports").mkdir(exist_ok=True)

    def exists(self) -> bool:
        return self.run_dir.exists()

    def path(self, *parts: str) -> Path:
        p = self.run_dir.joinpath(*parts)
        base = self.run_dir.resolve(strict=False)
        try:
            p.resolve(strict=False).relative_to(base)
        except ValueError as exc:
            raise ValueError(f"Refusing to access path outside run_dir: {p}") from exc
        return p

    def write_json(self, rel: str, data: Any) -> Path:
        p = self.path(rel)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        return p

    def read_json(self, rel: str) -> Any:
        p = self.path(rel)
        return json.loads(p.read_text(encoding="utf-8"))

    def write_text(self, rel: str, text: str) -> Path:
        p = self.path(rel)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(text, encoding="utf-8")
        return p

    def write_run_meta(self, meta: RunMeta) -> Path:
        return self.write_json("RUN.json", meta.model_dump())

    def write_status(self, status: RunStatus) -> Path:
        return self.write_json("RUN_STATUS.json", status.model_dump())

    def read_status(self) -> RunStatus:
        return RunStatus(**self.read_json("RUN_STATUS.json"))

    def write_steps(self, records: Sequence[StepRecord]) -> Path:
        return self.write_json("STEPS.json", [r.model_dump() for r in records])

    def read_steps(self) -> list[StepRecord]:
        return [StepRecord(**r) for r in self.read_json("STEPS.json")]

    def write_report(self, records: Sequence[ReportRecord]) -> Path:
        return self.write_json("REPORT.json", [r.model_dump() for r in records])

    def step_log_paths(self, index: int, name: str) -> tuple[Path, Path]:
        stem = f"{index:02d}_{safe_filename(name, default='step')}"
        return self.path("logs", f"{stem}.stdout.log"), self.path("logs", f"{stem}.stderr.log")

    def export_files(self, index: int) -> tuple[Path, Path]:
        """Fresh CIFLOW_ENV / CIFLOW_PATH files for one step."""
        env_file = self.path("exports", f"{index:02d}.env")
        path_file = self.path("exports", f"{index:02d}.path")
        env_file.parent.mkdir(parents=True, exist_ok=True)
        env_file.write_text("", encoding="utf-8")
        path_file.write_text("", encoding="utf-8")
        return env_file, path_file

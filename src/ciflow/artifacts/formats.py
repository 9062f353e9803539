from __future__ import annotations

"""Artifact file formats.

CONTRACT
- Inputs: paths to produced artifacts
- Outputs:
  - validate_findings(): issue count of a JSON external-issues report
  - validate_lcov(): source-file count of an lcov coverage report
  - profile helpers for the LLVM raw profile naming scheme
- Invariants:
  - Findings files are JSON objects with an `issues` list
  - lcov files are non-empty, contain at least one `SF:` record and
    every record is closed by `end_of_record`
- Failure:
  - Raises ArtifactFormatError (missing=True when the file is absent or empty)
"""

import json
from pathlib import Path

# %p = pid, %m = binary signature; both expanded by the instrumented binary.
PROFILE_FILE_TEMPLATE = "llvm_profile-instrumentation-%p-%m.profraw"
PROFILE_FILE_GLOB = "llvm_profile-instrumentation-*-*.profraw"


class ArtifactFormatError(ValueError):
    def __init__(self, path: Path, message: str, missing: bool = False) -> None:
        self.path = path
        self.missing = missing
        super().__init__(f"{path}: {message}")


def profile_file_name(pid: int, mmap_id: str) -> str:
    return PROFILE_FILE_TEMPLATE.replace("%p", str(pid)).replace("%m", mmap_id)


def find_profile_files(root: Path) -> list[Path]:
    return sorted(p for p in root.rglob(PROFILE_FILE_GLOB) if p.is_file())


def _read_nonempty(path: Path) -> str:
    if not path.exists():
        raise ArtifactFormatError(path, "artifact not found", missing=True)
    if not path.is_file():
        raise ArtifactFormatError(path, "artifact is not a regular file", missing=True)
    text = path.read_text(encoding="utf-8", errors="replace")
    if not text.strip():
        raise ArtifactFormatError(path, "artifact is empty", missing=True)
    return text


def validate_findings(path: Path) -> int:
    text = _read_nonempty(path)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ArtifactFormatError(path, f"not valid JSON ({e.msg} at line {e.lineno})") from e
    if not isinstance(data, dict) or not isinstance(data.get("issues"), list):
        raise ArtifactFormatError(path, "expected an object with an `issues` list")
    for i, issue in enumerate(data["issues"]):
        if not isinstance(issue, dict):
            raise ArtifactFormatError(path, f"issue #{i} is not an object")
    return len(data["issues"])


def validate_lcov(path: Path) -> int:
    text = _read_nonempty(path)
    sources = 0
    open_record = False
    for raw in text.splitlines():
        line = raw.strip()
        if line.startswith("SF:"):
            if open_record:
                raise ArtifactFormatError(path, "SF record opened before end_of_record")
            open_record = True
            sources += 1
        elif line == "end_of_record":
            if not open_record:
                raise ArtifactFormatError(path, "end_of_record without SF")
            open_record = False
    if sources == 0:
        raise ArtifactFormatError(path, "no SF: records")
    if open_record:
        raise ArtifactFormatError(path, "last record not terminated by end_of_record")
    return sources


VALIDATORS = {
    "analysis": validate_findings,
    "coverage": validate_lcov,
}

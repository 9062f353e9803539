from __future__ import annotations

"""Shared environment owned by one workflow run.

CONTRACT
- Inputs: base process environment (credentials already removed), working dir
- Outputs:
  - flatten() -> complete child environment for one step
- Invariants:
  - Mutation is additive: set() / add_path() / apply_exports() only add or override
  - Path additions are prepended to PATH, most recent first
  - Credentials are only present in a flattened env when passed explicitly
- Failure:
  - apply_exports() raises ValueError on malformed KEY=VALUE lines
"""

import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .util.paths import expand_path


@dataclass
class SharedEnvironment:
    workdir: Path
    base: dict[str, str] = field(default_factory=dict)
    variables: dict[str, str] = field(default_factory=dict)
    path_entries: list[str] = field(default_factory=list)

    @classmethod
    def from_process(
        cls,
        workdir: Path,
        exclude: Iterable[str] = (),
        environ: Mapping[str, str] | None = None,
    ) -> SharedEnvironment:
        src = os.environ if environ is None else environ
        skip = set(exclude)
        return cls(workdir=workdir, base={k: v for k, v in src.items() if k not in skip})

    def set(self, name: str, value: str) -> None:
        self.variables[name] = value

    def add_path(self, entry: str | Path) -> None:
        resolved = str(expand_path(str(entry), self.workdir))
        if resolved in self.path_entries:
            self.path_entries.remove(resolved)
        self.path_entries.insert(0, resolved)

    @property
    def search_path(self) -> str:
        parts = list(self.path_entries)
        if self.base.get("PATH"):
            parts.append(self.base["PATH"])
        return os.pathsep.join(parts)

    def flatten(
        self,
        overrides: Mapping[str, str] | None = None,
        credentials: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        env = dict(self.base)
        env.update(self.variables)
        env["PATH"] = self.search_path
        if overrides:
            env.update({k: str(v) for k, v in overrides.items()})
        if credentials:
            env.update(credentials)
        return env

    def apply_exports(self, env_file: Path | None = None, path_file: Path | None = None) -> None:
        """Pick up what a step wrote to its CIFLOW_ENV / CIFLOW_PATH files."""
        if path_file is not None and path_file.exists():
            for line in path_file.read_text(encoding="utf-8").splitlines():
                if line.strip():
                    self.add_path(line.strip())
        if env_file is not None and env_file.exists():
            for key, value in parse_env_file(env_file.read_text(encoding="utf-8")):
                self.set(key, value)

    def snapshot(self) -> dict[str, object]:
        # No base env here: it is the runner's process env and may be large.
        return {
            "workdir": str(self.workdir),
            "variables": dict(self.variables),
            "path_entries": list(self.path_entries),
        }


def parse_env_file(text: str) -> list[tuple[str, str]]:
    """Parse ``KEY=VALUE`` lines plus ``KEY<<DELIM`` heredoc blocks."""
    out: list[tuple[str, str]] = []
    lines = text.splitlines()
    i = 0
    while i < len(lines):
        line = lines[i]
        i += 1
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        if "<<" in line and ("=" not in line or line.index("<<") < line.index("=")):
            key, delim = line.split("<<", 1)
            body: list[str] = []
            while i < len(lines) and lines[i] != delim:
                body.append(lines[i])
                i += 1
            if i >= len(lines):
                raise ValueError(f"Unterminated heredoc for {key!r}")
            i += 1
            out.append((key.strip(), "\n".join(body)))
            continue
        if "=" not in line:
            raise ValueError(f"Malformed env export line: {line!r}")
        key, value = line.split("=", 1)
        if not key.strip():
            raise ValueError(f"Malformed env export line: {line!r}")
        out.append((key.strip(), value))
    return out

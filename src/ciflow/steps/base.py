from __future__ import annotations

"""Step definitions.

CONTRACT
- Outputs:
  - ShellCommand / ToolInstall: the two step variants a workflow is built from
  - RunCondition: when a step is eligible to run
- Invariants:
  - Steps are immutable once loaded
  - condition defaults to SUCCESS (run only if every prior step succeeded)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Union


class RunCondition(str, Enum):
    SUCCESS = "success"
    ALWAYS = "always"
    FAILURE = "failure"

    def should_run(self, failed: bool) -> bool:
        if self is RunCondition.ALWAYS:
            return True
        if self is RunCondition.FAILURE:
            return failed
        return not failed


@dataclass(frozen=True)
class ShellCommand:
    name: str
    run: str
    shell: str = "sh"
    env: dict[str, str] = field(default_factory=dict)
    condition: RunCondition = RunCondition.SUCCESS
    secrets: tuple[str, ...] = ()
    working_directory: str | None = None
    timeout_s: float | None = None
    produces: tuple[str, ...] = ()

    kind = "shell"

    @property
    def command(self) -> str:
        return self.run


@dataclass(frozen=True)
class ToolInstall:
    """Installs one external tool.

    ``check`` makes the action idempotent: when it exits 0 the tool is
    considered present and ``install`` is not run. ``path`` entries and
    ``exports`` are added to the shared environment once the tool is there.
    """

    name: str
    tool: str
    install: str
    check: str | None = None
    version: str | None = None
    path: tuple[str, ...] = ()
    exports: dict[str, str] = field(default_factory=dict)
    shell: str = "sh"
    env: dict[str, str] = field(default_factory=dict)
    condition: RunCondition = RunCondition.SUCCESS
    secrets: tuple[str, ...] = ()
    working_directory: str | None = None
    timeout_s: float | None = None
    produces: tuple[str, ...] = ()

    kind = "tool-install"

    @property
    def command(self) -> str:
        return self.install


Step = Union[ShellCommand, ToolInstall]

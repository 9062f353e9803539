from __future__ import annotations

"""Run-level domain types.

CONTRACT
- Outputs:
  - RunOutcome, StepStatus enums
  - WorkflowRun (identity + mutable outcome + cancellation token)
- Invariants:
  - A canceled run never leaves the canceled outcome
  - group_key = "<workflow>-<ref or run_id>"; pull requests use
    "<workflow>-pr-<head ref>"
"""

import threading
from dataclasses import dataclass, field
from enum import Enum

from .concurrency import CancellationToken
from .trigger import EventKind


class RunOutcome(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELED = "canceled"

    @property
    def terminal(self) -> bool:
        return self is not RunOutcome.PENDING


class StepStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"
    CANCELED = "canceled"


def group_key(workflow: str, ref: str | None, run_id: str, kind: EventKind | None = None) -> str:
    if ref and kind is EventKind.PULL_REQUEST:
        # A PR head branch may share a name with a pushed branch (forks).
        return f"{workflow}-pr-{ref}"
    return f"{workflow}-{ref or run_id}"


@dataclass
class WorkflowRun:
    workflow: str
    run_id: str
    event_kind: EventKind
    ref: str | None = None
    token: CancellationToken = field(default_factory=CancellationToken)
    outcome: RunOutcome = RunOutcome.PENDING
    superseded_by: str | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def group_key(self) -> str:
        return group_key(self.workflow, self.ref, self.run_id, self.event_kind)

    @property
    def cancelled(self) -> bool:
        return self.token.is_cancelled

    def cancel(self, superseded_by: str | None = None) -> None:
        with self._lock:
            if self.outcome in (RunOutcome.SUCCESS, RunOutcome.FAILURE):
                # Already finished; nothing left to stop.
                return
            self.outcome = RunOutcome.CANCELED
            self.superseded_by = superseded_by
        self.token.cancel()

    def finish(self, outcome: RunOutcome) -> RunOutcome:
        with self._lock:
            if self.outcome is RunOutcome.CANCELED or self.token.is_cancelled:
                self.outcome = RunOutcome.CANCELED
            else:
                self.outcome = outcome
            return self.outcome

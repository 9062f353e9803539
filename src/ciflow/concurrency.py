"""Concurrency gate and cooperative cancellation.

At most one run per group key is active. Admitting a run for a key that
already has an active run cancels the older one: its outcome flips to
canceled and whatever process it is waiting on is killed before ``admit``
returns. Runs under different keys never interact.
"""

from __future__ import annotations

import subprocess
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

from .errors import CancellationSignal
from .util.shell import kill_process_tree

if TYPE_CHECKING:
    from .model import WorkflowRun


class CancellationToken:
    """Thread-safe cancellation flag that also kills attached processes."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._procs: set[subprocess.Popen] = set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            self._event.set()
            procs = list(self._procs)
        for proc in procs:
            kill_process_tree(proc)

    def attach(self, proc: subprocess.Popen) -> None:
        with self._lock:
            if not self._event.is_set():
                self._procs.add(proc)
                return
        kill_process_tree(proc)

    def detach(self, proc: subprocess.Popen) -> None:
        with self._lock:
            self._procs.discard(proc)

    def raise_if_cancelled(self, run_id: str = "") -> None:
        if self._event.is_set():
            raise CancellationSignal(run_id)


@dataclass(frozen=True)
class Admission:
    proceed: bool
    group_key: str
    superseded: str | None = None


class ConcurrencyGate:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: dict[str, WorkflowRun] = {}

    def admit(self, run: WorkflowRun) -> Admission:
        key = run.group_key
        with self._lock:
            previous = self._active.get(key)
            self._active[key] = run
        superseded = None
        if previous is not None and previous is not run:
            superseded = previous.run_id
            logger.info(f"Run {run.run_id} supersedes {previous.run_id} in group {key}")
            previous.cancel(superseded_by=run.run_id)
        return Admission(proceed=not run.cancelled, group_key=key, superseded=superseded)

    def release(self, run: WorkflowRun) -> None:
        with self._lock:
            if self._active.get(run.group_key) is run:
                del self._active[run.group_key]

    def active(self, key: str) -> WorkflowRun | None:
        with self._lock:
            return self._active.get(key)

    def active_keys(self) -> list[str]:
        with self._lock:
            return sorted(self._active)

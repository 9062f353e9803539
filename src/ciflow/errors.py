"""Error taxonomy for workflow runs.

Every failure a run can hit maps onto one of these; the orchestrator turns
them into the run's terminal outcome instead of retrying.
"""

from __future__ import annotations


class CiflowError(Exception):
    """Base class for run failures."""


class ConfigurationError(CiflowError):
    """Invalid workflow definition or a missing credential. Raised before anything runs."""


class ProvisioningError(CiflowError):
    """Checkout or tool installation failed."""

    def __init__(self, action: str, message: str, returncode: int | None = None) -> None:
        self.action = action
        self.returncode = returncode
        super().__init__(f"{action}: {message}")


class StepExecutionError(CiflowError):
    """A step exited non-zero or did not produce its declared artifacts."""

    def __init__(self, step: str, returncode: int, message: str = "") -> None:
        self.step = step
        self.returncode = returncode
        detail = message or f"exited with {returncode}"
        super().__init__(f"step {step!r} {detail}")


class ReportingError(CiflowError):
    """Publishing a result failed.

    ``kind`` is one of ``missing_artifact``, ``malformed_artifact`` or ``transport``.
    """

    def __init__(self, target: str, kind: str, message: str) -> None:
        self.target = target
        self.kind = kind
        super().__init__(f"{target} [{kind}]: {message}")


class CancellationSignal(Exception):
    """The run was superseded. Not a failure: it yields the canceled outcome."""

    def __init__(self, run_id: str, superseded_by: str | None = None) -> None:
        self.run_id = run_id
        self.superseded_by = superseded_by
        msg = f"run {run_id} canceled"
        if superseded_by:
            msg += f" (superseded by {superseded_by})"
        super().__init__(msg)

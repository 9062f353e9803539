from __future__ import annotations

"""Shell command execution.

CONTRACT
- Inputs: Command string or argv list, cwd, env, optional timeout and cancel token
- Outputs (required):
  - CmdResult(returncode, stdout_path, stderr_path, killed)
- Invariants:
  - Writes stdout/stderr to specified files; stdin is never connected
  - Respects timeout_s (returncode 124 if exceeded)
  - A cancelled token kills the whole process group
  - Redacts captured output when a redactor is given
- Failure:
  - Returns CmdResult with exit code (does NOT raise on non-zero exit)
"""

import os
import signal
import subprocess
import tempfile
import time
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..concurrency import CancellationToken
    from .redaction import Redactor

TIMEOUT_EXIT_CODE = 124
KILLED_EXIT_CODE = 137


def which(cmd: str, path: str | None = None) -> str | None:
    search = path if path is not None else os.environ.get("PATH", "")
    for p in search.split(os.pathsep):
        if not p:
            continue
        candidate = Path(p) / cmd
        if candidate.exists() and os.access(candidate, os.X_OK):
            return str(candidate)
    return None


@dataclass(frozen=True)
class CmdResult:
    cmd: str
    returncode: int
    stdout_path: Path
    stderr_path: Path
    elapsed_s: float
    stdout_bytes: int
    stderr_bytes: int
    killed: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.killed

    @property
    def stdout(self) -> str:
        return self.stdout_path.read_text(encoding="utf-8", errors="replace")

    @property
    def stderr(self) -> str:
        return self.stderr_path.read_text(encoding="utf-8", errors="replace")


def kill_process_tree(proc: subprocess.Popen) -> None:
    """Kill a process started with ``start_new_session=True`` and its children."""
    if proc.poll() is not None:
        return
    try:
        if os.name == "posix":
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        pass


def _temp_log(prefix: str) -> Path:
    tf = tempfile.NamedTemporaryFile(delete=False, prefix=prefix)
    tf.close()
    return Path(tf.name)


def _redact_file(path: Path, redactor: Redactor) -> None:
    if not path.exists():
        return
    text = path.read_text(encoding="utf-8", errors="replace")
    cleaned = redactor.redact(text)
    if cleaned != text:
        path.write_text(cleaned, encoding="utf-8")


def run_cmd(
    cmd: str | list[str],
    cwd: Path,
    stdout_path: Path | None = None,
    stderr_path: Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout_s: float | None = None,
    *,
    inherit_env: bool = True,
    cancel: CancellationToken | None = None,
    redactor: Redactor | None = None,
) -> CmdResult:
    """Run a command and store stdout/stderr to files.

    CONTRACT:
    - Accepts cmd as str (run with shell=True) or list[str] (run with shell=False).
    - ``env`` is merged over ``os.environ`` unless ``inherit_env`` is False, in which
      case it is the complete environment of the child.
    - Always writes stdout/stderr files (creates temp if not provided).
    - Never raises for non-zero exit; caller inspects return code.
    """
    if stdout_path is None:
        stdout_path = _temp_log("ciflow_stdout_")
    if stderr_path is None:
        stderr_path = _temp_log("ciflow_stderr_")

    stdout_path.parent.mkdir(parents=True, exist_ok=True)
    stderr_path.parent.mkdir(parents=True, exist_ok=True)

    use_shell = isinstance(cmd, str)
    if env is None:
        child_env = None
    elif inherit_env:
        child_env = dict(os.environ) | dict(env)
    else:
        child_env = dict(env)

    killed = False
    start_t = time.time()
    with (
        stdout_path.open("w", encoding="utf-8") as out_f,
        stderr_path.open("w", encoding="utf-8") as err_f,
    ):
        try:
            proc = subprocess.Popen(
                cmd,
                cwd=str(cwd),
                shell=use_shell,
                env=child_env,
                stdin=subprocess.DEVNULL,
                stdout=out_f,
                stderr=err_f,
                text=True,
                start_new_session=(os.name == "posix"),
            )
        except OSError as e:
            rc = 127
            err_f.write(f"\nFailed to start: {e}\n")
        else:
            if cancel is not None:
                cancel.attach(proc)
            try:
                rc = proc.wait(timeout=timeout_s)
            except subprocess.TimeoutExpired:
                kill_process_tree(proc)
                proc.wait()
                rc = TIMEOUT_EXIT_CODE
                err_f.write("\nTimeout expired.\n")
            finally:
                if cancel is not None:
                    cancel.detach(proc)
            if cancel is not None and cancel.is_cancelled:
                killed = True
                if rc < 0:
                    rc = KILLED_EXIT_CODE

    end_t = time.time()

    if redactor is not None:
        _redact_file(stdout_path, redactor)
        _redact_file(stderr_path, redactor)

    out_b = stdout_path.stat().st_size if stdout_path.exists() else 0
    err_b = stderr_path.stat().st_size if stderr_path.exists() else 0

    return CmdResult(
        cmd=cmd if isinstance(cmd, str) else " ".join(cmd),
        returncode=rc,
        stdout_path=stdout_path,
        stderr_path=stderr_path,
        elapsed_s=end_t - start_t,
        stdout_bytes=out_b,
        stderr_bytes=err_b,
        killed=killed,
    )


def shell_argv(command: str, shell: str = "sh") -> str | list[str]:
    """Map a step's ``shell`` setting to something ``run_cmd`` accepts.

    ``sh`` keeps the plain string (``/bin/sh -c``); ``bash`` runs with
    ``-eo pipefail`` like hosted runners do.
    """
    if shell == "sh":
        return command
    if shell == "bash":
        return ["bash", "--noprofile", "--norc", "-eo", "pipefail", "-c", command]
    raise ValueError(f"Unsupported shell: {shell}")


if __name__ == "__main__":
    import argparse
    import sys

    parser = argparse.ArgumentParser(description="Run shell commands safely")
    parser.add_argument("--cmd", required=True, help="Command to run")
    parser.add_argument("--cwd", default=".", help="Working directory")
    parser.add_argument("--timeout", type=float, default=10, help="Timeout in seconds")
    args = parser.parse_args()

    stdout = Path("shell_cli.stdout.log")
    stderr = Path("shell_cli.stderr.log")

    res = run_cmd(
        cmd=args.cmd,
        cwd=Path(args.cwd),
        stdout_path=stdout,
        stderr_path=stderr,
        timeout_s=args.timeout,
    )
    print(f"Exit code: {res.returncode}")
    print(f"Stdout: {res.stdout}")
    print(f"Stderr: {res.stderr}")
    sys.exit(res.returncode)

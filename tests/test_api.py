import unittest
from pathlib import Path
from unittest.mock import AsyncMock, patch

import ciflow
from ciflow.artifacts.schemas import StepRecord
from ciflow.errors import ConfigurationError
from ciflow.orchestrator import RunResult
from ciflow.trigger import EventKind, TriggerEvent


class TestPublicAPI(unittest.TestCase):
    def test_run_return_keys(self):
        """Ensure run() returns the keys documented in the package docstring."""
        mock_result = RunResult(
            status="FAILURE",
            run_dir=Path("/tmp/repo/.ciflow/runs/r1"),
            exit_code=1,
            failed_step="Run Clippy",
            steps=[StepRecord(index=0, name="Run Clippy", kind="shell", status="failure", exit_code=101)],
        )
        with patch("ciflow.run_workflow_session", new_callable=AsyncMock) as mock_run:
            mock_run.return_value = mock_result
            result = ciflow.run("/tmp/repo", TriggerEvent(EventKind.PUSH, ref="main"), run_id="r1")

        self.assertEqual(result["status"], "FAILURE")
        self.assertEqual(result["exit_code"], 1)
        self.assertEqual(result["run_dir"], "/tmp/repo/.ciflow/runs/r1")
        self.assertEqual(result["steps"], [("Run Clippy", "failure")])
        self.assertEqual(result["failed_step"], "Run Clippy")

        cfg = mock_run.call_args.args[0]
        self.assertEqual(cfg.run_id, "r1")
        self.assertEqual(cfg.artifacts_root, Path("/tmp/repo").resolve() / ".ciflow" / "runs")

    def test_run_rejected(self):
        with patch("ciflow.run_workflow_session", new_callable=AsyncMock) as mock_run:
            mock_run.return_value = RunResult(status="REJECTED", run_dir=None, exit_code=0)
            result = ciflow.run("/tmp/repo", TriggerEvent(EventKind.PUSH, ref="dev"))
        self.assertEqual(result["status"], "REJECTED")
        self.assertIsNone(result["run_dir"])

    def test_run_configuration_error(self):
        with patch("ciflow.run_workflow_session", new_callable=AsyncMock) as mock_run:
            mock_run.side_effect = ConfigurationError("needs CODECOV_TOKEN")
            result = ciflow.run("/tmp/repo", TriggerEvent(EventKind.MANUAL))
        self.assertEqual(result["status"], "ERROR")
        self.assertEqual(result["exit_code"], 2)
        self.assertIn("CODECOV_TOKEN", result["error"])


def test_run_end_to_end(tmp_path):
    wf = tmp_path / "wf.yaml"
    wf.write_text("name: E2E\nsteps:\n  - name: hello\n    run: echo hello\n", encoding="utf-8")
    result = ciflow.run(tmp_path, TriggerEvent(EventKind.MANUAL), workflow_file=wf, run_id="api-1")
    assert result["status"] == "SUCCESS"
    assert result["exit_code"] == 0
    assert result["steps"] == [("hello", "success")]
    assert Path(result["run_dir"]).name == "api-1"

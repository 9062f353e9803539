import pytest

from ciflow.artifacts.schemas import ReportRecord, RunStatus, StepRecord, validate_run_status
from ciflow.artifacts.store import ArtifactStore

def test_store_path_ok(tmp_path):
    store = ArtifactStore(tmp_path / "runs")
    p = store.path("subdir", "file.txt")
    assert p == tmp_path / "runs" / "subdir" / "file.txt"

def test_store_path_traversal(tmp_path):
    store = ArtifactStore(tmp_path / "runs")

    with pytest.raises(ValueError, match="Refusing to access path"):
        store.path("..", "secret.txt")

    with pytest.raises(ValueError, match="Refusing to access path"):
        store.path("subdir", "../../secret.txt")

def test_store_ensure(tmp_path):
    store = ArtifactStore(tmp_path / "runs")
    assert not store.exists()
    store.ensure()
    assert (tmp_path / "runs" / "logs").is_dir()
    assert (tmp_path / "runs" / "exports").is_dir()

def test_store_write_json(tmp_path):
    store = ArtifactStore(tmp_path / "runs")
    store.ensure()
    store.write_json("foo.json", {"a": 1})
    assert (tmp_path / "runs" / "foo.json").read_text().strip() == '{\n  "a": 1\n}'
    assert store.read_json("foo.json") == {"a": 1}

def test_status_roundtrip(store):
    store.write_status(RunStatus(run_id="r1", workflow="Coverage", status="CANCELED", superseded_by="r2", exit_code=3))
    st = store.read_status()
    assert st.status == "CANCELED"
    assert st.superseded_by == "r2"

def test_steps_and_report(store):
    rec = StepRecord(index=0, name="Run Clippy", kind="shell", status="failure", exit_code=101)
    store.write_steps([rec])
    assert store.read_steps() == [rec]
    assert rec.decision() == ("Run Clippy", "failure")

    store.write_report([ReportRecord(target="Upload", kind="coverage", status="skipped")])
    assert store.read_json("REPORT.json")[0]["status"] == "skipped"

def test_step_log_paths(store):
    out, err = store.step_log_paths(3, "Install SP1 toolchain")
    assert out.name == "03_Install_SP1_toolchain.stdout.log"
    assert err.name == "03_Install_SP1_toolchain.stderr.log"

def test_export_files_start_empty(store):
    env_file, path_file = store.export_files(2)
    env_file.write_text("A=1\n")
    env_file, path_file = store.export_files(2)
    assert env_file.read_text() == ""
    assert path_file.read_text() == ""


def test_validate_run_status():
    ok, st, err = validate_run_status({"run_id": "r", "workflow": "w", "status": "SUCCESS"})
    assert ok and st.status == "SUCCESS" and err == ""
    ok, st, err = validate_run_status({"run_id": "r", "workflow": "w", "status": "DONE"})
    assert not ok and st is None and err

import pytest

from ciflow.concurrency import CancellationToken
from ciflow.errors import ConfigurationError
from ciflow.executor import StepExecutor
from ciflow.model import RunOutcome
from ciflow.provisioner import EnvironmentProvisioner
from ciflow.secrets import MappingSecretStore
from ciflow.steps import RunCondition, ShellCommand, ToolInstall
from ciflow.util.redaction import Redactor


def _step(name, run, **kw):
    return ShellCommand(name=name, run=run, **kw)


def _executor(store, secrets=None, **kw):
    return StepExecutor(store=store, secrets=secrets or MappingSecretStore(), **kw)


def test_steps_run_in_declared_order(store, env, workdir):
    steps = [_step(f"s{i}", f"echo {i} >> order.txt") for i in range(4)]
    result = _executor(store).run(steps, env, CancellationToken())
    assert result.outcome is RunOutcome.SUCCESS
    assert (workdir / "order.txt").read_text().split() == ["0", "1", "2", "3"]
    assert [r.index for r in result.records] == [0, 1, 2, 3]


def test_failure_short_circuits_but_always_runs(store, env, workdir):
    steps = [
        _step("build", "true"),
        _step("test", "exit 2"),
        _step("lint", "touch lint-ran"),
        _step("cleanup", "touch cleanup-ran", condition=RunCondition.ALWAYS),
        _step("notify", "touch notify-ran", condition=RunCondition.FAILURE),
    ]
    result = _executor(store).run(steps, env, CancellationToken())

    assert result.outcome is RunOutcome.FAILURE
    assert result.decisions() == [
        ("build", "success"),
        ("test", "failure"),
        ("lint", "skipped"),
        ("cleanup", "success"),
        ("notify", "success"),
    ]
    assert result.failed_step == "test"
    assert result.errors[0].returncode == 2
    assert not (workdir / "lint-ran").exists()
    assert (workdir / "cleanup-ran").exists()
    assert (workdir / "notify-ran").exists()


def test_failure_condition_skipped_on_success(store, env):
    steps = [_step("ok", "true"), _step("on-fail", "true", condition=RunCondition.FAILURE)]
    result = _executor(store).run(steps, env, CancellationToken())
    assert result.decisions() == [("ok", "success"), ("on-fail", "skipped")]
    assert result.outcome is RunOutcome.SUCCESS


def test_decisions_are_deterministic(tmp_path, env):
    from ciflow.artifacts.store import ArtifactStore

    steps = [
        _step("a", "true"),
        _step("b", "false"),
        _step("c", "true"),
        _step("d", "true", condition=RunCondition.ALWAYS),
    ]
    outcomes = []
    for i in range(3):
        store = ArtifactStore(tmp_path / f"run{i}")
        store.ensure()
        res = _executor(store).run(steps, env, CancellationToken())
        outcomes.append((res.outcome, res.decisions()))
    assert outcomes[0] == outcomes[1] == outcomes[2]


def test_step_logs_written(store, env):
    result = _executor(store).run([_step("Say hi", "echo hi; echo oops >&2")], env, CancellationToken())
    rec = result.records[0]
    assert rec.stdout_log.endswith("00_Say_hi.stdout.log")
    assert store.path("logs", "00_Say_hi.stdout.log").read_text().strip() == "hi"
    assert store.path("logs", "00_Say_hi.stderr.log").read_text().strip() == "oops"


def test_exports_reach_later_steps(store, env):
    steps = [
        _step("export", 'echo "FOO=bar" >> "$CIFLOW_ENV"; echo /opt/fake/bin >> "$CIFLOW_PATH"'),
        _step("use", 'test "$FOO" = bar && case "$PATH" in /opt/fake/bin*) exit 0;; *) exit 1;; esac'),
    ]
    result = _executor(store).run(steps, env, CancellationToken())
    assert result.outcome is RunOutcome.SUCCESS
    assert env.variables["FOO"] == "bar"


def test_step_env_overrides_are_scoped(store, env):
    steps = [
        _step("scoped", 'test "$ONLY_HERE" = 1', env={"ONLY_HERE": "1"}),
        _step("after", 'test -z "$ONLY_HERE"'),
    ]
    assert _executor(store).run(steps, env, CancellationToken()).outcome is RunOutcome.SUCCESS


def test_ci_variables_present(store, env, workdir):
    step = _step("ci", 'test "$CI" = true && test -d "$CIFLOW_WORKSPACE" && test -f "$CIFLOW_ENV"')
    assert _executor(store).run([step], env, CancellationToken()).outcome is RunOutcome.SUCCESS


def test_working_directory(store, env, workdir):
    (workdir / "sub").mkdir()
    step = _step("in-sub", "touch here", working_directory="sub")
    _executor(store).run([step], env, CancellationToken())
    assert (workdir / "sub" / "here").exists()


def test_missing_product_fails_step(store, env):
    steps = [_step("gen", "true", produces=("coverage.lcov",)), _step("next", "true")]
    result = _executor(store).run(steps, env, CancellationToken())
    assert result.outcome is RunOutcome.FAILURE
    assert "coverage.lcov" in result.records[0].error
    assert result.decisions()[1] == ("next", "skipped")


def test_bash_pipefail(store, env):
    step = _step("pipe", "false | true", shell="bash")
    assert _executor(store).run([step], env, CancellationToken()).outcome is RunOutcome.FAILURE


def test_timeout_fails_step(store, env):
    step = _step("slow", "sleep 3", timeout_s=0.3)
    result = _executor(store).run([step], env, CancellationToken())
    assert result.records[0].exit_code == 124
    assert result.outcome is RunOutcome.FAILURE


def test_cancelled_before_start(store, env, workdir):
    token = CancellationToken()
    token.cancel()
    steps = [_step("a", "touch a"), _step("b", "touch b", condition=RunCondition.ALWAYS)]
    result = _executor(store).run(steps, env, token)
    assert result.outcome is RunOutcome.CANCELED
    assert result.decisions() == [("a", "canceled"), ("b", "canceled")]
    assert not (workdir / "a").exists()


@pytest.mark.timeout(10)
def test_cancel_during_step_stops_the_rest(store, env, workdir):
    import threading

    token = CancellationToken()
    steps = [
        _step("long", "sleep 5"),
        _step("after", "touch after", condition=RunCondition.ALWAYS),
    ]
    timer = threading.Timer(0.3, token.cancel)
    timer.start()
    try:
        result = _executor(store).run(steps, env, token)
    finally:
        timer.cancel()
    assert result.outcome is RunOutcome.CANCELED
    assert result.decisions() == [("long", "canceled"), ("after", "canceled")]
    assert not (workdir / "after").exists()


def test_missing_step_credential_raises(store, env):
    step = _step("needs", "true", secrets=("SONAR_TOKEN",))
    with pytest.raises(ConfigurationError, match="SONAR_TOKEN"):
        _executor(store).run([step], env, CancellationToken())


def test_credentials_scoped_and_redacted(store, env, secrets):
    redactor = Redactor().with_secrets(["sonar-token-value-5678"])
    steps = [
        _step("with", 'echo "tok=$SONAR_TOKEN"', secrets=("SONAR_TOKEN",)),
        _step("without", 'test -z "$SONAR_TOKEN"'),
    ]
    result = _executor(store, secrets, redactor=redactor).run(steps, env, CancellationToken())
    assert result.outcome is RunOutcome.SUCCESS
    log = store.path("logs", "00_with.stdout.log").read_text()
    assert "sonar-token-value-5678" not in log
    assert "tok=[REDACTED]" in log


def test_tool_install_step_uses_provisioner(store, env, workdir):
    provisioner = EnvironmentProvisioner(store)
    tool = ToolInstall(name="Install fake", tool="fake", install="mkdir -p bin && touch bin/fake", path=("bin",))
    result = _executor(store, provisioner=provisioner).run([tool], env, CancellationToken())
    assert result.outcome is RunOutcome.SUCCESS
    assert result.records[0].kind == "tool-install"
    assert env.path_entries == [str(workdir / "bin")]


def test_start_index_offsets_logs(store, env):
    result = _executor(store, start_index=7).run([_step("x", "true")], env, CancellationToken())
    assert result.records[0].index == 7
    assert store.path("logs", "07_x.stdout.log").exists()

import sys
from pathlib import Path

import pytest
from loguru import logger

from ciflow.artifacts.store import ArtifactStore
from ciflow.environment import SharedEnvironment
from ciflow.reporting import PublishResult
from ciflow.secrets import MappingSecretStore

ALL_SECRETS = {
    "GITHUB_TOKEN": "gh-token-value-1234",
    "SONAR_TOKEN": "sonar-token-value-5678",
    "CODECOV_TOKEN": "codecov-token-value-9012",
}

PIPELINE_YAML = """\
name: Coverage
on:
  push:
    branches: [main]
  pull_request:
    types: [opened, synchronize, reopened, ready_for_review]
  manual: true
steps:
  - name: Analyze
    run: |
      printf '{"issues": []}' > sonar-issues.json
    produces: [sonar-issues.json]
  - name: Coverage
    run: |
      printf 'SF:src/lib.rs\\nDA:1,1\\nend_of_record\\n' > coverage.lcov
    produces: [coverage.lcov]
report:
  analysis:
    name: SonarCloud Scan
    findings: sonar-issues.json
    credentials: [GITHUB_TOKEN, SONAR_TOKEN]
    run: "true"
  coverage:
    name: Upload to codecov.io
    report: coverage.lcov
    credentials: [CODECOV_TOKEN]
    fail_ci_if_error: true
    run: "true"
"""


class FakePublisher:
    """Records publish calls; kinds listed in ``fail`` report a transport error."""

    def __init__(self, fail=()):
        self.calls = []
        self.fail = set(fail)

    def publish(self, target, artifact, *, revision, credentials, env):
        self.calls.append(
            {"kind": target.kind, "artifact": Path(artifact), "revision": revision, "credentials": dict(credentials)}
        )
        if target.kind in self.fail:
            return PublishResult(ok=False, returncode=1, details="upload refused")
        return PublishResult(ok=True, returncode=0)


@pytest.fixture
def fake_publisher():
    return FakePublisher()


@pytest.fixture
def secrets():
    return MappingSecretStore(ALL_SECRETS)


@pytest.fixture
def workdir(tmp_path):
    d = tmp_path / "repo"
    d.mkdir()
    return d


@pytest.fixture
def store(tmp_path):
    s = ArtifactStore(tmp_path / "runs" / "r1")
    s.ensure()
    return s


@pytest.fixture
def env(workdir):
    return SharedEnvironment.from_process(workdir, exclude=ALL_SECRETS)


@pytest.fixture
def pipeline_repo(workdir):
    wf = workdir / ".ciflow" / "workflow.yaml"
    wf.parent.mkdir()
    wf.write_text(PIPELINE_YAML, encoding="utf-8")
    return workdir


@pytest.fixture(autouse=True)
def _reset_loguru():
    # The CLI swaps loguru sinks; put the default one back after each test.
    yield
    logger.remove()
    logger.add(sys.stderr)

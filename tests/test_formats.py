import pytest

from ciflow.artifacts.formats import (
    PROFILE_FILE_TEMPLATE,
    ArtifactFormatError,
    find_profile_files,
    profile_file_name,
    validate_findings,
    validate_lcov,
)


def test_validate_findings(tmp_path):
    p = tmp_path / "sonar-issues.json"
    p.write_text('{"issues": [{"engineId": "clippy", "ruleId": "needless_return"}, {}]}', encoding="utf-8")
    assert validate_findings(p) == 2


@pytest.mark.parametrize(
    "content, message",
    [
        ("{not json", "not valid JSON"),
        ('{"issues": {}}', "`issues` list"),
        ('{"other": []}', "`issues` list"),
        ('{"issues": [1]}', "issue #0"),
    ],
)
def test_validate_findings_malformed(tmp_path, content, message):
    p = tmp_path / "sonar-issues.json"
    p.write_text(content, encoding="utf-8")
    with pytest.raises(ArtifactFormatError, match=message) as exc:
        validate_findings(p)
    assert not exc.value.missing


def test_missing_and_empty_count_as_missing(tmp_path):
    with pytest.raises(ArtifactFormatError) as exc:
        validate_lcov(tmp_path / "coverage.lcov")
    assert exc.value.missing

    empty = tmp_path / "empty.json"
    empty.write_text("  \n", encoding="utf-8")
    with pytest.raises(ArtifactFormatError) as exc:
        validate_findings(empty)
    assert exc.value.missing


def test_validate_lcov(tmp_path):
    p = tmp_path / "coverage.lcov"
    p.write_text("TN:\nSF:a.rs\nDA:1,1\nend_of_record\nSF:b.rs\nend_of_record\n", encoding="utf-8")
    assert validate_lcov(p) == 2


@pytest.mark.parametrize(
    "content, message",
    [
        ("TN:\n", "no SF"),
        ("SF:a.rs\nDA:1,1\n", "not terminated"),
        ("end_of_record\n", "without SF"),
        ("SF:a.rs\nSF:b.rs\nend_of_record\n", "opened before"),
    ],
)
def test_validate_lcov_malformed(tmp_path, content, message):
    p = tmp_path / "coverage.lcov"
    p.write_text(content, encoding="utf-8")
    with pytest.raises(ArtifactFormatError, match=message):
        validate_lcov(p)


def test_profile_names(tmp_path):
    assert PROFILE_FILE_TEMPLATE == "llvm_profile-instrumentation-%p-%m.profraw"
    name = profile_file_name(4242, "123abc")
    assert name == "llvm_profile-instrumentation-4242-123abc.profraw"

    (tmp_path / "target").mkdir()
    (tmp_path / name).write_bytes(b"")
    (tmp_path / "target" / profile_file_name(1, "x")).write_bytes(b"")
    (tmp_path / "other.profraw").write_bytes(b"")
    assert [p.name for p in find_profile_files(tmp_path)] == [
        "llvm_profile-instrumentation-4242-123abc.profraw",
        "llvm_profile-instrumentation-1-x.profraw",
    ]

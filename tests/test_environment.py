import os

import pytest

from ciflow.environment import SharedEnvironment, parse_env_file


def test_from_process_excludes_credentials(tmp_path):
    environ = {"PATH": "/usr/bin", "HOME": "/home/ci", "SONAR_TOKEN": "s3cr3t"}
    env = SharedEnvironment.from_process(tmp_path, exclude=["SONAR_TOKEN"], environ=environ)
    assert "SONAR_TOKEN" not in env.flatten()
    assert env.flatten()["HOME"] == "/home/ci"


def test_add_path_prepends_and_dedupes(tmp_path):
    env = SharedEnvironment(workdir=tmp_path, base={"PATH": "/usr/bin"})
    env.add_path("/opt/a")
    env.add_path("bin")
    env.add_path("/opt/a")
    assert env.path_entries == ["/opt/a", str(tmp_path / "bin")]
    assert env.search_path == os.pathsep.join(["/opt/a", str(tmp_path / "bin"), "/usr/bin"])


def test_add_path_expands_home(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    env = SharedEnvironment(workdir=tmp_path)
    env.add_path("~/.cargo/bin")
    assert env.path_entries == [str(tmp_path / "home" / ".cargo" / "bin")]


def test_flatten_layers(tmp_path):
    env = SharedEnvironment(workdir=tmp_path, base={"A": "base", "B": "base", "PATH": "/bin"})
    env.set("B", "var")
    flat = env.flatten({"C": 1}, {"TOKEN": "t"})
    assert flat["A"] == "base"
    assert flat["B"] == "var"
    assert flat["C"] == "1"
    assert flat["TOKEN"] == "t"
    # Credentials only appear when handed in.
    assert "TOKEN" not in env.flatten()


def test_parse_env_file():
    text = "FOO=bar\n\n# comment\nEMPTY=\nEQ=a=b\nMULTI<<EOF\nline1\nline2\nEOF\n"
    assert parse_env_file(text) == [
        ("FOO", "bar"),
        ("EMPTY", ""),
        ("EQ", "a=b"),
        ("MULTI", "line1\nline2"),
    ]


@pytest.mark.parametrize("text", ["NOEQUALS\n", "=value\n", "K<<EOF\nnever closed\n"])
def test_parse_env_file_malformed(text):
    with pytest.raises(ValueError):
        parse_env_file(text)


def test_apply_exports(tmp_path):
    env = SharedEnvironment(workdir=tmp_path)
    env_file = tmp_path / "x.env"
    path_file = tmp_path / "x.path"
    env_file.write_text("TOOL_HOME=/opt/tool\n", encoding="utf-8")
    path_file.write_text("/opt/tool/bin\n\n", encoding="utf-8")
    env.apply_exports(env_file=env_file, path_file=path_file)
    assert env.variables == {"TOOL_HOME": "/opt/tool"}
    assert env.path_entries == ["/opt/tool/bin"]
    assert env.snapshot()["path_entries"] == ["/opt/tool/bin"]

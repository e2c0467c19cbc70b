"""Tests for the command-line interface."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

import codestat.cli
from codestat.cache import CACHE_FILE
from codestat.cli import app
from conftest import FakeVersionControl

runner = CliRunner()


@pytest.fixture
def fake_git(monkeypatch, code_root: Path) -> FakeVersionControl:
    vcs = FakeVersionControl()
    vcs.add(code_root / "A" / "repo1")
    vcs.add(code_root / "B" / "repo2", modified=3)
    monkeypatch.setattr(codestat.cli, "GitOperations", lambda: vcs)
    return vcs


def _invoke(code_root: Path, *args: str):
    return runner.invoke(app, list(args), env={"CODE": str(code_root), "HOME": str(code_root.parent)})


def _lines(output: str) -> list[str]:
    return [line for line in output.splitlines() if line.strip()]


def test_missing_code_variable(monkeypatch):
    monkeypatch.delenv("CODE", raising=False)
    result = runner.invoke(app, [])
    assert result.exit_code == 1
    assert "'CODE' env variable not set" in result.output


def test_unknown_sort_key(code_root: Path, fake_git):
    result = _invoke(code_root, "--sort", "size")
    assert result.exit_code == 2


def test_print_code(code_root: Path, fake_git):
    result = _invoke(code_root, "-C")
    assert result.exit_code == 0
    assert result.stdout.strip() == str(code_root)
    assert fake_git.calls == []


def test_code_flag_overrides_environment(tmp_path: Path, code_root: Path, fake_git):
    other = tmp_path / "other"
    result = _invoke(code_root, "-C", "--code", str(other))
    assert result.stdout.strip() == str(other)


def test_default_shows_only_dirty_project(code_root: Path, fake_git):
    result = _invoke(code_root)

    assert result.exit_code == 0
    lines = _lines(result.stdout)
    assert len(lines) == 1
    assert lines[0].split()[:2] == ["B", "repo2"]


def test_modifications_are_annotated(code_root: Path, fake_git):
    result = _invoke(code_root, "-m")

    lines = _lines(result.stdout)
    assert len(lines) == 1
    assert lines[0].split()[:3] == ["B", "repo2", "±3"]


def test_show_all(code_root: Path, fake_git):
    result = _invoke(code_root, "-a")

    lines = _lines(result.stdout)
    assert [line.split()[1] for line in lines] == ["repo1", "repo2"]


def test_dir_all_skips_status_and_uses_cache(code_root: Path, fake_git):
    first = _invoke(code_root, "-da")
    assert first.exit_code == 0
    assert _lines(first.stdout) == [str(code_root / "A" / "repo1"), str(code_root / "B" / "repo2")]
    assert fake_git.calls_for("modification_count") == []
    assert (code_root / CACHE_FILE).exists()

    # a repository added after the cache was written stays invisible until it expires
    fake_git.add(code_root / "C" / "repo3")
    second = _invoke(code_root, "-da")
    assert len(_lines(second.stdout)) == 2


def test_no_ignore_neither_reads_nor_writes_cache(code_root: Path, fake_git):
    result = _invoke(code_root, "-da", "-i")
    assert result.exit_code == 0
    assert not (code_root / CACHE_FILE).exists()


def test_fetch_and_fast_forward(code_root: Path, fake_git):
    fake_git.repos[code_root / "A" / "repo1"].ahead_behind = (0, 2)

    result = _invoke(code_root, "-f", "-F", "-m")

    assert result.exit_code == 0
    assert len(fake_git.calls_for("fetch_all")) == 2
    assert fake_git.calls_for("fast_forward") == [code_root / "A" / "repo1"]
    repo1 = [line for line in _lines(result.stdout) if "repo1" in line][0]
    assert "repo1*" in repo1


def test_json_output(code_root: Path, fake_git):
    result = _invoke(code_root, "--json", "-s", "m")

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["count"] == 1
    assert data["projects"][0]["name"] == "repo2"
    assert data["projects"][0]["modified"] == 3


def test_tree_output(code_root: Path, fake_git):
    result = _invoke(code_root, "-vv")

    assert _lines(result.stdout) == [
        "├──A (1)",
        "|  └──repo1",
        "└──B (1)",
        "   └──repo2  *",
    ]


def test_profile_applies_flags(code_root: Path, fake_git):
    (code_root.parent / ".coderc").write_text("[everything]\nall = true\n")

    result = _invoke(code_root, "-p", "everything")

    assert len(_lines(result.stdout)) == 2


def test_broken_profile_exits(code_root: Path, fake_git):
    (code_root.parent / ".coderc").write_text("[everything\n")

    result = _invoke(code_root, "-p", "everything")

    assert result.exit_code == 1


def test_unreadable_root(tmp_path: Path, fake_git):
    result = _invoke(tmp_path / "does-not-exist")
    assert result.exit_code == 1
    assert "error:" in result.output


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert result.stdout.startswith("codestat ")


def test_cache_from_other_depth_is_not_reused(monkeypatch, code_root: Path):
    vcs = FakeVersionControl()
    vcs.add(code_root / "A" / "repo1")
    vcs.add(code_root / "B" / "deep" / "repo2")
    monkeypatch.setattr(codestat.cli, "GitOperations", lambda: vcs)

    shallow = _invoke(code_root, "-D", "1")
    assert shallow.exit_code == 0
    assert (code_root / CACHE_FILE).exists()

    deep = _invoke(code_root, "-da", "-D", "3")

    assert _lines(deep.stdout) == [str(code_root / "A" / "repo1"), str(code_root / "B" / "deep" / "repo2")]


def test_undecodable_ignore_file_is_a_config_error(code_root: Path, fake_git):
    (code_root / ".codeignore").write_bytes(b"caf\xe9/*\n")

    result = _invoke(code_root)

    assert result.exit_code == 1
    assert not isinstance(result.exception, UnicodeDecodeError)
    assert "codestat: " in result.output


def test_grouped_output_does_not_turn_on_logging(code_root: Path, fake_git):
    result = _invoke(code_root, "-v")

    assert result.exit_code == 0
    assert "discovered" not in result.output
    assert "status:" not in result.output


def test_debug_flag_logs_progress(code_root: Path, fake_git):
    result = _invoke(code_root, "--debug")

    assert result.exit_code == 0
    assert "codestat: discovered 2 projects" in result.output

"""Tests for repository discovery and grouping."""

import os
from pathlib import Path

import pytest

from codestat.core import DiscoveryError, GitOperations
from codestat.discovery import Discoverer
from codestat.patterns import PatternFilter


def _names(model):
    return {g.name: [p.name for p in g.projects] for g in model.groups}


def test_projects_grouped_by_top_level_directory(code_root: Path, vcs):
    vcs.add(code_root / "python" / "scraper")
    vcs.add(code_root / "python" / "api")
    vcs.add(code_root / "rust" / "rgs")

    model = Discoverer(vcs).discover(code_root)

    assert _names(model) == {"python": ["api", "scraper"], "rust": ["rgs"]}
    for group in model.groups:
        for project in group.projects:
            assert project.group_name == group.name
            assert project.path == group.path / project.name


def test_standalone_repository_is_its_own_group(code_root: Path, vcs):
    vcs.add(code_root / "uni")
    vcs.add(code_root / "java" / "spring")

    model = Discoverer(vcs).discover(code_root)

    uni = model.group_named("uni")
    assert uni is not None
    assert uni.path == code_root / "uni"
    assert [p.name for p in uni.projects] == ["uni"]
    assert _names(model)["java"] == ["spring"]


def test_groups_sorted_by_name_and_empty_groups_kept(code_root: Path, vcs):
    (code_root / "zig").mkdir()
    vcs.add(code_root / "go" / "tool")
    vcs.add(code_root / "c" / "lib")

    model = Discoverer(vcs).discover(code_root)

    assert [g.name for g in model.groups] == ["c", "go", "zig"]
    assert model.group_named("zig").projects == []


def test_nested_project_belongs_to_top_level_group(code_root: Path, vcs):
    vcs.add(code_root / "java" / "spring" / "petclinic")

    model = Discoverer(vcs).discover(code_root, max_depth=3)

    assert _names(model) == {"java": ["petclinic"]}
    assert model.projects()[0].group_name == "java"


def test_grouping_does_not_depend_on_visit_order(code_root: Path, vcs):
    vcs.add(code_root / "a" / "deep" / "x")
    vcs.add(code_root / "b" / "y")
    vcs.add(code_root / "a" / "z")

    model = Discoverer(vcs).discover(code_root, max_depth=3)

    assert _names(model) == {"a": ["x", "z"], "b": ["y"]}


def test_every_project_references_exactly_one_group(code_root: Path, vcs):
    for path in ["solo", "web/site", "web/blog", "tools/a", "tools/nested/b"]:
        vcs.add(code_root / path)

    model = Discoverer(vcs).discover(code_root, max_depth=3)

    names = [g.name for g in model.groups]
    for project in model.projects():
        assert names.count(project.group_name) == 1


def test_repositories_are_not_descended_into(code_root: Path, vcs):
    vcs.add(code_root / "py" / "parent")
    vcs.add(code_root / "py" / "parent" / "vendored")

    model = Discoverer(vcs).discover(code_root, max_depth=5)

    assert [p.name for p in model.projects()] == ["parent"]


def test_depth_limits_descent(code_root: Path, vcs):
    vcs.add(code_root / "a" / "b" / "c" / "repo")

    assert len(Discoverer(vcs).discover(code_root, max_depth=3)) == 0
    assert len(Discoverer(vcs).discover(code_root, max_depth=4)) == 1


def test_depth_zero_finds_nothing(code_root: Path, vcs):
    vcs.add(code_root / "repo")
    model = Discoverer(vcs).discover(code_root, max_depth=0)
    assert model.groups == []


def test_hidden_directories_only_checked_for_repository(code_root: Path, vcs):
    vcs.add(code_root / ".dotfiles")
    vcs.add(code_root / ".cache" / "repo")

    model = Discoverer(vcs).discover(code_root, max_depth=3)

    assert [p.name for p in model.projects()] == [".dotfiles"]


def test_ignored_paths_are_skipped(code_root: Path, vcs):
    vcs.add(code_root / "build" / "tmp")
    vcs.add(code_root / "build" / "keep")
    vcs.add(code_root / "archive")
    pf = PatternFilter.parse(code_root, ["build/*", "!build/keep", "archive"])

    model = Discoverer(vcs, pf).discover(code_root)

    assert [p.name for p in model.projects()] == ["keep"]


def test_relative_symlink_is_an_alias(code_root: Path, vcs):
    vcs.add(code_root / "py" / "real")
    link = code_root / "py" / "alias"
    os.symlink("real", link)
    vcs.repos[link] = vcs.repos[code_root / "py" / "real"]

    model = Discoverer(vcs).discover(code_root)

    assert [p.name for p in model.projects()] == ["real"]


def test_absolute_symlink_inside_root_is_an_alias(code_root: Path, vcs):
    vcs.add(code_root / "py" / "real")
    link = code_root / "shortcut"
    os.symlink(code_root / "py" / "real", link)
    vcs.repos[link] = vcs.repos[code_root / "py" / "real"]

    model = Discoverer(vcs).discover(code_root)

    assert [p.path for p in model.projects()] == [code_root / "py" / "real"]


def test_absolute_symlink_outside_root_is_a_project(tmp_path: Path, code_root: Path, vcs):
    outside = tmp_path / "elsewhere" / "lib"
    vcs.add(outside)
    link = code_root / "ext" / "lib"
    link.parent.mkdir()
    os.symlink(outside, link)
    vcs.repos[link] = vcs.repos[outside]

    model = Discoverer(vcs).discover(code_root)

    assert _names(model) == {"ext": ["lib"]}


def test_files_are_not_classified(code_root: Path, vcs):
    (code_root / "notes.txt").write_text("todo")
    vcs.add(code_root / "py" / "x")
    model = Discoverer(vcs).discover(code_root)
    assert [g.name for g in model.groups] == ["py"]


def test_discovery_is_repeatable(code_root: Path, vcs):
    for path in ["solo", "web/site", "web/blog", "tools/a"]:
        vcs.add(code_root / path)
    first = Discoverer(vcs).discover(code_root)
    second = Discoverer(vcs).discover(code_root)
    assert first == second


def test_missing_root_fails(tmp_path: Path, vcs):
    with pytest.raises(DiscoveryError):
        Discoverer(vcs).discover(tmp_path / "nope")


@pytest.mark.skipif(os.geteuid() == 0, reason="root can read any directory")
def test_unreadable_directory_aborts_discovery(code_root: Path, vcs):
    vcs.add(code_root / "ok" / "repo")
    locked = code_root / "locked"
    (locked / "inner").mkdir(parents=True)
    locked.chmod(0)
    try:
        with pytest.raises(DiscoveryError) as excinfo:
            Discoverer(vcs).discover(code_root)
        assert excinfo.value.path == locked
    finally:
        locked.chmod(0o755)


def test_git_marker_detection(code_root: Path):
    (code_root / "py" / "repo" / ".git").mkdir(parents=True)
    (code_root / "py" / "worktree").mkdir(parents=True)
    (code_root / "py" / "worktree" / ".git").write_text("gitdir: /somewhere/else\n")
    (code_root / "py" / "plain").mkdir()

    model = Discoverer(GitOperations()).discover(code_root)

    assert _names(model) == {"py": ["repo", "worktree"]}

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import pytest

from codestat.core import CommitInfo, GitError, Group, GroupModel, Project


@dataclass
class FakeRepo:
    modified: int = 0
    branch: str | None = "main"
    ahead_behind: tuple[int, int] | None = (0, 0)
    branches: list[str] = field(default_factory=lambda: ["main"])
    remote: list[tuple[str, str, int, int]] = field(default_factory=list)
    fetch_ok: bool = True
    ff_ok: bool = True
    status_error: bool = False
    remote_error: bool = False
    commits: list[CommitInfo] = field(default_factory=list)


class FakeVersionControl:
    """In-memory backend; repositories are registered by path."""

    def __init__(self, delay: float = 0.0):
        self.repos: dict[Path, FakeRepo] = {}
        self.delay = delay
        self.calls: list[tuple[str, Path]] = []
        self._lock = threading.Lock()

    def add(self, path: Path, **kwargs) -> FakeRepo:
        path.mkdir(parents=True, exist_ok=True)
        repo = FakeRepo(**kwargs)
        self.repos[path] = repo
        return repo

    def _record(self, name: str, path: Path) -> FakeRepo:
        with self._lock:
            self.calls.append((name, path))
        if self.delay:
            time.sleep(self.delay)
        return self.repos[path]

    def calls_for(self, name: str) -> list[Path]:
        return [path for call, path in self.calls if call == name]

    def is_working_copy(self, path: Path) -> bool:
        return path in self.repos

    def modification_count(self, path: Path) -> int:
        repo = self._record("modification_count", path)
        if repo.status_error:
            raise GitError(["status", "--porcelain"], "fatal: index file corrupt")
        return repo.modified

    def current_branch(self, path: Path) -> str | None:
        return self.repos[path].branch

    def local_branches(self, path: Path) -> list[str]:
        return list(self.repos[path].branches)

    def ahead_behind(self, path: Path, branch: str) -> tuple[int, int]:
        repo = self.repos[path]
        if repo.ahead_behind is None:
            raise GitError(["rev-list"], f"fatal: no upstream configured for branch '{branch}'")
        return repo.ahead_behind

    def ahead_behind_remote(self, path: Path) -> list[tuple[str, str, int, int]]:
        repo = self.repos[path]
        if repo.remote_error:
            raise GitError(["rev-list", "--left-right", "--count"], "fatal: bad revision")
        return list(repo.remote)

    def fetch(self, path: Path) -> tuple[bool, str]:
        return self.fetch_all(path)

    def fetch_all(self, path: Path) -> tuple[bool, str]:
        repo = self._record("fetch_all", path)
        if not repo.fetch_ok:
            return False, "fatal: unable to access remote"
        return True, ""

    def fast_forward(self, path: Path, branch: str) -> tuple[bool, str]:
        repo = self._record("fast_forward", path)
        if not repo.ff_ok:
            return False, "fatal: Not possible to fast-forward, aborting."
        ahead, _ = repo.ahead_behind or (0, 0)
        repo.ahead_behind = (ahead, 0)
        return True, ""

    def behind_commits(self, path: Path, branch: str) -> list[CommitInfo]:
        return list(self.repos[path].commits)


def make_commit(summary: str, author: str = "Ada") -> CommitInfo:
    return CommitInfo(
        id=f"{abs(hash(summary)):040x}"[:40],
        summary=summary,
        author=author,
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def make_model(root: Path, layout: dict[str, list[str]]) -> GroupModel:
    """Build a model from {group: [project, ...]} without touching disk."""
    model = GroupModel(root=root)
    for group_name, names in layout.items():
        group = Group(name=group_name, path=root / group_name)
        for name in names:
            group.add_project(Project(name=name, group_name=group_name, path=root / group_name / name))
        model.groups.append(group)
    return model


@pytest.fixture
def vcs() -> FakeVersionControl:
    return FakeVersionControl()


@pytest.fixture
def code_root(tmp_path: Path) -> Path:
    root = tmp_path / "code"
    root.mkdir()
    return root

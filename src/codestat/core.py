"""
codestat: Status of every repository under your code directory.

Domain models, the version-control seam and the git backend that
implements it.
"""

from __future__ import annotations

import subprocess
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum, StrEnum
from pathlib import Path
from typing import Protocol

# =============================================================================
# Errors
# =============================================================================


class CodestatError(Exception):
    """Base class for every error codestat reports to the user."""


class ConfigError(CodestatError):
    """Fatal configuration problem, raised before any discovery."""


class IgnorePatternError(ConfigError):
    """A line of the ignore file is not a valid glob pattern."""

    def __init__(self, pattern: str, line: int, reason: str):
        self.pattern = pattern
        self.line = line
        self.reason = reason
        super().__init__(f"invalid ignore pattern {pattern!r} on line {line}: {reason}")


class DiscoveryError(CodestatError):
    """A directory could not be read during the walk."""

    def __init__(self, path: Path, cause: OSError):
        self.path = path
        self.cause = cause
        super().__init__(f"cannot read {path}: {cause.strerror or cause}")


class GitError(CodestatError):
    """A git invocation failed."""

    def __init__(self, args: list[str], stderr: str = ""):
        self.command = args
        self.stderr = stderr
        message = f"git {' '.join(args)} failed"
        if stderr:
            message += f": {stderr}"
        super().__init__(message)


# =============================================================================
# Domain Models
# =============================================================================


class SortKey(StrEnum):
    """Ordering applied to the flattened project list."""

    DIR = "dir"
    TIME = "time"
    MOD = "mod"
    AHEAD_BEHIND = "ab"

    @classmethod
    def parse(cls, value: str) -> SortKey:
        """Resolve a sort key from its name or one of its aliases."""
        try:
            return _SORT_ALIASES[value.strip().lower()]
        except KeyError:
            choices = ", ".join(sorted(_SORT_ALIASES))
            raise ValueError(f"unknown sort key {value!r} (choose from {choices})") from None


_SORT_ALIASES = {
    "directory": SortKey.DIR,
    "dir": SortKey.DIR,
    "d": SortKey.DIR,
    "time": SortKey.TIME,
    "t": SortKey.TIME,
    "modifications": SortKey.MOD,
    "mod": SortKey.MOD,
    "m": SortKey.MOD,
    "ahead-behind": SortKey.AHEAD_BEHIND,
    "ab": SortKey.AHEAD_BEHIND,
    "a": SortKey.AHEAD_BEHIND,
}


class OutputType(StrEnum):
    """What the rendered listing shows."""

    ALL = "all"
    DIR = "dir"
    TIME = "time"
    MODIFICATION = "modification"
    BRANCHES = "branches"


class Verbosity(IntEnum):
    """Rendering level selected by repeating -v."""

    COMPACT = 0
    GROUPED = 1
    TREE = 2

    @classmethod
    def from_count(cls, count: int) -> Verbosity:
        return cls(min(max(count, 0), cls.TREE))


AheadBehind = tuple[int, int]


@dataclass(frozen=True)
class CommitInfo:
    """A commit reachable from the upstream but not from the local branch."""

    id: str
    summary: str
    author: str
    timestamp: datetime


@dataclass
class Project:
    """One discovered working copy."""

    name: str
    group_name: str
    path: Path
    current_branch: str = ""
    branches: frozenset[str] = frozenset()
    modified_count: int = 0
    ahead_behind: AheadBehind = (0, 0)
    remote_ahead_behind: dict[str, AheadBehind] = field(default_factory=dict)
    fast_forwarded: bool = False
    elapsed_ms: int = 0

    @property
    def ahead(self) -> int:
        return self.ahead_behind[0]

    @property
    def behind(self) -> int:
        return self.ahead_behind[1]

    @property
    def ahead_behind_sum(self) -> int:
        return self.ahead_behind[0] + self.ahead_behind[1]

    @property
    def is_ahead_behind(self) -> bool:
        """Any populated ahead/behind pair is non-zero."""
        if self.ahead_behind != (0, 0):
            return True
        return any(pair != (0, 0) for pair in self.remote_ahead_behind.values())

    @property
    def is_clean(self) -> bool:
        return self.modified_count == 0 and not self.is_ahead_behind

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "name": self.name,
            "group": self.group_name,
            "path": str(self.path),
            "branch": self.current_branch,
            "branches": sorted(self.branches),
            "modified": self.modified_count,
            "ahead": self.ahead,
            "behind": self.behind,
            "remote_ahead_behind": {
                key: {"ahead": ahead, "behind": behind}
                for key, (ahead, behind) in sorted(self.remote_ahead_behind.items())
            },
            "fast_forwarded": self.fast_forwarded,
            "clean": self.is_clean,
            "elapsed_ms": self.elapsed_ms,
        }


@dataclass
class Group:
    """A category of projects, usually a directory right below the root."""

    name: str
    path: Path
    projects: list[Project] = field(default_factory=list)
    not_ok_count: int = 0

    def add_project(self, project: Project) -> None:
        self.projects.append(project)

    def refresh_not_ok(self) -> int:
        self.not_ok_count = sum(1 for p in self.projects if not p.is_clean)
        return self.not_ok_count


@dataclass
class GroupModel:
    """The live, annotated tree of groups for one run."""

    root: Path
    groups: list[Group] = field(default_factory=list)

    def projects(self) -> list[Project]:
        """All projects, group by group, in model order."""
        return [p for g in self.groups for p in g.projects]

    def coordinates(self) -> Iterator[tuple[int, int, Project]]:
        """Yield (group-index, project-index, project) for every project."""
        for gi, group in enumerate(self.groups):
            for pi, project in enumerate(group.projects):
                yield gi, pi, project

    def project_at(self, group_index: int, project_index: int) -> Project:
        return self.groups[group_index].projects[project_index]

    def group_named(self, name: str) -> Group | None:
        for group in self.groups:
            if group.name == name:
                return group
        return None

    def refresh_counts(self) -> None:
        for group in self.groups:
            group.refresh_not_ok()

    def __len__(self) -> int:
        return sum(len(g.projects) for g in self.groups)


# =============================================================================
# Version Control
# =============================================================================


class VersionControl(Protocol):
    """Operations codestat needs from the version-control engine."""

    def is_working_copy(self, path: Path) -> bool: ...

    def modification_count(self, path: Path) -> int: ...

    def current_branch(self, path: Path) -> str | None: ...

    def local_branches(self, path: Path) -> list[str]: ...

    def ahead_behind(self, path: Path, branch: str) -> AheadBehind: ...

    def ahead_behind_remote(self, path: Path) -> list[tuple[str, str, int, int]]: ...

    def fetch(self, path: Path) -> tuple[bool, str]: ...

    def fetch_all(self, path: Path) -> tuple[bool, str]: ...

    def fast_forward(self, path: Path, branch: str) -> tuple[bool, str]: ...

    def behind_commits(self, path: Path, branch: str) -> list[CommitInfo]: ...


_FIELD_SEP = "\x1f"


class GitOperations:
    """Git backend driven through the git command line."""

    def __init__(self, git: str = "git", timeout: float | None = 120):
        self.git = git
        self.timeout = timeout

    def _run(self, path: Path, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        """Run a git command in the repository."""
        result = subprocess.run(
            [self.git, *args],
            cwd=path,
            capture_output=True,
            text=True,
            timeout=self.timeout,
            errors="replace",
        )
        if check and result.returncode != 0:
            raise GitError(list(args), result.stderr.strip())
        return result

    def is_working_copy(self, path: Path) -> bool:
        """Check if path is the top of a checkout (.git dir or gitfile)."""
        return (path / ".git").exists()

    def modification_count(self, path: Path) -> int:
        """Count changed paths, untracked included, ignored excluded."""
        result = self._run(path, "status", "--porcelain", "--untracked-files=normal")
        return len([line for line in result.stdout.splitlines() if line.strip()])

    def current_branch(self, path: Path) -> str | None:
        """Get current branch name, None when HEAD is detached."""
        result = self._run(path, "symbolic-ref", "--quiet", "--short", "HEAD", check=False)
        if result.returncode == 0:
            return result.stdout.strip() or None
        return None

    def local_branches(self, path: Path) -> list[str]:
        result = self._run(path, "for-each-ref", "--format=%(refname:short)", "refs/heads")
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def _count(self, path: Path, local: str, upstream: str) -> AheadBehind:
        result = self._run(path, "rev-list", "--left-right", "--count", f"{local}...{upstream}")
        parts = result.stdout.split()
        if len(parts) != 2:
            raise GitError(["rev-list", "--left-right", "--count"], f"unexpected output {result.stdout!r}")
        return int(parts[0]), int(parts[1])

    def ahead_behind(self, path: Path, branch: str) -> AheadBehind:
        """Get ahead/behind counts against the branch's upstream.

        Raises GitError when the branch has no upstream configured.
        """
        return self._count(path, f"refs/heads/{branch}", f"{branch}@{{upstream}}")

    def _remotes(self, path: Path) -> list[str]:
        result = self._run(path, "remote")
        return [n.strip() for n in result.stdout.splitlines() if n.strip()]

    def _has_ref(self, path: Path, ref: str) -> bool:
        result = self._run(path, "rev-parse", "--verify", "--quiet", ref, check=False)
        return result.returncode == 0

    def ahead_behind_remote(self, path: Path) -> list[tuple[str, str, int, int]]:
        """Compare every local branch with the same-named branch of every remote."""
        rows = []
        branches = self.local_branches(path)
        for remote in self._remotes(path):
            for branch in branches:
                remote_ref = f"refs/remotes/{remote}/{branch}"
                if not self._has_ref(path, remote_ref):
                    continue
                ahead, behind = self._count(path, f"refs/heads/{branch}", remote_ref)
                rows.append((remote, branch, ahead, behind))
        return rows

    def fetch(self, path: Path) -> tuple[bool, str]:
        """Fetch the default remote."""
        try:
            result = self._run(path, "fetch", "--quiet", check=False)
        except (OSError, subprocess.SubprocessError) as e:
            return False, str(e)
        if result.returncode != 0:
            return False, result.stderr.strip()
        return True, ""

    def fetch_all(self, path: Path) -> tuple[bool, str]:
        """Fetch all remotes."""
        try:
            result = self._run(path, "fetch", "--all", "--prune", "--quiet", check=False)
        except (OSError, subprocess.SubprocessError) as e:
            return False, str(e)
        if result.returncode != 0:
            return False, result.stderr.strip()
        return True, ""

    def fast_forward(self, path: Path, branch: str) -> tuple[bool, str]:
        """Move the checked-out branch to its upstream without a merge commit."""
        try:
            current = self.current_branch(path)
            if current != branch:
                return False, f"branch {branch!r} is not checked out"
            result = self._run(path, "merge", "--ff-only", "--quiet", f"{branch}@{{upstream}}", check=False)
        except (OSError, subprocess.SubprocessError) as e:
            return False, str(e)
        if result.returncode != 0:
            return False, result.stderr.strip() or result.stdout.strip()
        return True, result.stdout.strip()

    def behind_commits(self, path: Path, branch: str) -> list[CommitInfo]:
        """List upstream-only commits, newest first."""
        fmt = _FIELD_SEP.join(["%H", "%s", "%an", "%ct"])
        result = self._run(path, "log", f"--format={fmt}", f"refs/heads/{branch}..{branch}@{{upstream}}")
        commits = []
        for line in result.stdout.splitlines():
            parts = line.split(_FIELD_SEP)
            if len(parts) != 4:
                continue
            commit_id, summary, author, stamp = parts
            try:
                timestamp = datetime.fromtimestamp(int(stamp), tz=timezone.utc)
            except ValueError:
                continue
            commits.append(CommitInfo(id=commit_id, summary=summary, author=author, timestamp=timestamp))
        return commits

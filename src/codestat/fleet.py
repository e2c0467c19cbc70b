"""Run per-project operations on a worker pool and fold results into the model.

Workers only ever see an immutable ProjectTask and hand back an
immutable ProjectDelta. The thread that owns the GroupModel is the only
one writing into it.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import subprocess
import time
from collections.abc import Callable, Iterator, Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path

from .core import AheadBehind, GitError, GroupModel, VersionControl

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectTask:
    """Private copy of what a worker needs to know about one project."""

    group_index: int
    project_index: int
    path: Path
    branch: str = ""
    ahead_behind: AheadBehind = (0, 0)

    def delta(self, operation: str, **fields) -> ProjectDelta:
        return ProjectDelta(
            group_index=self.group_index,
            project_index=self.project_index,
            operation=operation,
            **fields,
        )


@dataclass(frozen=True)
class ProjectDelta:
    """Result of one operation on one project. None means "leave as is"."""

    group_index: int
    project_index: int
    operation: str = ""
    elapsed_ms: int = 0
    current_branch: str | None = None
    branches: frozenset[str] | None = None
    modified_count: int | None = None
    ahead_behind: AheadBehind | None = None
    remote_ahead_behind: Mapping[str, AheadBehind] | None = None
    fast_forwarded: bool | None = None
    error: str = ""

    @property
    def coordinates(self) -> tuple[int, int]:
        return self.group_index, self.project_index

    @property
    def ok(self) -> bool:
        return not self.error


Operation = Callable[[ProjectTask], ProjectDelta]


def _timed(operation: Operation, name: str, task: ProjectTask) -> ProjectDelta:
    """Run operation in a worker, turning git failures into an error delta."""
    start = time.perf_counter()
    try:
        delta = operation(task)
    except (GitError, OSError, subprocess.SubprocessError) as e:
        delta = task.delta(name, error=str(e))
    elapsed_ms = int((time.perf_counter() - start) * 1000)
    return dataclasses.replace(delta, operation=name, elapsed_ms=elapsed_ms)


class WorkerPool:
    """Fixed-size thread pool running one operation per project task."""

    def __init__(self, max_workers: int | None = None):
        self.max_workers = max_workers or os.cpu_count() or 1

    def run(self, tasks: list[ProjectTask], operation: Operation, name: str) -> Iterator[ProjectDelta]:
        """Yield one delta per task, in completion order.

        The pool is joined before the generator finishes, so exhausting
        it is the barrier between two passes.
        """
        if not tasks:
            return
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="codestat") as executor:
            futures = [executor.submit(_timed, operation, name, task) for task in tasks]
            for future in as_completed(futures):
                yield future.result()


class Aggregator:
    """Merge deltas of a single pass into the model."""

    def __init__(self, model: GroupModel):
        self.model = model
        self.merged: set[tuple[int, int]] = set()
        self.failed: list[ProjectDelta] = []

    def merge(self, delta: ProjectDelta) -> None:
        if delta.coordinates in self.merged:
            raise RuntimeError(f"project {delta.coordinates} updated twice in one pass")
        self.merged.add(delta.coordinates)

        project = self.model.project_at(*delta.coordinates)
        project.elapsed_ms += delta.elapsed_ms

        if delta.error:
            self.failed.append(delta)
            logger.error("%s: %s failed: %s", project.path, delta.operation, delta.error)
            return

        if delta.current_branch is not None:
            project.current_branch = delta.current_branch
        if delta.branches is not None:
            project.branches = delta.branches
        if delta.modified_count is not None:
            project.modified_count = delta.modified_count
        if delta.ahead_behind is not None:
            project.ahead_behind = delta.ahead_behind
        if delta.remote_ahead_behind is not None:
            project.remote_ahead_behind = dict(delta.remote_ahead_behind)
        if delta.fast_forwarded is not None:
            project.fast_forwarded = delta.fast_forwarded


class Fleet:
    """Fetch, status and fast-forward passes over a discovered model."""

    def __init__(
        self,
        model: GroupModel,
        vcs: VersionControl,
        max_workers: int | None = None,
        *,
        branches: bool = False,
    ):
        self.model = model
        self.vcs = vcs
        self.pool = WorkerPool(max_workers)
        self.branches = branches

    def _tasks(self, predicate: Callable[[ProjectTask], bool] | None = None) -> list[ProjectTask]:
        tasks = [
            ProjectTask(
                group_index=gi,
                project_index=pi,
                path=project.path,
                branch=project.current_branch,
                ahead_behind=project.ahead_behind,
            )
            for gi, pi, project in self.model.coordinates()
        ]
        if predicate is not None:
            tasks = [t for t in tasks if predicate(t)]
        return tasks

    def _execute_parallel(self, operation: Operation, name: str, tasks: list[ProjectTask] | None = None) -> Aggregator:
        """Run operation for every task and merge the results."""
        if tasks is None:
            tasks = self._tasks()
        aggregator = Aggregator(self.model)
        for delta in self.pool.run(tasks, operation, name):
            aggregator.merge(delta)
        self.model.refresh_counts()
        logger.info("%s: %d projects, %d failed", name, len(tasks), len(aggregator.failed))
        return aggregator

    # Operations, executed on worker threads

    def _fetch(self, task: ProjectTask) -> ProjectDelta:
        success, error = self.vcs.fetch_all(task.path)
        return task.delta("fetch", error="" if success else (error or "fetch failed"))

    def _status(self, task: ProjectTask) -> ProjectDelta:
        modified = self.vcs.modification_count(task.path)
        branch = self.vcs.current_branch(task.path) or ""
        ahead_behind = None
        if branch:
            try:
                ahead_behind = self.vcs.ahead_behind(task.path, branch)
            except GitError as e:
                logger.debug("%s: no upstream for %s: %s", task.path, branch, e)

        local_branches = None
        remote_ahead_behind = None
        if self.branches:
            local_branches = frozenset(self.vcs.local_branches(task.path))
            try:
                remote_ahead_behind = {
                    f"{remote}/{name}": (ahead, behind)
                    for remote, name, ahead, behind in self.vcs.ahead_behind_remote(task.path)
                }
            except GitError as e:
                logger.error("%s: cannot compare remote branches: %s", task.path, e)

        return task.delta(
            "status",
            current_branch=branch,
            branches=local_branches,
            modified_count=modified,
            ahead_behind=ahead_behind,
            remote_ahead_behind=remote_ahead_behind,
        )

    def _fast_forward(self, task: ProjectTask) -> ProjectDelta:
        success, message = self.vcs.fast_forward(task.path, task.branch)
        if not success:
            return task.delta("fast-forward", error=message or "fast-forward failed")
        ahead, _ = task.ahead_behind
        return task.delta("fast-forward", fast_forwarded=True, ahead_behind=(ahead, 0))

    # Passes

    def fetch_all(self) -> Aggregator:
        """Update remote tracking data of every project."""
        return self._execute_parallel(self._fetch, "fetch")

    def update_status(self) -> Aggregator:
        """Recompute modification and ahead/behind counts."""
        return self._execute_parallel(self._status, "status")

    def fast_forward_behind(self) -> Aggregator:
        """Fast-forward projects the status pass found behind."""
        tasks = self._tasks(lambda t: bool(t.branch) and t.ahead_behind[1] > 0)
        return self._execute_parallel(self._fast_forward, "fast-forward", tasks)

    def run(self, *, fetch: bool = False, status: bool = True, fast_forward: bool = False) -> None:
        """Run the requested passes as fetch, then status, then fast-forward."""
        if fetch:
            self.fetch_all()
        if status or fast_forward:
            self.update_status()
        if fast_forward:
            self.fast_forward_behind()

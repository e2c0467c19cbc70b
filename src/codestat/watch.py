"""Watch mode: rescan periodically and announce projects that fell behind."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from .core import CommitInfo, GitError, GroupModel, Project, VersionControl
from .fleet import Fleet

logger = logging.getLogger(__name__)

MAX_NOTIFY_COMMITS = 5


class Notifier(Protocol):
    def notify(self, project: Project, title: str, body: str) -> None: ...


class ConsoleNotifier:
    """Show notifications as panels on the console."""

    def __init__(self, console: Console):
        self.console = console

    def notify(self, project: Project, title: str, body: str) -> None:
        self.console.print(Panel(Text(body), title=title, border_style="magenta", expand=False), highlight=False)


def notification_body(commits: list[CommitInfo], behind: int) -> str:
    lines = [f"{c.summary} - {c.author}" for c in commits[:MAX_NOTIFY_COMMITS]]
    hidden = behind - len(lines)
    if hidden > 0:
        lines.append(f"... and {hidden} more")
    return "\n".join(lines)


class Watcher:
    """Repeat discovery, fetch and status; notify on new upstream commits."""

    def __init__(
        self,
        discover: Callable[[], GroupModel],
        vcs: VersionControl,
        notifier: Notifier,
        max_workers: int | None = None,
        interval: float = 300,
    ):
        self.discover = discover
        self.vcs = vcs
        self.notifier = notifier
        self.max_workers = max_workers
        self.interval = interval
        self._last_behind: dict[Path, int] = {}

    def iterate(self) -> list[Project]:
        """One watch round; returns the projects that were announced."""
        model = self.discover()
        fleet = Fleet(model, self.vcs, self.max_workers)
        fleet.run(fetch=True, status=True)

        announced = []
        for project in model.projects():
            previous = self._last_behind.get(project.path, 0)
            self._last_behind[project.path] = project.behind
            if project.behind <= previous or not project.current_branch:
                continue
            try:
                commits = self.vcs.behind_commits(project.path, project.current_branch)
            except GitError as e:
                logger.error("%s: cannot list new commits: %s", project.path, e)
                continue
            title = f"codestat watch ({project.name})"
            self.notifier.notify(project, title, notification_body(commits, project.behind))
            announced.append(project)
        return announced

    def run(self, iterations: int | None = None) -> None:
        """Loop until interrupted, or for a fixed number of rounds."""
        count = 0
        while iterations is None or count < iterations:
            if count:
                time.sleep(self.interval)
            self.iterate()
            count += 1

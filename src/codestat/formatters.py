"""Sorting, filtering and console/JSON output of the project list."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from typing import Any

from rich.console import Console
from rich.text import Text

from .core import GroupModel, OutputType, Project, SortKey, Verbosity

COLOR_DIRTY = "yellow"
COLOR_CLEAN = "green"
COLOR_GROUP = "blue"
COLOR_AHEAD = "cyan"
COLOR_BEHIND = "magenta"
COLOR_MUTED = "bright_black"


def _by_modifications(p: Project) -> tuple[int, int]:
    # ahead/behind only breaks ties between two clean working trees
    return p.modified_count, p.ahead_behind_sum if p.modified_count == 0 else 0


def _by_ahead_behind(p: Project) -> tuple[int, int]:
    return p.ahead_behind_sum, p.modified_count if p.ahead_behind_sum == 0 else 0


SORT_KEYS: dict[SortKey, Callable[[Project], Any]] = {
    SortKey.DIR: lambda p: str(p.path),
    SortKey.TIME: lambda p: p.elapsed_ms,
    SortKey.MOD: _by_modifications,
    SortKey.AHEAD_BEHIND: _by_ahead_behind,
}


def sort_projects(projects: Iterable[Project], sort: SortKey | None) -> list[Project]:
    """Stable sort; equal keys keep their input order."""
    projects = list(projects)
    if sort is None:
        return projects
    return sorted(projects, key=SORT_KEYS[sort])


def is_visible(project: Project, out_types: set[OutputType]) -> bool:
    if OutputType.ALL in out_types:
        return True
    return not project.is_clean or project.fast_forwarded


def visible_projects(model: GroupModel, out_types: set[OutputType], sort: SortKey | None) -> list[Project]:
    """Flatten, filter and order the projects of a model."""
    shown = [p for p in model.projects() if is_visible(p, out_types)]
    return sort_projects(shown, sort)


class OutputFormatter:
    """Format output for console or JSON."""

    def __init__(self, console: Console, use_json: bool = False):
        self.console = console
        self.use_json = use_json

    def _emit(self, line: Text) -> None:
        line.rstrip()
        self.console.print(line, highlight=False, soft_wrap=True)

    def print_model(
        self,
        model: GroupModel,
        verbosity: Verbosity = Verbosity.COMPACT,
        out_types: set[OutputType] | None = None,
        sort: SortKey | None = None,
    ) -> None:
        """Render the model at the requested verbosity."""
        out_types = out_types or set()
        if self.use_json:
            self._print_json(model, out_types, sort)
        elif verbosity >= Verbosity.TREE:
            self.print_tree(model)
        elif verbosity == Verbosity.GROUPED:
            self.print_group_summary(model, out_types)
            self.print_compact(model, out_types, sort)
        else:
            self.print_compact(model, out_types, sort)

    # Compact listing

    def compact_lines(self, model: GroupModel, out_types: set[OutputType], sort: SortKey | None) -> list[Text]:
        projects = visible_projects(model, out_types, sort)
        group_width = max((len(p.group_name) for p in projects), default=0)
        name_width = max((len(p.name) for p in projects), default=0)
        return [self._project_line(p, out_types, group_width, name_width) for p in projects]

    def print_compact(self, model: GroupModel, out_types: set[OutputType], sort: SortKey | None) -> None:
        for line in self.compact_lines(model, out_types, sort):
            self._emit(line)

    def _project_line(
        self,
        project: Project,
        out_types: set[OutputType],
        group_width: int,
        name_width: int,
    ) -> Text:
        line = Text()
        if OutputType.DIR in out_types:
            line.append(str(project.path))
        else:
            color = COLOR_CLEAN if project.is_clean else COLOR_DIRTY
            line.append(f"{project.group_name:<{group_width}} ", style=COLOR_GROUP)
            line.append(f"{project.name:<{name_width}}", style=color)
            line.append("*" if project.fast_forwarded else " ", style=COLOR_DIRTY)
            line.append(" ")

        if OutputType.MODIFICATION in out_types:
            self._append_modifications(line, project)
        if OutputType.BRANCHES in out_types:
            self._append_branches(line, project)
        if OutputType.TIME in out_types:
            line.append(f"{project.elapsed_ms}ms", style=COLOR_MUTED)
        return line

    def _append_modifications(self, line: Text, project: Project) -> None:
        color = COLOR_DIRTY if project.modified_count > 0 else COLOR_CLEAN
        line.append(f"{'±' + str(project.modified_count):<5} ", style=color)
        if project.ahead_behind != (0, 0):
            line.append(f"↑{project.ahead:<3} ", style=COLOR_AHEAD)
            line.append(f"↓{project.behind:<3} ", style=COLOR_BEHIND)
        else:
            line.append(" " * 10)

    def _append_branches(self, line: Text, project: Project) -> None:
        line.append(project.current_branch or "(detached)", style=COLOR_AHEAD)
        line.append(" ")
        for key, (ahead, behind) in sorted(project.remote_ahead_behind.items()):
            if (ahead, behind) == (0, 0):
                continue
            line.append(f"{key} ")
            line.append(f"↑{ahead} ", style=COLOR_AHEAD)
            line.append(f"↓{behind} ", style=COLOR_BEHIND)

    # Grouped summary

    def print_group_summary(self, model: GroupModel, out_types: set[OutputType]) -> None:
        """One header line per non-empty group."""
        show_time = OutputType.TIME in out_types
        for group in model.groups:
            if not group.projects:
                continue
            line = Text()
            line.append(f"{group.name:<8} ")
            line.append(f"{len(group.projects):<4} ", style=COLOR_CLEAN)
            elapsed = f"{max(p.elapsed_ms for p in group.projects)}ms" if show_time else ""
            line.append(f"{elapsed:<6} ", style=COLOR_MUTED)
            line.append(str(group.path), style="white")
            self._emit(line)

    # Tree

    def print_tree(self, model: GroupModel) -> None:
        """Every group and project, regardless of filters."""
        for i, group in enumerate(model.groups):
            last_group = i == len(model.groups) - 1
            line = Text("└──" if last_group else "├──")
            line.append(group.name, style=COLOR_GROUP)
            line.append(f" ({len(group.projects)})", style=COLOR_MUTED)
            self._emit(line)
            for j, project in enumerate(group.projects):
                line = Text("   " if last_group else "|  ")
                line.append("└──" if j == len(group.projects) - 1 else "├──")
                if project.is_clean:
                    line.append(project.name, style=COLOR_CLEAN)
                else:
                    line.append(project.name, style=f"bold {COLOR_DIRTY}")
                    line.append("  *")
                self._emit(line)

    # JSON

    def _print_json(self, model: GroupModel, out_types: set[OutputType], sort: SortKey | None) -> None:
        projects = visible_projects(model, out_types, sort)
        output = {
            "root": str(model.root),
            "count": len(projects),
            "groups": [
                {"name": g.name, "path": str(g.path), "projects": len(g.projects), "not_ok": g.not_ok_count}
                for g in model.groups
            ],
            "projects": [p.to_dict() for p in projects],
        }
        self.console.print(json.dumps(output, indent=2), markup=False, highlight=False, soft_wrap=True)

"""Repository discovery: walk the code directory and group working copies."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from .core import DiscoveryError, Group, GroupModel, Project, VersionControl
from .patterns import PatternFilter

logger = logging.getLogger(__name__)

DEFAULT_DEPTH = 2
RESERVED_PREFIX = "."


class GroupIndex:
    """Resolve a project's group from its parent directory.

    Groups are keyed by path; a project belongs to the group with the
    longest path that is an ancestor of (or equal to) its parent.
    """

    def __init__(self, model: GroupModel):
        self.model = model
        self._by_path: dict[Path, int] = {}

    def open(self, name: str, path: Path) -> Group:
        group = Group(name=name, path=path)
        self._by_path[path] = len(self.model.groups)
        self.model.groups.append(group)
        return group

    def resolve(self, parent: Path) -> Group | None:
        for candidate in (parent, *parent.parents):
            if candidate == self.model.root:
                break
            index = self._by_path.get(candidate)
            if index is not None:
                return self.model.groups[index]
        return None


class Discoverer:
    """Walk the root and build a GroupModel of every working copy."""

    def __init__(self, vcs: VersionControl, pattern_filter: PatternFilter | None = None):
        self.vcs = vcs
        self.pattern_filter = pattern_filter

    def discover(self, root: Path, max_depth: int = DEFAULT_DEPTH) -> GroupModel:
        """Discover all working copies up to max_depth levels below root.

        Raises DiscoveryError if any directory on the way cannot be read.
        """
        root = Path(os.path.abspath(root))
        model = GroupModel(root=root)
        index = GroupIndex(model)
        self._walk(root, max_depth, model, index)
        model.groups.sort(key=lambda g: g.name)
        logger.info("discovered %d projects in %d groups", len(model), len(model.groups))
        return model

    def _is_alias(self, entry: os.DirEntry, root: Path) -> bool:
        """A link that resolves back inside the tree is an alias, not a copy."""
        if not entry.is_symlink():
            return False
        target = os.readlink(entry.path)
        if not os.path.isabs(target):
            return True
        target = os.path.normpath(target)
        return os.path.commonpath([str(root), target]) == str(root)

    def _entries(self, path: Path) -> list[os.DirEntry]:
        try:
            with os.scandir(path) as it:
                entries = list(it)
        except OSError as e:
            raise DiscoveryError(path, e) from e
        entries.sort(key=lambda e: e.name)
        return entries

    def _walk(self, path: Path, depth: int, model: GroupModel, index: GroupIndex) -> None:
        if depth <= 0:
            return

        root = model.root
        for entry in self._entries(path):
            entry_path = Path(entry.path)
            try:
                if not entry.is_dir():
                    continue
                if self.pattern_filter is not None and self.pattern_filter.should_skip(entry_path):
                    logger.debug("ignored %s", entry_path)
                    continue
                if self._is_alias(entry, root):
                    logger.debug("skipping alias %s", entry_path)
                    continue
            except OSError as e:
                raise DiscoveryError(entry_path, e) from e

            if self.vcs.is_working_copy(entry_path):
                self._add_project(entry_path, model, index)
            elif entry.name.startswith(RESERVED_PREFIX):
                continue
            else:
                if path == root:
                    index.open(entry.name, entry_path)
                self._walk(entry_path, depth - 1, model, index)

    def _add_project(self, path: Path, model: GroupModel, index: GroupIndex) -> None:
        parent = path.parent
        if parent == model.root:
            # a standalone repository is its own group
            group = index.open(path.name, path)
        else:
            group = index.resolve(parent)
            if group is None:
                group = index.open(parent.relative_to(model.root).as_posix(), parent)
        group.add_project(Project(name=path.name, group_name=group.name, path=path))

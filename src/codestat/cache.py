"""Discovery result cache stored at <root>/.codecache.

The cache holds only the directory structure found by discovery. Status
fields live on the runtime model and are never written here.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path

from .core import Group, GroupModel, Project
from .discovery import DEFAULT_DEPTH

logger = logging.getLogger(__name__)

CACHE_FILE = ".codecache"
CACHE_VERSION = 2
DEFAULT_CACHE_TTL = 30 * 60


@dataclass(frozen=True)
class ProjectRecord:
    name: str
    group_name: str
    path: str


@dataclass(frozen=True)
class GroupRecord:
    name: str
    path: str
    projects: tuple[ProjectRecord, ...]


@dataclass(frozen=True)
class DiscoverySnapshot:
    """Plain, persisted shape of a discovery result."""

    root: str
    groups: tuple[GroupRecord, ...]
    depth: int = DEFAULT_DEPTH

    @classmethod
    def from_model(cls, model: GroupModel, depth: int = DEFAULT_DEPTH) -> DiscoverySnapshot:
        return cls(
            root=str(model.root),
            depth=depth,
            groups=tuple(
                GroupRecord(
                    name=g.name,
                    path=str(g.path),
                    projects=tuple(
                        ProjectRecord(name=p.name, group_name=p.group_name, path=str(p.path))
                        for p in g.projects
                    ),
                )
                for g in model.groups
            ),
        )

    def to_model(self) -> GroupModel:
        """Build a fresh live model; every status field starts at its default."""
        model = GroupModel(root=Path(self.root))
        for record in self.groups:
            group = Group(name=record.name, path=Path(record.path))
            for p in record.projects:
                group.add_project(Project(name=p.name, group_name=p.group_name, path=Path(p.path)))
            model.groups.append(group)
        return model

    def to_dict(self) -> dict:
        return {
            "version": CACHE_VERSION,
            "root": self.root,
            "depth": self.depth,
            "groups": [
                {
                    "name": g.name,
                    "path": g.path,
                    "projects": [
                        {"name": p.name, "group_name": p.group_name, "path": p.path}
                        for p in g.projects
                    ],
                }
                for g in self.groups
            ],
        }

    @classmethod
    def from_dict(cls, data: dict) -> DiscoverySnapshot:
        if data.get("version") != CACHE_VERSION:
            raise ValueError(f"unsupported cache version {data.get('version')!r}")
        return cls(
            root=str(data["root"]),
            depth=int(data["depth"]),
            groups=tuple(
                GroupRecord(
                    name=str(g["name"]),
                    path=str(g["path"]),
                    projects=tuple(
                        ProjectRecord(
                            name=str(p["name"]),
                            group_name=str(p["group_name"]),
                            path=str(p["path"]),
                        )
                        for p in g["projects"]
                    ),
                )
                for g in data["groups"]
            ),
        )


class ResultCache:
    """Load and save discovery snapshots with a time-to-live."""

    def __init__(self, path: Path, ttl: float = DEFAULT_CACHE_TTL):
        self.path = path
        self.ttl = ttl

    @classmethod
    def for_root(cls, root: Path, ttl: float = DEFAULT_CACHE_TTL) -> ResultCache:
        return cls(root / CACHE_FILE, ttl)

    def is_fresh(self, now: float | None = None) -> bool:
        try:
            mtime = self.path.stat().st_mtime
        except OSError:
            return False
        now = time.time() if now is None else now
        return now - mtime <= self.ttl

    def load_if_fresh(self, now: float | None = None, depth: int = DEFAULT_DEPTH) -> GroupModel | None:
        """Return the cached model, or None on a stale, missing or bad file.

        A snapshot taken at another search depth is a miss too.
        """
        if not self.is_fresh(now):
            logger.debug("cache %s missing or stale", self.path)
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            snapshot = DiscoverySnapshot.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.debug("ignoring unreadable cache %s: %s", self.path, e)
            return None
        if snapshot.depth != depth:
            logger.debug("cache %s was built with depth %d, not %d", self.path, snapshot.depth, depth)
            return None
        logger.debug("using cached discovery from %s", self.path)
        return snapshot.to_model()

    def save(self, model: GroupModel, depth: int = DEFAULT_DEPTH) -> None:
        """Write the model's structure; failures are logged, not raised."""
        snapshot = DiscoverySnapshot.from_model(model, depth)
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            tmp.write_text(json.dumps(snapshot.to_dict(), indent=2) + "\n", encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as e:
            logger.warning("could not write cache %s: %s", self.path, e)

"""Run options: command-line values merged with a named profile."""

from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .core import ConfigError, OutputType, SortKey, Verbosity
from .discovery import DEFAULT_DEPTH

logger = logging.getLogger(__name__)

CODE_ENV = "CODE"

_BOOL_KEYS = {
    "no-ignore": "no_ignore",
    "fetch": "fetch",
    "fast-forward": "fast_forward",
    "time": "time",
    "all": "all",
    "dir": "dir",
    "modification": "modification",
    "mod": "modification",
    "branches": "branches",
}
_INT_KEYS = {"depth": "depth", "jobs": "jobs", "verbose": "verbose"}


def profile_files() -> list[Path]:
    """Profile file locations, in lookup order."""
    home = Path.home()
    return [home / ".coderc", home / ".config" / "coderc"]


def load_profile(name: str, files: list[Path] | None = None) -> dict[str, Any]:
    """Load profile `name` from the first profile file that exists.

    Returns the profile normalised to RunOptions field names. A missing
    profile is a warning and yields an empty dict; a broken file or a
    wrongly typed value is a ConfigError.
    """
    for path in files if files is not None else profile_files():
        if not path.is_file():
            continue
        try:
            with open(path, "rb") as f:
                document = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"{path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"cannot read {path}: {e}") from e

        table = document.get(name)
        if table is None:
            logger.warning("profile '%s' not found in %s", name, path)
            return {}
        if not isinstance(table, dict):
            raise ConfigError(f"{path}: profile '{name}' is not a table")
        return _normalise(table, path, name)

    logger.warning("profile '%s' requested but no profile file exists", name)
    return {}


def _normalise(table: Mapping[str, Any], path: Path, name: str) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for key, value in table.items():
        where = f"{path}: [{name}] {key}"
        if key in _BOOL_KEYS:
            if not isinstance(value, bool):
                raise ConfigError(f"{where} must be true or false")
            values[_BOOL_KEYS[key]] = value
        elif key in _INT_KEYS:
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigError(f"{where} must be an integer")
            values[_INT_KEYS[key]] = value
        elif key == "code":
            if not isinstance(value, str):
                raise ConfigError(f"{where} must be a string")
            values["code"] = value
        elif key == "sort":
            if not isinstance(value, str):
                raise ConfigError(f"{where} must be a string")
            try:
                values["sort"] = SortKey.parse(value)
            except ValueError as e:
                raise ConfigError(f"{where}: {e}") from e
        else:
            logger.warning("%s: unknown key ignored", where)
    return values


def resolve_root(code: str | None, environ: Mapping[str, str] | None = None) -> Path:
    """Pick the code directory from the flag/profile value or $CODE."""
    environ = os.environ if environ is None else environ
    value = code or environ.get(CODE_ENV)
    if not value:
        raise ConfigError(f"'{CODE_ENV}' env variable not set")
    root = Path(os.path.expandvars(value)).expanduser()
    return Path(os.path.abspath(root))


@dataclass
class RunOptions:
    """Everything one invocation needs, after flags and profile are merged."""

    root: Path
    use_ignore: bool = True
    out_types: set[OutputType] = field(default_factory=set)
    sort: SortKey | None = None
    verbosity: Verbosity = Verbosity.COMPACT
    fetch: bool = False
    fast_forward: bool = False
    depth: int = DEFAULT_DEPTH
    jobs: int | None = None
    show_time: bool = False
    json_output: bool = False
    watch: float | None = None

    @property
    def dirs_only_all(self) -> bool:
        """'Directories only, show all' needs nothing but the structure."""
        return OutputType.DIR in self.out_types and OutputType.ALL in self.out_types

    @property
    def needs_status(self) -> bool:
        return not self.dirs_only_all or self.fast_forward

    @property
    def use_cache(self) -> bool:
        return self.dirs_only_all and self.use_ignore and self.watch is None

    @property
    def save_cache(self) -> bool:
        return self.use_ignore and self.watch is None

    @classmethod
    def build(
        cls,
        cli: Mapping[str, Any],
        profile: Mapping[str, Any] | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> RunOptions:
        """Merge command-line values with a profile.

        Flags combine with OR; valued options from the command line win
        over the profile. Raises ConfigError when no root can be found.
        """
        profile = profile or {}

        def flag(key: str) -> bool:
            return bool(cli.get(key)) or bool(profile.get(key))

        def value(key: str, default: Any = None) -> Any:
            if cli.get(key) is not None:
                return cli[key]
            if profile.get(key) is not None:
                return profile[key]
            return default

        root = resolve_root(value("code"), environ)

        out_types: set[OutputType] = set()
        if flag("all"):
            out_types.add(OutputType.ALL)
        if flag("time"):
            out_types.add(OutputType.TIME)
        if flag("modification"):
            out_types.add(OutputType.MODIFICATION)
        if flag("branches"):
            out_types.add(OutputType.BRANCHES)
            out_types.add(OutputType.MODIFICATION)
        if flag("dir"):
            out_types.add(OutputType.DIR)
            out_types -= {OutputType.MODIFICATION, OutputType.TIME}

        sort = value("sort")
        if isinstance(sort, str):
            try:
                sort = SortKey.parse(sort)
            except ValueError as e:
                raise ConfigError(str(e)) from e
        if sort == SortKey.TIME:
            out_types.add(OutputType.TIME)
        elif sort in (SortKey.MOD, SortKey.AHEAD_BEHIND):
            out_types.add(OutputType.MODIFICATION)

        depth = value("depth", DEFAULT_DEPTH)
        if depth < 0:
            raise ConfigError(f"depth must not be negative, got {depth}")
        jobs = value("jobs")
        if jobs is not None and jobs < 1:
            raise ConfigError(f"jobs must be at least 1, got {jobs}")

        verbose = max(cli.get("verbose") or 0, profile.get("verbose") or 0)

        return cls(
            root=root,
            use_ignore=not flag("no_ignore"),
            out_types=out_types,
            sort=sort,
            verbosity=Verbosity.from_count(verbose),
            fetch=flag("fetch"),
            fast_forward=flag("fast_forward"),
            depth=depth,
            jobs=jobs,
            show_time=flag("time"),
            json_output=bool(cli.get("json_output")),
            watch=cli.get("watch"),
        )

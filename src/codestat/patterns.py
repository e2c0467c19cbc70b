"""Ignore and force-include patterns read from the root's .codeignore."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path

from .core import IgnorePatternError

logger = logging.getLogger(__name__)

IGNORE_FILE = ".codeignore"


def _check_pattern(pattern: str, line: int) -> None:
    """Reject globs fnmatch would silently treat as literals."""
    i = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if c == "[":
            j = i + 1
            if j < n and pattern[j] in "!^":
                j += 1
            if j < n and pattern[j] == "]":
                j += 1
            while j < n and pattern[j] != "]":
                j += 1
            if j >= n:
                raise IgnorePatternError(pattern, line, "unterminated character class")
            i = j
        elif c == "*" and pattern.startswith("**", i):
            run = i
            while run < n and pattern[run] == "*":
                run += 1
            if run - i > 2:
                raise IgnorePatternError(pattern, line, "more than two consecutive '*'")
            before_ok = i == 0 or pattern[i - 1] == "/"
            after_ok = run == n or pattern[run] == "/"
            if not (before_ok and after_ok):
                raise IgnorePatternError(pattern, line, "'**' must be a whole path component")
            i = run - 1
        i += 1


@dataclass
class PatternFilter:
    """Decide whether the walk should skip a path below the root.

    A path is skipped when it matches an ignore pattern and no
    force-include pattern. Matching is done on the root-relative,
    '/'-separated path with shell glob rules.
    """

    root: Path
    ignore: list[str] = field(default_factory=list)
    include: list[str] = field(default_factory=list)

    def relative(self, path: Path | str) -> str:
        rel = os.path.relpath(path, self.root)
        return rel.replace(os.sep, "/")

    def should_skip(self, path: Path | str) -> bool:
        if not self.ignore:
            return False
        rel = self.relative(path)
        if not any(fnmatchcase(rel, p) for p in self.ignore):
            return False
        return not any(fnmatchcase(rel, p) for p in self.include)

    @classmethod
    def parse(cls, root: Path, lines: list[str], use_ignore: bool = True) -> PatternFilter:
        """Build a filter from ignore-file lines.

        '#' lines are comments, '!' lines force-include, anything else is
        an ignore pattern. With use_ignore off only force-include lines
        are kept. Raises IgnorePatternError on a malformed pattern.
        """
        ignore: list[str] = []
        include: list[str] = []
        for number, raw in enumerate(lines, 1):
            line = raw.rstrip("\r\n").strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("!"):
                pattern = line[1:].strip()
                if not pattern:
                    raise IgnorePatternError(line, number, "empty force-include pattern")
                _check_pattern(pattern, number)
                include.append(pattern.strip("/"))
            else:
                _check_pattern(line, number)
                if use_ignore:
                    ignore.append(line.strip("/"))
        return cls(root=root, ignore=ignore, include=include)

    @classmethod
    def load(cls, root: Path, use_ignore: bool = True) -> PatternFilter:
        """Read <root>/.codeignore; a missing file means no patterns."""
        ignore_file = root / IGNORE_FILE
        try:
            lines = ignore_file.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            logger.debug("no %s in %s", IGNORE_FILE, root)
            return cls(root=root)
        except OSError as e:
            raise IgnorePatternError(str(ignore_file), 0, f"unreadable: {e}") from e
        except UnicodeDecodeError as e:
            raise IgnorePatternError(str(ignore_file), 0, f"not valid UTF-8: {e}") from e
        pattern_filter = cls.parse(root, lines, use_ignore=use_ignore)
        logger.debug(
            "loaded %d ignore and %d force-include patterns",
            len(pattern_filter.ignore),
            len(pattern_filter.include),
        )
        return pattern_filter

"""codestat: Status of every repository under your code directory."""

# Guard against deleted CWD (e.g. directory removed by another process).
# rich crashes on import if os.getcwd() fails, so recover before any imports.
import os

try:
    os.getcwd()
except (OSError, PermissionError):
    os.chdir(os.path.expanduser("~"))

from ._version import __version__
from .cache import DiscoverySnapshot, ResultCache
from .cli import app
from .config import RunOptions, load_profile, resolve_root
from .core import (
    CodestatError,
    CommitInfo,
    ConfigError,
    DiscoveryError,
    GitError,
    GitOperations,
    Group,
    GroupModel,
    IgnorePatternError,
    OutputType,
    Project,
    SortKey,
    Verbosity,
    VersionControl,
)
from .discovery import Discoverer
from .fleet import Aggregator, Fleet, ProjectDelta, ProjectTask, WorkerPool
from .formatters import OutputFormatter, sort_projects, visible_projects
from .patterns import PatternFilter
from .watch import ConsoleNotifier, Watcher

__all__ = [
    # Version
    "__version__",
    # CLI
    "app",
    # Models
    "CommitInfo",
    "Group",
    "GroupModel",
    "OutputType",
    "Project",
    "SortKey",
    "Verbosity",
    # Errors
    "CodestatError",
    "ConfigError",
    "DiscoveryError",
    "GitError",
    "IgnorePatternError",
    # Discovery and cache
    "Discoverer",
    "DiscoverySnapshot",
    "PatternFilter",
    "ResultCache",
    # Operations
    "Aggregator",
    "Fleet",
    "GitOperations",
    "ProjectDelta",
    "ProjectTask",
    "VersionControl",
    "WorkerPool",
    "Watcher",
    # Configuration
    "RunOptions",
    "load_profile",
    "resolve_root",
    # Formatters
    "ConsoleNotifier",
    "OutputFormatter",
    "sort_projects",
    "visible_projects",
]

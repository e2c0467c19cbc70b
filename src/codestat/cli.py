"""Command-line interface."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn

from ._version import __version__
from .cache import ResultCache
from .config import RunOptions, load_profile
from .core import ConfigError, DiscoveryError, GitOperations, GroupModel, OutputType, SortKey, VersionControl
from .discovery import Discoverer
from .fleet import Fleet
from .formatters import OutputFormatter
from .patterns import PatternFilter
from .watch import ConsoleNotifier, Watcher

logger = logging.getLogger("codestat")

app = typer.Typer(
    name="codestat",
    help="Status of every repository under your code directory.",
    add_completion=False,
)


def setup_logging(debug: bool, console: Console) -> None:
    """Send codestat's log records to stderr, prefixed with the program name."""
    level = logging.DEBUG if debug else logging.WARNING
    handler = RichHandler(
        console=console,
        show_time=False,
        show_level=False,
        show_path=False,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("codestat: %(message)s"))
    logger.handlers[:] = [handler]
    logger.setLevel(level)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"codestat {__version__}")
        raise typer.Exit()


def sort_callback(value: str | None) -> str | None:
    if value is None:
        return None
    try:
        return SortKey.parse(value).value
    except ValueError as e:
        raise typer.BadParameter(str(e)) from None


@contextmanager
def _spinner(console: Console, enabled: bool, description: str):
    if not enabled:
        yield
        return
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task(description, total=None)
        yield


def discover(opts: RunOptions, vcs: VersionControl, pattern_filter: PatternFilter) -> GroupModel:
    """Discover the model, from the cache when the output allows it."""
    cache = ResultCache.for_root(opts.root)
    if opts.use_cache:
        model = cache.load_if_fresh(depth=opts.depth)
        if model is not None:
            return model
    model = Discoverer(vcs, pattern_filter).discover(opts.root, opts.depth)
    if opts.save_cache:
        cache.save(model, opts.depth)
    return model


def scan(opts: RunOptions, vcs: VersionControl, pattern_filter: PatternFilter, console: Console | None = None) -> GroupModel:
    """Discover and run every pass the options ask for."""
    show = console is not None and console.is_terminal and not opts.json_output
    with _spinner(console, show, "Scanning repositories..."):
        model = discover(opts, vcs, pattern_filter)

    fleet = Fleet(model, vcs, opts.jobs, branches=OutputType.BRANCHES in opts.out_types)
    with _spinner(console, show, "Fetching and analyzing..." if opts.fetch else "Analyzing..."):
        fleet.run(fetch=opts.fetch, status=opts.needs_status, fast_forward=opts.fast_forward)
    return model


@app.command()
def main(
    code: str = typer.Option(None, "--code", "-c", help="Override the CODE variable"),
    print_code: bool = typer.Option(False, "--print-code", "-C", help="Print the code directory and exit"),
    verbose: int = typer.Option(
        0, "--verbose", "-v", count=True, help="Group summary (-v) or full tree (-vv)"
    ),
    no_ignore: bool = typer.Option(False, "--no-ignore", "-i", help="Don't read ignore patterns from .codeignore"),
    sort: str = typer.Option(
        None,
        "--sort",
        "-s",
        callback=sort_callback,
        help="Sort by: directory (d), modifications (m), time (t), ahead-behind (a)",
    ),
    fetch: bool = typer.Option(False, "--fetch", "-f", help="Fetch from remotes first"),
    fast_forward: bool = typer.Option(
        False, "--fast-forward", "-F", help="Fast-forward repositories that are behind"
    ),
    depth: int = typer.Option(None, "--depth", "-D", min=0, help="Project search depth (default: 2)"),
    profile: str = typer.Option(None, "--profile", "-p", help="Load a profile from ~/.coderc"),
    jobs: int = typer.Option(None, "--jobs", "-j", min=1, help="Worker threads (default: logical CPUs)"),
    show_time: bool = typer.Option(False, "--time", "-t", help="Show time spent per repository"),
    all_repos: bool = typer.Option(False, "--all", "-a", help="Show clean repositories too"),
    dirs: bool = typer.Option(False, "--dir", "-d", help="Show repository paths (turns off -t and -m)"),
    modification: bool = typer.Option(False, "--mod", "-m", help="Show modifications and ahead/behind"),
    branches: bool = typer.Option(False, "--branches", "-b", help="Show ahead/behind for every remote branch"),
    json_output: bool = typer.Option(False, "--json", "-J", help="Output as JSON"),
    debug: bool = typer.Option(False, "--debug", help="Log progress and git failures in detail"),
    watch: float = typer.Option(None, "--watch", "-w", min=1, help="Rescan every N seconds and notify"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
):
    """Show which repositories under the code directory need attention."""
    started = time.perf_counter()
    console = Console(highlight=False)
    err_console = Console(stderr=True)
    setup_logging(debug, err_console)

    try:
        profile_values = load_profile(profile) if profile else {}
        opts = RunOptions.build(
            {
                "code": code,
                "no_ignore": no_ignore,
                "sort": sort,
                "fetch": fetch,
                "fast_forward": fast_forward,
                "depth": depth,
                "jobs": jobs,
                "time": show_time,
                "all": all_repos,
                "dir": dirs,
                "modification": modification,
                "branches": branches,
                "verbose": verbose,
                "json_output": json_output,
                "watch": watch,
            },
            profile_values,
        )
    except ConfigError as e:
        logger.error("%s", e)
        raise typer.Exit(1)

    if print_code:
        print(opts.root)
        raise typer.Exit()

    vcs = GitOperations()
    try:
        pattern_filter = PatternFilter.load(opts.root, use_ignore=opts.use_ignore)
    except ConfigError as e:
        logger.error("%s", e)
        raise typer.Exit(1)

    if opts.watch is not None:
        _watch(opts, vcs, pattern_filter, console)
        return

    try:
        model = scan(opts, vcs, pattern_filter, err_console)
    except DiscoveryError as e:
        logger.error("error: %s", e)
        raise typer.Exit(1)

    formatter = OutputFormatter(console, use_json=opts.json_output)
    formatter.print_model(model, opts.verbosity, opts.out_types, opts.sort)

    if opts.show_time:
        elapsed = int((time.perf_counter() - started) * 1000)
        err_console.print(f"{elapsed}ms", style="bright_black")


def _watch(opts: RunOptions, vcs: VersionControl, pattern_filter: PatternFilter, console: Console) -> None:
    discoverer = Discoverer(vcs, pattern_filter)
    watcher = Watcher(
        lambda: discoverer.discover(opts.root, opts.depth),
        vcs,
        ConsoleNotifier(console),
        opts.jobs,
        interval=opts.watch,
    )
    logger.info("watching %s every %ss", opts.root, opts.watch)
    try:
        watcher.run()
    except DiscoveryError as e:
        logger.error("error: %s", e)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        pass

"""Command-line interface for spaceatlas."""
from __future__ import annotations
import functools
import os
import time
from pathlib import Path
from typing import Callable, Optional

import click
from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from .config import ConfigError, discover_config_file, load_config
from .drives import list_drives, volume_usage
from .errors import SpaceAtlasError
from .logs import setup_logging
from .models import Node, ScanResult
from .session import Session
from .utils import canonical, canonical_entry, format_bytes
from .worker import ScanJob

console = Console()

POLL_INTERVAL = 0.1


class OperationFailed(click.ClickException):
    exit_code = 2

    def __init__(self, error: SpaceAtlasError):
        super().__init__(f"{error.kind.value}: {error}")
        self.error = error


def handle_errors(fn: Callable) -> Callable:
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except SpaceAtlasError as e:
            raise OperationFailed(e) from e
    return wrapper


def validate_log_level(ctx: click.Context, param: click.Parameter,
                       value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    normalized = value.upper().strip()
    valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if normalized not in valid:
        raise click.BadParameter(f'Invalid log level "{value}". Valid options: {", ".join(sorted(valid))}')
    return normalized


def _run_scan(session: Session, path: str) -> ScanResult:
    job = ScanJob(path, progress_interval=session.config.progress_interval).start()
    try:
        with console.status(f"Scanning {path}") as status:
            while not job.wait(POLL_INTERVAL):
                files, dirs = job.progress()
                status.update(f"Scanning {path}: {files} files, {dirs} folders")
    except KeyboardInterrupt:
        job.cancel()
        job.wait()
        raise click.Abort()
    return session.adopt(job.result())


def _open(session: Session, path: str, refresh: bool) -> ScanResult:
    if not refresh:
        cached = session.load_cached(path)
        if cached is not None:
            return cached
    return _run_scan(session, path)


def _size_table(node: Node, limit: int) -> Table:
    table = Table(title=node.path, show_lines=False)
    table.add_column("Name")
    table.add_column("Size", justify="right")
    table.add_column("%", justify="right")
    table.add_column("Own", justify="right")
    table.add_column("Kind")
    for c in node.top_children(limit):
        table.add_row(c.name + ("/" if c.is_dir else ""), format_bytes(c.size),
                      f"{c.percent_of_parent:.1f}", format_bytes(c.own_size), c.kind.value)
    return table


def _size_tree(node: Node, limit: int, depth: int) -> Tree:
    tree = Tree(f"{node.name} [bold]{format_bytes(node.size)}[/bold]")
    stack = [(node, tree, 0)]
    while stack:
        n, branch, level = stack.pop()
        if level >= depth:
            continue
        for c in n.top_children(limit):
            label = f"{c.name}{'/' if c.is_dir else ''} {format_bytes(c.size)} ({c.percent_of_parent:.1f}%)"
            sub = branch.add(label)
            if c.is_dir:
                stack.append((c, sub, level + 1))
    return tree


@click.group()
@click.option("--config", "-c", "config_path", type=click.Path(path_type=Path, dir_okay=False),
              default=None, help="YAML configuration file.")
@click.option("--log-level", "-l", default=None, callback=validate_log_level,
              help="Logging verbosity (DEBUG, INFO, WARNING, ERROR).")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], log_level: Optional[str]) -> None:
    """Disk usage per folder, with hard links and sparse files counted right."""
    try:
        config = load_config(config_path or discover_config_file())
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    if log_level:
        config.log_level = log_level
    setup_logging(config.log_level)
    ctx.obj = Session(config)


@cli.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@click.option("--top", "-n", type=click.IntRange(min=1), default=None,
              help="Entries to list per folder.")
@click.option("--depth", "-d", type=click.IntRange(min=0), default=0,
              help="Show a tree this many levels deep instead of a table.")
@click.option("--no-cache", is_flag=True, help="Neither read nor write the result cache.")
@click.option("--refresh", is_flag=True, help="Rescan even when a cached result exists.")
@click.pass_obj
@handle_errors
def scan(session: Session, path: str, top: Optional[int], depth: int,
         no_cache: bool, refresh: bool) -> None:
    """Scan PATH and list its largest entries."""
    if no_cache:
        session.cache.enabled = False
    t0 = time.time()
    result = _open(session, path, refresh)
    limit = top or session.config.top_limit

    if depth > 0:
        console.print(_size_tree(result.root, limit, depth))
    else:
        console.print(_size_table(result.root, limit))

    source = "cache" if session.from_cache else f"scan, {time.time() - t0:.1f}s"
    console.print(f"Total: {format_bytes(result.total_size)} | Files: {result.files} | "
                  f"Folders: {result.dirs} | Skipped: {result.skipped} | From: {source}")
    usage = volume_usage(result.scan_path)
    if usage:
        console.print(f"Volume: {format_bytes(usage['used'])} used of "
                      f"{format_bytes(usage['total'])} ({usage['percent']:.1f}%)")


@cli.command()
@click.argument("parent", type=click.Path(exists=True, file_okay=False))
@click.argument("name")
@click.option("--root", type=click.Path(exists=True, file_okay=False), default=None,
              help="Scanned folder edits must stay inside (default: PARENT).")
@click.option("--refresh", is_flag=True, help="Rescan the root before editing.")
@click.pass_obj
@handle_errors
def mkdir(session: Session, parent: str, name: str, root: Optional[str], refresh: bool) -> None:
    """Create folder NAME inside PARENT."""
    _open(session, root or parent, refresh)
    node = session.mutator.create_directory(session.node(parent), name)
    session.persist()
    console.print(f"Created {node.path}")


@cli.command()
@click.argument("path", type=click.Path(exists=False))
@click.option("--root", type=click.Path(exists=True, file_okay=False), default=None,
              help="Scanned folder edits must stay inside (default: parent of PATH).")
@click.option("--refresh", is_flag=True, help="Rescan the root before editing.")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@click.pass_obj
@handle_errors
def rm(session: Session, path: str, root: Optional[str], refresh: bool, yes: bool) -> None:
    """Delete PATH and everything below it."""
    _open(session, root or os.path.dirname(canonical_entry(path)), refresh)
    node = session.node(path)
    what = "folder and all its contents" if node.is_dir else "file"
    if not yes:
        click.confirm(f"Delete {what} {node.path} ({format_bytes(node.size)})?", abort=True)
    parent = session.mutator.delete(node)
    session.persist()
    console.print(f"Deleted {node.path}; {parent.name} is now {format_bytes(parent.size)}")


@cli.command()
@click.argument("source", type=click.Path(exists=False))
@click.argument("destination", type=click.Path(exists=True, file_okay=False))
@click.option("--root", type=click.Path(exists=True, file_okay=False), default=None,
              help="Scanned folder edits must stay inside (default: common parent).")
@click.option("--refresh", is_flag=True, help="Rescan the root before editing.")
@click.pass_obj
@handle_errors
def mv(session: Session, source: str, destination: str, root: Optional[str], refresh: bool) -> None:
    """Move SOURCE into the DESTINATION folder."""
    if root is None:
        src_parent = os.path.dirname(canonical_entry(source))
        try:
            root = os.path.commonpath([src_parent, canonical(destination)])
        except ValueError as e:
            raise click.UsageError("SOURCE and DESTINATION share no common folder") from e
    _open(session, root, refresh)
    node = session.mutator.move(session.node(source), session.node(destination))
    session.persist()
    console.print(f"Moved to {node.path}")


@cli.group()
def cache() -> None:
    """Manage cached scan results."""


@cache.command("clear")
@click.pass_obj
def cache_clear(session: Session) -> None:
    """Delete every cached scan result."""
    removed = session.cache.clear()
    console.print(f"Removed {removed} cache entries")


@cache.command("drop")
@click.argument("path")
@click.pass_obj
def cache_drop(session: Session, path: str) -> None:
    """Delete the cached result for PATH."""
    if session.cache.invalidate(path):
        console.print(f"Dropped cache entry for {canonical(path)}")
    else:
        console.print(f"No cache entry for {canonical(path)}")


@cli.command()
def drives() -> None:
    """List mounted volumes."""
    table = Table(title="Volumes")
    table.add_column("Mountpoint")
    table.add_column("FS")
    table.add_column("Used", justify="right")
    table.add_column("Free", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("%", justify="right")
    for d in list_drives():
        table.add_row(str(d["mountpoint"]), str(d["fstype"]), format_bytes(int(d["used"])),
                      format_bytes(int(d["free"])), format_bytes(int(d["total"])),
                      f"{d['percent']:.1f}")
    console.print(table)


def main() -> None:
    cli(prog_name="spaceatlas")

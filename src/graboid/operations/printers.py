"""
Human-readable output formatting.

Centralizes all CLI output so the pull pipeline only ever emits structured
events. Results go to stdout; progress and errors go to stderr.
"""
from __future__ import annotations

from pathlib import Path
from typing import List

import typer
from rich.console import Console
from rich.markup import escape

from ..errors import GraboidError, IntegrityError
from ..events import ProgressEvent, ProgressSink

_console = Console()
_err_console = Console(stderr=True)

_STAGE_LABELS = {
    "authenticate": "Authenticating with",
    "manifest": "Resolving manifest",
    "config": "Fetching config",
    "blobs": "Downloading blobs for",
    "layer": "Fetching",
    "assemble": "Writing",
    "tags": "Listing tags for",
}

_OUTCOME_STYLES = {
    "started": "dim",
    "completed": "green",
    "skipped": "yellow",
    "failed": "red",
}


def make_event_printer(verbose: bool = False) -> ProgressSink:
    """
    Build a progress sink that prints events to stderr.

    Args:
        verbose: Also print per-blob events

    Returns:
        Callable accepting ProgressEvent values
    """
    def _print(event: ProgressEvent) -> None:
        if event.detail and not verbose:
            return
        if not verbose and event.outcome != "started":
            return
        label = _STAGE_LABELS.get(event.stage, event.stage)
        size = f" ({_format_bytes(event.size)})" if event.size is not None else ""
        style = _OUTCOME_STYLES.get(event.outcome, "")
        _err_console.print(
            f"[{style}]{label} {escape(event.item)}{size}: {event.outcome}[/]"
            if verbose else f"{label} {escape(event.item)}{size}...",
            highlight=False,
            soft_wrap=True,
        )

    return _print


def print_tags(tags: List[str]) -> None:
    """
    Print tags one per line in registry order.

    Args:
        tags: Tags to print
    """
    for tag in tags:
        typer.echo(tag)


def print_pull_summary(image: str, archive: Path) -> None:
    """
    Print pull result.

    Args:
        image: Image reference as given by the user
        archive: Path of the written archive
    """
    _console.print(f"[bold]Pulled:[/] {escape(image)}", highlight=False)
    _console.print(f"[bold]Archive:[/] {escape(str(archive))}", highlight=False, soft_wrap=True)
    _console.print(f"[bold]Size:[/] {_format_bytes(archive.stat().st_size)}", highlight=False)
    _console.print(f"[dim]Load with: docker load -i {escape(str(archive))}[/]", highlight=False, soft_wrap=True)


def print_error(exc: BaseException) -> None:
    """
    Print a failed command's error to stderr.

    Args:
        exc: Exception that ended the command
    """
    name = type(exc).__name__
    _err_console.print(f"[bold red]{name}:[/] {escape(str(exc))}", highlight=False, soft_wrap=True)
    if isinstance(exc, IntegrityError):
        _err_console.print(f"  expected {exc.expected}", highlight=False, soft_wrap=True)
        _err_console.print(f"  actual   {exc.actual}", highlight=False, soft_wrap=True)
    elif isinstance(exc, GraboidError) and exc.identifier and exc.identifier not in str(exc):
        _err_console.print(f"  [dim]{escape(exc.identifier)}[/]", highlight=False, soft_wrap=True)


def _format_bytes(size_bytes: int) -> str:
    """
    Format byte count as human-readable string.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted string (e.g., "1.5 MB", "42 KB")
    """
    if size_bytes == 0:
        return "0 B"
    elif size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f} MB"
    else:
        return f"{size_bytes / (1024 * 1024 * 1024):.1f} GB"

"""
graboid CLI

Implements 2 CLI verbs with Operations facade integration:
- pull: Pull an image into a `docker load` compatible archive
- tags: List an image repository's tags
"""
from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .cli_context import CLIContext
from .operations import Operations, OpsConfig, run_and_exit
from .operations.printers import make_event_printer, print_pull_summary, print_tags
from .settings import Settings

app = typer.Typer(name="graboid", help="Pull container images without a container daemon",
                  no_args_is_help=True)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _build_operations(config: OpsConfig, settings: Settings) -> Operations:
    """
    Create the Operations facade for a command.

    Tests replace this to inject an httpx transport.
    """
    return Operations(config=config, settings=settings, sink=make_event_printer(config.verbose))


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"graboid {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    index: Optional[str] = typer.Option(None, "--index", envvar="GRABOID_INDEX", help="Docker index URL"),
    registry: Optional[str] = typer.Option(None, "--registry", envvar="GRABOID_REGISTRY", help="Registry URL (overrides the index)"),
    proxy: Optional[str] = typer.Option(None, "--proxy", envvar="HTTPS_PROXY", help="HTTPS proxy URL"),
    insecure: bool = typer.Option(False, "--insecure", envvar="GRABOID_INSECURE", help="Skip TLS verification"),
    user: Optional[str] = typer.Option(None, "--user", envvar="GRABOID_USERNAME", help="Registry username"),
    password: Optional[str] = typer.Option(None, "--password", envvar="GRABOID_PASSWORD", help="Registry password"),
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Show per-blob progress and debug logs"),
    version: bool = typer.Option(False, "--version", callback=_version_callback, is_eager=True,
                                 help="Show version and exit"),
) -> None:
    """Pull container images from a Docker Registry v2 without a container daemon."""
    _configure_logging(verbose)
    ctx.obj = run_and_exit(lambda: CLIContext.from_options(
        verbose=verbose,
        index_url=index,
        registry_url=registry,
        proxy=proxy,
        insecure=insecure or None,
        username=user,
        password=password,
    ))


@app.command()
def pull(
    ctx: typer.Context,
    image: str = typer.Argument(..., help="Image reference, e.g. redis or bitnami/redis:7.2"),
    output_dir: Path = typer.Option(Path("."), "--output-dir", "-o", help="Directory for the archive"),
    compression: str = typer.Option("gzip", "--compression", "-c", help="Compression format: gzip, zstd or none"),
    platform: Optional[str] = typer.Option(None, "--platform", envvar="GRABOID_PLATFORM",
                                           help="Platform for multi-arch images (os/arch[/variant])"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", envvar="GRABOID_CONCURRENCY",
                                              help="Parallel layer downloads"),
) -> None:
    """Pull an image into a tarball loadable with `docker load`."""
    context: CLIContext = ctx.obj

    def _pull() -> None:
        settings = context.settings
        if platform is not None:
            settings = replace(settings, platform=platform)
        if concurrency is not None:
            settings = replace(settings, max_concurrent_downloads=concurrency)

        config = OpsConfig(compression=compression, verbose=context.verbose)
        ops = _build_operations(config, settings)
        archive = ops.pull(image, output_dir)
        print_pull_summary(image, archive)

    run_and_exit(_pull)


@app.command()
def tags(
    ctx: typer.Context,
    image: str = typer.Argument(..., help="Image repository, e.g. redis or bitnami/redis"),
) -> None:
    """List an image repository's tags."""
    context: CLIContext = ctx.obj

    def _tags() -> None:
        ops = _build_operations(OpsConfig(verbose=context.verbose), context.settings)
        print_tags(ops.tags(image))

    run_and_exit(_tags)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()

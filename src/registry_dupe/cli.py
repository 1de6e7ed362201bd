"""
registry-dupe CLI

Copies one tagged manifest and all of its layers from a source registry to a
destination registry:

    registry-dupe -s https://src.example.com -d https://dst.example.com \\
        -n library/alpine -t 3.19 -c 8
"""
from __future__ import annotations

import logging
from typing import List, Optional

import click
import typer
from typer.core import TyperCommand

from . import __version__
from .cli_context import CLIContext
from .operations import VERSION_EXIT_CODE, print_replication_summary, run_and_exit
from .orchestrator import ReplicationOrchestrator
from .progress import text_observer_factory
from .settings import DEFAULT_CONCURRENCY, Settings

APP_NAME = "registry-dupe"
PARSE_ERROR_EXIT_CODE = 1

app = typer.Typer(name=APP_NAME, help="Copy an image manifest and its layers between registries",
                  add_completion=False)


class CopyCommand(TyperCommand):
    """Command whose argument parse failures exit with 1 instead of click's 2."""

    def parse_args(self, ctx: click.Context, args: List[str]) -> List[str]:
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as e:
            e.exit_code = PARSE_ERROR_EXIT_CODE
            raise


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"{APP_NAME} {__version__} at your service.")
        raise typer.Exit(code=VERSION_EXIT_CODE)


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s: %(message)s",
    )
    if not debug:
        # Request-level chatter from the HTTP stack
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


@app.command(cls=CopyCommand)
def copy(
    source: str = typer.Option(..., "--source", "-s", envvar="REGISTRY_DUPE_SOURCE_URL",
                               help="Source registry URL"),
    dest: str = typer.Option(..., "--dest", "-d", envvar="REGISTRY_DUPE_DEST_URL",
                             help="Destination registry URL"),
    name: str = typer.Option(..., "--name", "-n", help="Manifest name to copy"),
    tag: str = typer.Option(..., "--tag", "-t", help="Manifest tag to copy"),
    concurrency: int = typer.Option(DEFAULT_CONCURRENCY, "--concurrency", "-c",
                                    envvar="REGISTRY_DUPE_CONCURRENCY",
                                    help="Concurrent layer copies"),
    source_user: Optional[str] = typer.Option(None, "--source-user",
                                              envvar="REGISTRY_DUPE_SOURCE_USERNAME",
                                              help="Username for the source registry"),
    source_password: Optional[str] = typer.Option(None, "--source-password",
                                                  envvar="REGISTRY_DUPE_SOURCE_PASSWORD",
                                                  help="Password for the source registry"),
    dest_user: Optional[str] = typer.Option(None, "--dest-user",
                                            envvar="REGISTRY_DUPE_DEST_USERNAME",
                                            help="Username for the destination registry"),
    dest_password: Optional[str] = typer.Option(None, "--dest-password",
                                                envvar="REGISTRY_DUPE_DEST_PASSWORD",
                                                help="Password for the destination registry"),
    insecure: bool = typer.Option(False, "--insecure", envvar="REGISTRY_DUPE_INSECURE",
                                  help="Allow plain HTTP and skip TLS verification"),
    timeout: float = typer.Option(30.0, "--timeout", envvar="REGISTRY_DUPE_HTTP_TIMEOUT",
                                  help="HTTP timeout in seconds"),
    http_retry: int = typer.Option(0, "--http-retry", envvar="REGISTRY_DUPE_HTTP_RETRY",
                                   help="Extra attempts for metadata requests that time out"),
    progress_interval: float = typer.Option(1.0, "--progress-interval",
                                            envvar="REGISTRY_DUPE_PROGRESS_INTERVAL",
                                            help="Minimum seconds between progress redraws"),
    no_progress: bool = typer.Option(False, "--no-progress", help="Do not print transfer progress"),
    debug: bool = typer.Option(False, "--debug", help="Enable DEBUG logging"),
    version: Optional[bool] = typer.Option(None, "--version", "-V", callback=_version_callback,
                                           is_eager=True, help="Print version and exit"),
) -> None:
    """Copy the layers and the manifest from the source registry to the destination."""

    def _copy() -> None:
        _configure_logging(debug)
        settings = Settings(
            source_url=source,
            dest_url=dest,
            source_user=source_user,
            source_pass=source_password,
            dest_user=dest_user,
            dest_pass=dest_password,
            insecure=insecure,
            http_timeout_s=timeout,
            http_retry=http_retry,
            concurrency=concurrency,
            progress_interval_s=progress_interval,
        )

        with CLIContext(settings=settings) as context:
            src, dst = context.open_registries()
            orchestrator = ReplicationOrchestrator(
                src, dst, settings.concurrency,
                observer_factory=(None if no_progress else
                                  text_observer_factory(interval_s=settings.progress_interval_s)),
            )
            result = orchestrator.copy(name, tag)

        print_replication_summary(result, verbose=debug)

    run_and_exit(_copy)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()

"""
Human-readable output formatting for the CLI.

Results go to stdout through a rich console; errors go to stderr as plain
lines so they stay greppable.
"""
from __future__ import annotations

import typer
from rich.console import Console
from tqdm import tqdm

from ..orchestrator import ReplicationResult

_console = Console()


def print_replication_summary(result: ReplicationResult, verbose: bool = False) -> None:
    """
    Print the single confirmation for a successful job.

    Args:
        result: Completed replication
        verbose: Also list every layer with its outcome
    """
    copied = tqdm.format_sizeof(result.bytes_copied, "B", 1024)
    _console.print("[bold]Upload complete![/]")
    _console.print(
        f"[bold]Manifest:[/] {result.manifest_name}:{result.manifest_tag} "
        f"[dim]({result.manifest_digest})[/]",
        soft_wrap=True,
    )
    _console.print(
        f"[bold]Layers:[/] {result.layers_copied} copied ({copied}), "
        f"{result.layers_skipped} skipped",
        soft_wrap=True,
    )
    if verbose:
        for layer in result.layers:
            _console.print(f"  [cyan]{layer.outcome.value}[/]: {layer.digest}", soft_wrap=True)


def print_error(exc: BaseException) -> None:
    """Print a failure, naming the stage when the error carries one."""
    stage = getattr(exc, "stage", None)
    prefix = f"Error [{stage}]" if stage else "Error"
    typer.echo(f"{prefix}: {exc}", err=True)

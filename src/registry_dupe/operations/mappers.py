"""
Exit code mapping for the registry-dupe CLI.

Provides centralized exception-to-exit-code mapping and a command wrapper so
every failure leaves the CLI with a consistent exit code and message.
"""
from __future__ import annotations

import typer
from typing import Callable, TypeVar

from .printers import print_error

T = TypeVar('T')

# Printing the version exits with this code
VERSION_EXIT_CODE = 10

EXIT_CODES = {
    "ManifestFetchError": 1,
    "RegistryNotFound": 1,
    "ValidationError": 2,
    "ValueError": 2,
    "AuthenticationError": 4,
    "RegistryAuthError": 4,
    "LayerExistenceCheckError": 5,
    "LayerTransferError": 5,
    "ManifestUploadError": 6,
}


def exit_code_for(exc: BaseException) -> int:
    """
    Map exception to exit code.

    - 0: Success
    - 1: Source manifest not found or unreadable
    - 2: Invalid input (ValueError / ValidationError)
    - 3: Unknown error (fallback)
    - 4: Registry authentication failed
    - 5: A layer could not be checked or copied
    - 6: The destination rejected the manifest

    Args:
        exc: Exception to map

    Returns:
        Exit code, with 3 as fallback for unknown exceptions
    """
    return EXIT_CODES.get(type(exc).__name__, 3)


def run_and_exit(func: Callable[[], T]) -> T:
    """
    Run a CLI command body, turning any failure into a mapped exit code.

    Executes the given function; on failure prints the error to stderr and
    raises typer.Exit with the mapped exit code.

    Args:
        func: Function to execute

    Returns:
        Whatever func returns

    Raises:
        typer.Exit: Carrying the mapped code when func raises
    """
    try:
        return func()
    except Exception as e:
        print_error(e)
        raise typer.Exit(code=exit_code_for(e)) from e

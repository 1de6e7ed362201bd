"""
Operations package - CLI support between argument parsing and the engine.

Centralizes exception-to-exit-code mapping and output formatting so the CLI
command stays thin and testable.
"""
from .mappers import EXIT_CODES, VERSION_EXIT_CODE, exit_code_for, run_and_exit
from .printers import print_error, print_replication_summary

__all__ = [
    "EXIT_CODES",
    "VERSION_EXIT_CODE",
    "exit_code_for",
    "run_and_exit",
    "print_error",
    "print_replication_summary",
]

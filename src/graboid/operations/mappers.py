"""
Error mapping and CLI utilities.

Provides centralized exception-to-exit-code mapping and CLI command wrappers
to ensure consistent error handling across all Typer commands.
"""
from __future__ import annotations

import logging
from typing import Callable, TypeVar

import typer

from ..errors import (
    AuthError,
    ImageIOError,
    IntegrityError,
    NetworkError,
    NotFoundError,
    UnsupportedFormatError,
)

T = TypeVar('T')

logger = logging.getLogger(__name__)

# Checked in order; subclasses before their bases
EXIT_CODES = (
    (NotFoundError, 1),
    (ValueError, 2),
    (NetworkError, 3),
    (AuthError, 4),
    (UnsupportedFormatError, 5),
    (IntegrityError, 6),
    (ImageIOError, 7),
)

DEFAULT_EXIT_CODE = 3


def exit_code_for(exc: BaseException) -> int:
    """
    Map exception to standardized exit code.

    - 0: Success
    - 1: Repository, tag or blob not found (NotFoundError)
    - 2: Invalid input (ValueError)
    - 3: Network failure (NetworkError) or unknown error
    - 4: Authentication failed (AuthError)
    - 5: Unusable manifest (UnsupportedFormatError, InvalidManifestError)
    - 6: Digest mismatch (IntegrityError)
    - 7: Local filesystem failure (ImageIOError)

    Args:
        exc: Exception to map

    Returns:
        Exit code (1-7, with 3 as fallback for unknown exceptions)
    """
    for exc_type, code in EXIT_CODES:
        if isinstance(exc, exc_type):
            return code
    return DEFAULT_EXIT_CODE


def run_and_exit(func: Callable[[], T]) -> T:
    """
    Unified error wrapper for CLI commands.

    Executes the given function and maps any exceptions to appropriate
    exit codes using typer.Exit. This centralizes error handling so
    CLI commands don't need individual try/except blocks.

    Args:
        func: Function to execute

    Returns:
        Function result if successful

    Raises:
        typer.Exit: With appropriate exit code if function raises exception
    """
    try:
        return func()
    except Exception as e:
        from .printers import print_error
        logger.debug("Command failed", exc_info=True)
        print_error(e)
        raise typer.Exit(code=exit_code_for(e)) from e

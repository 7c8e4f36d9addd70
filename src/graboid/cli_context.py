"""
CLI Context for sharing global options between commands.

The top-level callback resolves the global options into one CLIContext and
stores it on the Typer context, so subcommands never read the environment
themselves.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict

from .settings import Settings, create_settings_from_env


@dataclass
class CLIContext:
    """
    Shared context for CLI commands.

    settings: Registry configuration after command-line overrides
    verbose: Show per-blob progress and debug logging
    """
    settings: Settings
    verbose: bool = False

    @classmethod
    def from_options(cls, *, verbose: bool = False, **overrides: Any) -> CLIContext:
        """
        Create CLI context from environment variables plus explicit options.

        Options left as None keep the environment's (or the default) value.

        Raises:
            ValueError: If the combined configuration is invalid
        """
        settings = create_settings_from_env()
        given: Dict[str, Any] = {k: v for k, v in overrides.items() if v is not None}
        if given:
            settings = replace(settings, **given)
        return cls(settings=settings, verbose=verbose)

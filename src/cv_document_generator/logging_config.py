"""Rich console setup and pipeline progress helpers."""

from __future__ import annotations

import logging
from typing import Protocol

from rich.console import Console
from rich.logging import RichHandler

console = Console()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def setup_logging(*, verbose: bool = False, quiet: bool = False) -> None:
    """Configure root logger with Rich handler."""
    level = logging.DEBUG if verbose else (logging.ERROR if quiet else logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )
    # AG2 and the HTTP stack are chatty at INFO.
    for noisy in ("autogen", "httpx", "openai"):
        logging.getLogger(noisy).setLevel(logging.DEBUG if verbose else logging.WARNING)


# ---------------------------------------------------------------------------
# Pipeline callbacks protocol
# ---------------------------------------------------------------------------


class PipelineCallbacks(Protocol):
    """Protocol for pipeline progress reporting."""

    def on_stage_start(self, stage: str, description: str) -> None: ...
    def on_stage_end(self, stage: str, success: bool) -> None: ...
    def on_warning(self, message: str) -> None: ...
    def on_error(self, message: str) -> None: ...


class RichCallbacks:
    """Rich-based implementation of PipelineCallbacks."""

    def on_stage_start(self, stage: str, description: str) -> None:
        console.rule(f"[bold blue]{stage}[/] — {description}")

    def on_stage_end(self, stage: str, success: bool) -> None:
        status = "[green]OK[/]" if success else "[red]FAILED[/]"
        console.print(f"  Stage {stage}: {status}")

    def on_warning(self, message: str) -> None:
        console.print(f"  [yellow]WARNING:[/] {message}")

    def on_error(self, message: str) -> None:
        console.print(f"  [red]ERROR:[/] {message}")


class SilentCallbacks:
    """Callbacks that only log; for library use without a console."""

    def __init__(self) -> None:
        self._logger = logging.getLogger("cvgen.progress")

    def on_stage_start(self, stage: str, description: str) -> None:
        self._logger.debug("%s started: %s", stage, description)

    def on_stage_end(self, stage: str, success: bool) -> None:
        self._logger.debug("%s finished: success=%s", stage, success)

    def on_warning(self, message: str) -> None:
        self._logger.warning(message)

    def on_error(self, message: str) -> None:
        self._logger.error(message)

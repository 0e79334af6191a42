"""Rich-backed logging for the import pipeline and its CLIs.

Every module obtains its logger through ``get_logger(__name__)`` so that
console output, tracebacks and log levels are configured in one place.

Usage:
    from common.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Parsing [bold]My Clippings.txt[/bold]")
    logger.warning("Skipping malformed block 12")
"""

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

# Shared console so log records and status lines interleave cleanly
console = Console()
error_console = Console(stderr=True)


def _rich_handler(show_time: bool = False, show_path: bool = False) -> RichHandler:
    handler = RichHandler(
        console=console,
        show_time=show_time,
        show_path=show_path,
        rich_tracebacks=True,
        markup=True,
    )
    handler.setFormatter(logging.Formatter(fmt="%(message)s", datefmt="[%X]"))
    return handler


def get_logger(
    name: str,
    level: str | None = None,
    show_time: bool = False,
    show_path: bool = False,
) -> logging.Logger:
    """Get a logger that renders through rich.

    Args:
        name: Logger name (typically __name__ of the module)
        level: Logging level name. Falls back to the LOG_LEVEL environment
               variable, then INFO.
        show_time: Include timestamps in console output
        show_path: Include source file paths in console output

    Returns:
        Configured logger instance. Calling this twice with the same name
        returns the same logger without stacking handlers.
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    logger.setLevel(level.upper())
    logger.addHandler(_rich_handler(show_time=show_time, show_path=show_path))

    # pytest's caplog captures through propagation
    logger.propagate = True

    return logger


def setup_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """Configure the root logger once, at a CLI entry point.

    Args:
        level: Default level for all loggers (LOG_LEVEL overrides it)
        log_file: Optional path that receives a plain-text copy of the log
    """
    level = os.getenv("LOG_LEVEL", level).upper()

    # Module loggers render to the console themselves; the root logger only
    # sets the level and, optionally, writes the plain-text copy
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    for name in list(logging.Logger.manager.loggerDict):
        existing = logging.getLogger(name)
        if existing.handlers:
            existing.setLevel(level)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        root_logger.addHandler(file_handler)


def progress(message: str) -> None:
    """Print a bare status line (no level prefix)."""
    console.print(message)


def success(message: str) -> None:
    """Print a status line with a green check mark."""
    console.print(f"[green]✓[/green] {message}")


def warning(message: str) -> None:
    """Print a status line with a yellow warning sign."""
    console.print(f"[yellow]⚠[/yellow] {message}")


def error(message: str) -> None:
    """Print a status line with a red cross to stderr."""
    error_console.print(f"[red]✗[/red] {message}")

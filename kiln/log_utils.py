"""Logging setup for Kiln.

All modules log through ``logging.getLogger(__name__)``. The CLI calls
:func:`setup_logging` once so records reach the terminal as task-runner style
lines (``[12:00:01] Sass: compiled main.css``), colored with click.
"""

from __future__ import annotations

import logging

import click

_LEVEL_COLORS = {
    logging.DEBUG: "bright_black",
    logging.WARNING: "yellow",
    logging.ERROR: "red",
    logging.CRITICAL: "red",
}


class ClickFormatter(logging.Formatter):
    """Prefix records with a grey timestamp and color them by severity."""

    def __init__(self, color: bool = True):
        super().__init__(datefmt="%H:%M:%S")
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        stamp = f"[{self.formatTime(record, self.datefmt)}]"
        if not self.color:
            return f"{stamp} {message}"
        fg = _LEVEL_COLORS.get(record.levelno)
        if fg:
            message = click.style(message, fg=fg, bold=record.levelno >= logging.ERROR)
        return f"{click.style(stamp, fg='bright_black')} {message}"


class ClickHandler(logging.Handler):
    """Write formatted records to stderr through click.echo."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.echo(self.format(record), err=True)
        except Exception:  # pragma: no cover - logging must never raise
            self.handleError(record)


def setup_logging(verbose: bool = False, color: bool | None = None) -> logging.Logger:
    """Configure the ``kiln`` logger hierarchy.

    Args:
        verbose: Emit debug records (exit codes, skipped events).
        color: Force colors on or off; defaults to click's tty detection.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger("kiln")
    for handler in list(logger.handlers):
        if isinstance(handler, ClickHandler):
            logger.removeHandler(handler)
    handler = ClickHandler()
    handler.setFormatter(ClickFormatter(color=True if color is None else color))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    return logger

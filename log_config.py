#!/usr/bin/env python3
import logging
import sys

from constants import C_BLUE, C_RED, C_RESET, C_YELLOW

LEVEL_COLORS = {
    logging.DEBUG: C_BLUE,
    logging.WARNING: C_YELLOW,
    logging.ERROR: C_RED,
    logging.CRITICAL: C_RED,
}


class ColorFormatter(logging.Formatter):
    """Colours the whole line by level, using the same ANSI codes as the CLI output."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = LEVEL_COLORS.get(record.levelno)
        if color and sys.stderr.isatty():
            return f"{color}{message}{C_RESET}"
        return message


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(ColorFormatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s"))
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)
    # httpx and the telegram poller are chatty at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("telegram.ext").setLevel(logging.WARNING)

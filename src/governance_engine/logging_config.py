"""
Logging Configuration

Logging setup for the governance engine CLI. Console records go to stderr so
that ``--json`` output on stdout stays machine-readable; colour is decided per
handler from the stream that handler actually writes to.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, TextIO

ROOT_LOGGER = "governance_engine"

# Library loggers that are only interesting at WARNING and above
NOISY_LOGGERS = ("httpx", "httpcore", "anthropic")

LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
RESET = "\033[0m"


def stream_supports_color(stream: TextIO) -> bool:
    """True when the stream is an interactive terminal"""
    isatty = getattr(stream, "isatty", None)
    try:
        return bool(isatty and isatty())
    except ValueError:
        # Closed stream
        return False


class EngineFormatter(logging.Formatter):
    """
    One-line records: ``[HH:MM:SS.mmm] LEVEL    [logger] message``.

    Colour is applied to the level name only when ``use_colors`` is set;
    callers decide that from the destination stream.
    """

    def __init__(self, use_colors: bool = False):
        super().__init__()
        self.use_colors = use_colors

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        return datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:8}"
        if self.use_colors and record.levelno in LEVEL_COLORS:
            level = f"{LEVEL_COLORS[record.levelno]}{record.levelname}{RESET}"
            level += " " * max(0, 8 - len(record.levelname))

        line = f"[{self.formatTime(record)}] {level} [{record.name}] {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    use_colors: bool = True,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Configure the ``governance_engine`` logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file path for an uncoloured copy of the log
        use_colors: Allow colour on the console when it is a terminal
        stream: Console stream (defaults to stderr)
    """
    engine_logger = logging.getLogger(ROOT_LOGGER)
    engine_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    engine_logger.handlers.clear()

    console = logging.StreamHandler(stream if stream is not None else sys.stderr)
    console.setFormatter(
        EngineFormatter(use_colors=use_colors and stream_supports_color(console.stream))
    )
    engine_logger.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setFormatter(EngineFormatter(use_colors=False))
        engine_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    engine_logger.debug(f"Logging configured at {level.upper()}")
    return engine_logger

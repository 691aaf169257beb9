"""Logging setup and a Rich console that mirrors its output into the debug log.

Every handler installed here carries a RedactingFilter, so token-shaped values
are masked before anything is written to the terminal or the log file.
"""

import io
import logging
import re
from typing import Optional

from rich.console import Console as RichConsole

from .redaction import RedactingFilter, mask_secrets

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
ANSI_ESCAPE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")


class DebugCapturingConsole(RichConsole):
    """
    Rich Console that also writes a plain-text, masked copy of everything it
    prints to a logger at DEBUG level.
    """

    def __init__(self, debug_logger: logging.Logger, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.debug_logger = debug_logger

    def print(self, *objects, **kwargs):
        super().print(*objects, **kwargs)

        if self.debug_logger.isEnabledFor(logging.DEBUG):
            plain_text = self._render_plain(*objects, **kwargs)
            if plain_text.strip():
                self.debug_logger.debug(f"[CONSOLE] {mask_secrets(plain_text)}")

    def _render_plain(self, *objects, **kwargs) -> str:
        buffer = io.StringIO()
        RichConsole(file=buffer, force_terminal=False, width=self.width, legacy_windows=False).print(*objects, **kwargs)
        return ANSI_ESCAPE.sub("", buffer.getvalue()).rstrip()


def _level_from_name(name: str) -> int:
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: str = "info", debug: bool = False, log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger for the command line host.

    Args:
        level: Level name used when debug is off (e.g. "info", "warning")
        debug: Log everything at DEBUG and also write to ``log_file``
        log_file: Debug log path; only used when debug is on

    Returns:
        The root logger
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if debug else _level_from_name(level))

    # Remove existing handlers to avoid duplicates
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    redacting = RedactingFilter()
    formatter = logging.Formatter(LOG_FORMAT)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(logging.DEBUG if debug else logging.WARNING)
    stream_handler.setFormatter(formatter)
    stream_handler.addFilter(redacting)
    root.addHandler(stream_handler)

    if debug and log_file:
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(redacting)
        root.addHandler(file_handler)

    # httpx logs full request URLs at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return root


def setup_console_logger(log_file: str) -> logging.Logger:
    """Dedicated file-only logger for console output (kept off the terminal handler)"""
    console_logger = logging.getLogger("console")
    console_logger.setLevel(logging.DEBUG)
    for handler in console_logger.handlers[:]:
        console_logger.removeHandler(handler)

    file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    file_handler.setFormatter(logging.Formatter("%(asctime)s - %(message)s"))
    file_handler.addFilter(RedactingFilter())
    console_logger.addHandler(file_handler)
    console_logger.propagate = False
    return console_logger


def create_console(debug_enabled: bool = False, log_file: Optional[str] = None) -> RichConsole:
    """
    Create the console for command output.

    Returns:
        DebugCapturingConsole when debugging with a log file, a plain Rich Console otherwise
    """
    if debug_enabled and log_file:
        return DebugCapturingConsole(debug_logger=setup_console_logger(log_file))
    return RichConsole()

"""
StakeGuard logging.

Every module obtains its logger through :func:`get_logger`. The first call
installs the handlers on the ``stakeguard`` package logger: a ``rich`` console
handler (or a plain stream handler when highlighting is switched off) and,
optionally, a rotating file under ``logs/``.

    >>> from stakeguard.logger import get_logger
    >>> log = get_logger(__name__)
    >>> log.info("ValidatorRegistered: 0x00000000000000a1 stake=1000")
"""

import logging
import logging.handlers
import re
import sys
import threading
import time
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.highlighter import RegexHighlighter
from rich.logging import RichHandler
from rich.theme import Theme

from .constants import (
    LOG_BACKUP_COUNT,
    LOG_CONSOLE_HIGHLIGHTING,
    LOG_DATE_FORMAT,
    LOG_FILE_OUTPUT,
    LOG_FORMAT,
    LOG_LEVEL,
    LOG_MAX_FILE_SIZE,
)


PACKAGE_LOGGER = "stakeguard"
DEFAULT_LOG_FILE = Path(__file__).resolve().parent.parent / "logs" / "stakeguard.log"

# "%(name)s" style placeholders; a match not preceded by "%" is malformed
_PLACEHOLDER = re.compile(r"\([A-Za-z_]\w*\)[A-Za-z]")
_DATE_FORMAT = re.compile(r"^(?=.*%[A-Za-z])(?:%%|%[A-Za-z]|[0-9 \t:\-/.,TZ+])+$")

_THEME = Theme({
    "stakeguard.address": "cyan",
    "stakeguard.amount": "bold white",
    "stakeguard.event": "bold magenta",
    "stakeguard.logger_name": "magenta",
    "stakeguard.timestamp": "bold cyan",
    "stakeguard.level_debug": "bold dim",
    "stakeguard.level_info": "bold green",
    "stakeguard.level_warning": "bold yellow",
    "stakeguard.level_error": "bold red",
    "stakeguard.level_critical": "bold red reverse",
})


def _warn_stderr(message: str) -> None:
    # The logging system may be half-built here, so write directly.
    stamp = time.strftime("%Y-%m-%d %H:%M:%S")
    print(f"{stamp} - stakeguard.logger - {message}", file=sys.stderr)


class TerminalSafeFormatter(logging.Formatter):
    """Formatter that removes terminal escape and control sequences.

    Addresses and slashing reasons are caller-supplied, so a crafted value
    could otherwise recolour the console or forge an extra log line.
    """

    _UNSAFE = re.compile(
        r"\x1b\[[0-?]*[ -/]*[@-~]"  # CSI sequences
        r"|\x1b[@-Z\\-_]"           # two-byte escapes
        r"|[\x00-\x08\x0B-\x1F\x7F]"  # C0 controls except tab and newline
    )

    @classmethod
    def sanitize(cls, text: str) -> str:
        if not text:
            return text
        return cls._UNSAFE.sub("", text)

    def format(self, record: logging.LogRecord) -> str:
        return self.sanitize(super().format(record))


class StakeGuardLogHighlighter(RegexHighlighter):
    """Colours addresses, amounts and event names in console output."""

    base_style = "stakeguard."
    highlights = [
        r"(?P<timestamp>^.*?UTC)",
        r"(?P<level_debug>\bDEBUG\b)",
        r"(?P<level_info>\bINFO\b)",
        r"(?P<level_warning>\bWARNING\b)",
        r"(?P<level_error>\bERROR\b)",
        r"(?P<level_critical>\bCRITICAL\b)",
        r"-\s+\w+\s+-\s+(?P<logger_name>[\w.]+)(?=\s-\s)",
        r"(?P<address>\b0x[0-9a-fA-F]{8,}\b)",
        r"(?P<amount>(?<=[=: ])\d+(?= (?:units|stake|score)\b))",
        r"(?P<event>\b(?:Validator|Governance|Rewards|Epoch|Vote)\w+\b)",
    ]


class LogManager:
    """Process-wide owner of the ``stakeguard`` handler setup.

    Only one instance ever exists; handlers are installed on the first
    :meth:`configure` call and left alone afterwards.
    """

    _instance: Optional["LogManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "LogManager":
        with cls._lock:
            if cls._instance is None:
                instance = super().__new__(cls)
                instance._configured = False
                cls._instance = instance
        return cls._instance

    @property
    def is_configured(self) -> bool:
        return self._configured

    @staticmethod
    def validate_log_format(log_format: str) -> str:
        """Return ``log_format`` if it formats a record cleanly, else the default."""
        fallback = str(LOG_FORMAT.default())
        if not log_format:
            return fallback
        log_format = str(log_format)
        try:
            for match in _PLACEHOLDER.finditer(log_format):
                if match.start() == 0 or log_format[match.start() - 1] != "%":
                    raise ValueError(f"malformed placeholder {match.group(0)!r}")
            probe = logging.LogRecord("probe", logging.INFO, "", 0, "probe", (), None)
            logging.Formatter(log_format).format(probe)
        except (ValueError, KeyError, TypeError) as e:
            _warn_stderr(f"Validation Error: {e}. Using default.")
            return fallback
        return log_format

    @staticmethod
    def validate_date_format(date_format: str) -> str:
        """Return ``date_format`` if it only holds strftime directives and separators."""
        fallback = str(LOG_DATE_FORMAT.default())
        if not date_format:
            return fallback
        date_format = str(date_format)
        if _DATE_FORMAT.match(date_format) is None:
            _warn_stderr(f"Invalid date format {date_format!r}. Using default.")
            return fallback
        return date_format

    def _formatter(self) -> TerminalSafeFormatter:
        fmt = self.validate_log_format(LOG_FORMAT)
        datefmt = self.validate_date_format(LOG_DATE_FORMAT)
        formatter = TerminalSafeFormatter(fmt=fmt, datefmt=f"{datefmt} UTC")
        formatter.converter = time.gmtime
        return formatter

    @staticmethod
    def _console_handler() -> logging.Handler:
        if not LOG_CONSOLE_HIGHLIGHTING:
            return logging.StreamHandler(sys.stderr)
        return RichHandler(
            console=Console(theme=_THEME, highlight=False, stderr=True),
            highlighter=StakeGuardLogHighlighter(),
            keywords=[],
            markup=False,
            rich_tracebacks=True,
            show_level=False,
            show_path=False,
            show_time=False,
        )

    @staticmethod
    def _file_handler(path: Path) -> logging.Handler:
        path.parent.mkdir(parents=True, exist_ok=True)
        return logging.handlers.RotatingFileHandler(
            str(path),
            maxBytes=LOG_MAX_FILE_SIZE,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )

    def configure(
        self,
        log_level: Optional[str] = None,
        log_file: Optional[Path] = None,
        console_output: bool = True,
        file_output: Optional[bool] = None,
    ) -> None:
        """Install handlers on the package logger.

        Args:
            log_level: Level name; defaults to ``LOG_LEVEL`` from the environment.
            log_file: Rotating log destination; defaults to ``logs/stakeguard.log``.
            console_output: Attach the console handler.
            file_output: Attach the file handler; defaults to ``LOG_FILE_OUTPUT``.
        """
        with self._lock:
            if self._configured:
                return

            level = getattr(logging, str(log_level or LOG_LEVEL).upper(), logging.INFO)
            if file_output is None:
                file_output = bool(LOG_FILE_OUTPUT)

            handlers = []
            if console_output:
                handlers.append(self._console_handler())
            if file_output:
                handlers.append(self._file_handler(log_file or DEFAULT_LOG_FILE))

            formatter = self._formatter()
            package_logger = logging.getLogger(PACKAGE_LOGGER)
            package_logger.handlers.clear()
            package_logger.setLevel(level)
            for handler in handlers:
                handler.setLevel(level)
                handler.setFormatter(formatter)
                package_logger.addHandler(handler)

            self._configured = True

    def get_logger(self, name: str) -> logging.Logger:
        if not self._configured:
            self.configure()
        return logging.getLogger(name)


_manager = LogManager()


def get_logger(name: str) -> logging.Logger:
    """Return the standard logger ``name`` with the package handlers in place."""
    return _manager.get_logger(name)


_manager.configure()

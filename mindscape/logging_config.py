# mindscape/logging_config.py
from __future__ import annotations
import logging, logging.handlers, sys, traceback
from pathlib import Path
from .constants import DEFAULT_LOG_MAX_BYTES, DEFAULT_LOG_BACKUP_COUNT, DEFAULT_LOG_FILENAME

# third-party loggers that only get a say at WARNING and above
QUIET_LOGGERS = ("asyncio", "urllib3", "requests", "keyring", "PIL")

_LEVEL_COLOURS = {
    logging.DEBUG: "\x1b[36m",
    logging.INFO: "\x1b[32m",
    logging.WARNING: "\x1b[33m",
    logging.ERROR: "\x1b[31m",
    logging.CRITICAL: "\x1b[41m",
}


class _ConsoleFormatter(logging.Formatter):
    """Short single-line records; coloured by level when stdout is a terminal."""

    def __init__(self, colour: bool):
        super().__init__("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s", "%H:%M:%S")
        self._colour = colour

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        if not self._colour:
            return text
        return f"{_LEVEL_COLOURS.get(record.levelno, '')}{text}\x1b[0m"


class _FileFormatter(logging.Formatter):
    def __init__(self):
        super().__init__("%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s",
                         "%Y-%m-%d %H:%M:%S")


def _level(name: str) -> int:
    value = logging.getLevelName((name or "INFO").upper())
    return value if isinstance(value, int) else logging.INFO


def init_logging(log_dir: Path, level: str = "INFO", log_name: str = DEFAULT_LOG_FILENAME,
                 max_bytes: int = DEFAULT_LOG_MAX_BYTES, backup_count: int = DEFAULT_LOG_BACKUP_COUNT,
                 also_console: bool = True) -> Path:
    """Route the root logger to a rotating file (and optionally stdout). Returns the log file path."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / log_name
    lvl = _level(level)

    root = logging.getLogger()
    # re-init replaces whatever a previous call installed
    for old in list(root.handlers):
        root.removeHandler(old)
        old.close()
    root.setLevel(lvl)

    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=backup_count,
                                             encoding="utf-8", delay=True)
    ]
    handlers[0].setFormatter(_FileFormatter())
    if also_console:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(_ConsoleFormatter(colour=sys.stdout.isatty()))
        handlers.append(console)
    for h in handlers:
        h.setLevel(lvl)
        root.addHandler(h)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    install_excepthook()
    logging.getLogger(__name__).info("Logging initialized → %s (level %s)", log_path, logging.getLevelName(lvl))
    return log_path


def install_qt_message_handler():
    """Send Qt's own warnings (qWarning and friends) into the 'qt' logger."""
    from PyQt6.QtCore import QtMsgType, qInstallMessageHandler

    qt_log = logging.getLogger("qt")
    levels = {
        QtMsgType.QtDebugMsg: logging.DEBUG,
        QtMsgType.QtInfoMsg: logging.INFO,
        QtMsgType.QtWarningMsg: logging.WARNING,
        QtMsgType.QtCriticalMsg: logging.ERROR,
        QtMsgType.QtFatalMsg: logging.CRITICAL,
    }

    def _handler(msg_type, context, message):
        qt_log.log(levels.get(msg_type, logging.WARNING), "%s", message)

    qInstallMessageHandler(_handler)


def install_excepthook():
    def _hook(exc_type, exc, tb):
        logging.getLogger("uncaught").error("Uncaught exception", exc_info=(exc_type, exc, tb))
        summary = "".join(traceback.format_exception_only(exc_type, exc)).strip()
        sys.stderr.write(f"\nFATAL: {summary}\n")
        sys.stderr.flush()
    sys.excepthook = _hook

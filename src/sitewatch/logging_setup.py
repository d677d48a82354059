# src/sitewatch/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

_CONFIGURED = False

NOISY_LOGGERS = ("httpx", "httpcore", "nio")


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the console readable:
    - allow sitewatch logs
    - Matrix connector only at WARNING+ (sync loop is chatty)
    - third-party libraries and captured py.warnings only at ERROR+
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name.startswith("sitewatch."):
            if name.startswith("sitewatch.connectors.matrix_"):
                return record.levelno >= logging.WARNING
            return True

        if name == "py.warnings":
            return record.levelno >= logging.ERROR

        return record.levelno >= logging.ERROR


def quiet_noisy_loggers() -> None:
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging(
    *,
    log_dir: str | Path = ".local/sitewatch/logs",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> None:
    """
    Configure logging with:
    - Console handler: filtered for interactive use
    - combined.log: everything at file_level and up
    - error.log: errors only

    Call this ONCE, very early (before first logger.info).
    """
    global _CONFIGURED
    if _CONFIGURED:
        raise RuntimeError("Logging is already configured.")

    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    # Remove any pre-existing handlers to avoid duplicates.
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(fmt)
    ch.addFilter(_ConsoleNoiseFilter())
    root.addHandler(ch)

    combined = logging.FileHandler(str(log_dir / "combined.log"), encoding="utf-8")
    combined.setLevel(file_level)
    combined.setFormatter(fmt)
    root.addHandler(combined)

    errors = logging.FileHandler(str(log_dir / "error.log"), encoding="utf-8")
    errors.setLevel(logging.ERROR)
    errors.setFormatter(fmt)
    root.addHandler(errors)

    logging.captureWarnings(True)

    quiet_noisy_loggers()

    _CONFIGURED = True

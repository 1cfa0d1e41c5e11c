"""
Logging Setup

One log file per crawl run under the log directory, named after the day
(`2024-05-01.log`, then `2024-05-01_2.log` for the next run that day).
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

LOG_FORMAT = "%(asctime)s.%(msecs)03d-[%(levelname)s]: %(message)s"
DATE_FORMAT = "%Y-%m-%d_%H:%M:%S"

# Third-party loggers that are noisy at INFO
QUIET_LOGGERS = ("aiohttp", "asyncio", "urllib3")


def next_log_path(log_dir: str | Path, today: datetime | None = None) -> Path:
    """Return the next free per-day log file path in `log_dir`."""
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    name = (today or datetime.now()).strftime("%Y-%m-%d")
    runs_today = sum(1 for p in log_dir.iterdir() if p.name.startswith(name))
    if runs_today > 0:
        name = f"{name}_{runs_today + 1}"
    return log_dir / f"{name}.log"


def setup_logging(
    log_dir: str | Path, level: str = "INFO", console: bool = True
) -> Path:
    """
    Configure the root logger for a crawl run.

    Args:
        log_dir: Directory receiving the run's log file
        level: Root log level name
        console: Also log to stdout

    Returns:
        Path of the log file being written
    """
    log_path = next_log_path(log_dir)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info(f"Logging to {log_path}")
    return log_path

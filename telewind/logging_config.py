"""Application logging setup."""
import logging
import sys
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

from telewind.utils.timezone import TIMEZONE


class StationFormatter(logging.Formatter):
    """Formatter that renders timestamps in the station timezone (UTC+10)."""

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, tz=TIMEZONE)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.strftime("%Y-%m-%d %H:%M:%S VLAT")

    def format(self, record):
        result = super().format(record)
        # Indent continuation lines of long multi-line messages
        message = record.getMessage()
        if len(message) > 100 and "\n" in message:
            lines = message.split("\n")
            indent = " " * 4
            formatted_msg = "\n".join([lines[0]] + [indent + line for line in lines[1:]])
            result = result.replace(message, formatted_msg)
        return result


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None):
    """Configure the root logger: console always, daily-rotated file when log_dir is set."""
    formatter = StationFormatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S VLAT",
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            filename=path / "telewind.log",
            when="midnight",
            interval=1,
            backupCount=30,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # aiohttp access noise
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    return root_logger

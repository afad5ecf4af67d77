"""
Logging configuration for CodeBattle

Console output gets a colored level name; the per-run log file under
``log.dir`` is always plain text and records every level.
"""

import logging
import os
import sys
from datetime import datetime
from typing import Optional

LOG_FORMAT = '%(asctime)s.%(msecs)03d | %(levelname)-8s | %(name)s | %(filename)s:%(lineno)d - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class ColoredFormatter(logging.Formatter):
    """Console formatter that colors the level name"""

    COLORS = {
        'DEBUG': '\033[32m',      # Green text
        'INFO': '\033[36m',       # Cyan text
        'WARNING': '\033[33m',    # Yellow text
        'ERROR': '\033[31m',      # Red text
        'CRITICAL': '\033[41m\033[97m', # Red background + white text
    }
    RESET = '\033[0m'

    def format(self, record):
        levelname = record.levelname
        color = self.COLORS.get(levelname)
        if color:
            record.levelname = f"{color}{levelname:<8}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    enable_colors: bool = True
) -> None:
    """
    Setup logging configuration

    Args:
        level: Console logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path; its directory is created if missing
        enable_colors: Whether to enable colored output for console
    """
    # Remove existing handlers to avoid duplicates
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level.upper()))
    formatter_class = ColoredFormatter if enable_colors else logging.Formatter
    console_handler.setFormatter(formatter_class(LOG_FORMAT, datefmt=DATE_FORMAT))
    logging.root.addHandler(console_handler)

    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)  # File records all log levels
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logging.root.addHandler(file_handler)

    logging.root.setLevel(logging.DEBUG)


def setup_logging_from_config(config) -> str:
    """Setup logging from the ``log`` section; returns the path of this run's log file"""
    log_config = config.get_section("log")
    port = config.get("server.port", 3000)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = os.path.join(log_config.get("dir", "logs/server_logs"), f"server_{port}_{timestamp}.log")

    setup_logging(
        level=log_config.get("level", "INFO"),
        log_file=log_file,
        enable_colors=log_config.get("enable_colors", True)
    )
    return log_file


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the ``codebattle`` namespace"""
    return logging.getLogger(f"codebattle.{name}")

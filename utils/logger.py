"""
Logging setup for the ABX selector.

Console output goes to stderr (stdout carries the CLI progress line).
Environment:
    ABX_LOG_LEVEL    console level name, INFO by default
    ABX_DEBUG=1      shortcut for DEBUG
    ABX_LOG_TO_FILE=1  also write a daily file under ./logs
"""

import logging
import sys
from pathlib import Path
from datetime import datetime
import os


class ColoredFormatter(logging.Formatter):
    """Colors the level name on terminals."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
        'RESET': '\033[0m'
    }

    def format(self, record):
        # Color a copy so file handlers keep the plain level name
        record = logging.makeLogRecord(record.__dict__)
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"

        return super().format(record)


def setup_logging(level=None, log_to_file=None, log_dir='logs'):
    """
    (Re)configure the root logger.

    Args:
        level: logging level; None reads ABX_LOG_LEVEL
        log_to_file: None reads ABX_LOG_TO_FILE
        log_dir: directory for abx_YYYYMMDD.log
    """
    if level is None:
        env_level = os.getenv('ABX_LOG_LEVEL', 'INFO').upper()
        level = getattr(logging, env_level, logging.INFO)

    if log_to_file is None:
        log_to_file = os.getenv('ABX_LOG_TO_FILE', '0') == '1'

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(fmt='%(levelname)s [%(name)s] %(message)s'))
    root_logger.addHandler(console_handler)

    if log_to_file:
        log_path = Path(log_dir)
        log_path.mkdir(exist_ok=True)

        file_handler = logging.FileHandler(log_path / f"abx_{datetime.now():%Y%m%d}.log", encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            fmt='%(asctime)s %(levelname)s [%(threadName)s %(name)s:%(lineno)d] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        root_logger.addHandler(file_handler)

    return root_logger


def get_logger(name):
    return logging.getLogger(name)


setup_logging(level=logging.DEBUG if os.getenv('ABX_DEBUG', '0') == '1' else None)

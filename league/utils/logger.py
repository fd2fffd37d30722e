"""
Logging setup shared by the league package.

Every module gets its logger from setup_logger(__name__). Records go to
stdout and, unless Config.LOG_TO_FILE is off, to one file per day under
Config.LOG_DIR (league_YYYYMMDD.log), which keeps a DEBUG trail of match
results and stats updates even when the console runs at INFO.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from league.config import Config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def _daily_log_path() -> Path:
    log_dir = Path(Config.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / f'league_{datetime.now().strftime("%Y%m%d")}.log'


def setup_logger(name: str) -> logging.Logger:
    """Configure the named logger once; later calls return it unchanged"""
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    console_level = logging.DEBUG if Config.DEBUG else logging.INFO
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if Config.LOG_TO_FILE:
        file_handler = logging.FileHandler(_daily_log_path(), encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        # The file keeps DEBUG records whatever the console level is
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(console_level)

    return logger

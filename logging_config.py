import logging
import os
import sys

APP_LOGGER = "app"

# Level colors for the console; left plain when stdout is not a terminal
LEVEL_COLORS = {
    logging.DEBUG: '\033[36m',
    logging.INFO: '\033[32m',
    logging.WARNING: '\033[33m',
    logging.ERROR: '\033[31m',
    logging.CRITICAL: '\033[35m',
}
RESET = '\033[0m'

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(area)-11s | %(message)s'


class ConsoleFormatter(logging.Formatter):
    """Colored level names and a short area column ("tracking", "reaper"...)"""

    def __init__(self, use_color=True):
        super().__init__(fmt=LOG_FORMAT, datefmt='%H:%M:%S')
        self.use_color = use_color

    def format(self, record):
        name = record.name
        record.area = name[len(APP_LOGGER) + 1:] if name.startswith(APP_LOGGER + ".") else name

        levelname = record.levelname
        if self.use_color and record.levelno in LEVEL_COLORS:
            record.levelname = f"{LEVEL_COLORS[record.levelno]}{levelname}{RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def setup_logging(level=None):
    """Console logging for the API; level from LOG_LEVEL, INFO by default"""
    level = level or os.getenv("LOG_LEVEL", "INFO").upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ConsoleFormatter(use_color=sys.stdout.isatty()))

    logging.basicConfig(level=level, handlers=[handler])

    # Library noise
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return logging.getLogger(APP_LOGGER)

import logging
import os
from logging.handlers import RotatingFileHandler

# Default log level - can be overridden by environment variable
LOG_LEVEL_STR = os.environ.get('LOG_LEVEL', 'INFO').upper()
LOG_LEVEL = getattr(logging, LOG_LEVEL_STR, logging.INFO)

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(module)s.%(funcName)s:%(lineno)d - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

APP_LOGGER_NAME = 'story_archiver'

# Determine project root based on the location of logger.py
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..'))
WORKSPACE_PATH = os.path.join(PROJECT_ROOT, 'workspace')
DEFAULT_LOGS_DIR_NAME = 'logs'
LOGS_DIR = os.environ.get('STORY_ARCHIVE_LOG_DIR') or os.path.join(WORKSPACE_PATH, DEFAULT_LOGS_DIR_NAME)


def setup_logger(logger_name, log_file, level=logging.INFO, add_console_handler=True):
    """Generic function to set up a logger."""
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.propagate = False

    log_dir = os.path.dirname(log_file)
    os.makedirs(log_dir, exist_ok=True)

    # Remove existing handlers to avoid duplication
    if logger.hasHandlers():
        logger.handlers.clear()

    file_handler = RotatingFileHandler(log_file, maxBytes=5*1024*1024, backupCount=5, encoding='utf-8')
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(file_handler)

    if add_console_handler:
        console_handler = logging.StreamHandler()
        # The CLI reports results itself; only problems go to the console.
        console_handler.setLevel(max(level, logging.WARNING))
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(console_handler)

    return logger


main_log_file = os.path.join(LOGS_DIR, 'archiver.log')
logger = setup_logger(APP_LOGGER_NAME, main_log_file, LOG_LEVEL)


def get_logger(name: str = APP_LOGGER_NAME) -> logging.Logger:
    """
    Returns a logger that writes through the application handlers.

    Module names inside the package (``story_archiver.core...``) are already
    children of the application logger; anything else is nested under it.
    """
    if name != APP_LOGGER_NAME and not name.startswith(APP_LOGGER_NAME + '.'):
        name = f"{APP_LOGGER_NAME}.{name}"
    return logging.getLogger(name)

import logging
import os
from logging.handlers import RotatingFileHandler
from config.config import Config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Chatty dependencies that should only surface problems
QUIET_LOGGERS = ('apscheduler', 'urllib3', 'python_http_client')


def setup_logger(name='xpreview', log_file=None, level=None):
    """Configure the application logger with a rotating file and the console"""
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, (level or Config.LOG_LEVEL).upper(), logging.INFO))

    # Importing twice (scripts, tests) must not duplicate output
    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    log_file = log_file if log_file is not None else Config.LOG_FILE
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        file_handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=10)
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    for quiet in QUIET_LOGGERS:
        logging.getLogger(quiet).setLevel(logging.WARNING)

    return logger


def get_logger(name=None):
    """Module loggers live under the xpreview hierarchy and share its handlers"""
    return logging.getLogger(name or 'xpreview')


logger = setup_logger()

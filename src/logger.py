"""Centralized logging configuration for the reminder bot."""
import logging
import sys
from pathlib import Path
from datetime import datetime

ROOT_LOGGER_NAME = 'boss_reminder'


def setup_logging(log_dir: Path = None, log_level: int = logging.INFO) -> logging.Logger:
    """
    Set up application-wide logging.

    Args:
        log_dir: Directory for log files (defaults to data/logs)
        log_level: Logging level (default: INFO)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(log_level)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    # Module loggers created before this call must inherit the new level and handlers
    prefix = f"{ROOT_LOGGER_NAME}."
    for name, child in list(logging.root.manager.loggerDict.items()):
        if name.startswith(prefix) and isinstance(child, logging.Logger):
            child.handlers.clear()
            child.setLevel(logging.NOTSET)

    if log_dir is None:
        log_dir = Path(__file__).parent.parent / "data" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = log_dir / f"boss_reminder_{datetime.now().strftime('%Y%m%d')}.log"

    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    file_handler.setFormatter(file_formatter)
    logger.addHandler(file_handler)

    # Console handler (flush after each message so output appears immediately under a process manager)
    class FlushingStreamHandler(logging.StreamHandler):
        def emit(self, record):
            super().emit(record)
            self.flush()
    console_handler = FlushingStreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        datefmt='%H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    logger.info("=" * 80)
    logger.info("Boss Respawn Reminder - Logging initialized")
    logger.info(f"Log file: {log_file}")
    logger.info("=" * 80)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a specific module.
    Uses boss_reminder.<name> so all loggers are children of the app root
    and propagate to its handlers (file + console).
    """
    if name.startswith(ROOT_LOGGER_NAME):
        logger_name = name
    else:
        logger_name = f'{ROOT_LOGGER_NAME}.{name}'
    logger = logging.getLogger(logger_name)

    # No root configuration yet: likely a test run, keep output to warnings.
    # The fallback sits on the app root so setup_logging() replaces it for every module.
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(logging.WARNING)
        handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
        root.addHandler(handler)
        root.setLevel(logging.WARNING)

    return logger

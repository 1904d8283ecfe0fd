import os
import logging
from logging.handlers import RotatingFileHandler

ROOT_LOGGER_NAME = "parley_chat"


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    disable_console: bool = False,
) -> logging.Logger:
    """
    Set up logging with RotatingFileHandler.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    # ``LOG_LEVEL`` overrides the project-wide default of WARNING.  Invalid
    # values fall back to WARNING as well.
    log_level = os.getenv("LOG_LEVEL", "WARNING").upper()
    logger.setLevel(getattr(logging, log_level, logging.WARNING))

    log_file = os.getenv("LOG_FILE", "parley.log")
    handler = RotatingFileHandler(
        log_file, maxBytes=5 * 1024 * 1024, backupCount=3
    )
    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # The Textual UI owns the terminal, so console handlers can be dropped.
    if disable_console:
        logging.root.handlers = [
            h
            for h in logging.root.handlers
            if not isinstance(h, logging.StreamHandler)
            or isinstance(h, logging.FileHandler)
        ]

    return logger


def setup_logger_with_env_control() -> logging.Logger:
    """
    Set up logging with environment variable control.

    Environment variables:
    - PARLEY_LOG_LEVEL_FILE: Log level for file logging (default: INFO)
    - LOG_FILE: Log file path (default: parley.log)
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)

    if logger.handlers:
        return logger

    file_log_level = os.getenv("PARLEY_LOG_LEVEL_FILE", "INFO").upper()
    file_level = getattr(logging, file_log_level, logging.INFO)
    logger.setLevel(file_level)

    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    file_handler = logging.FileHandler(os.getenv("LOG_FILE", "parley.log"))
    file_handler.setLevel(file_level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    logger.info(f"Logger initialized - File level: {file_log_level}")

    return logger


def get_logger(name: str = None) -> logging.Logger:
    """
    Get a logger that propagates to the ``parley_chat`` root logger.

    Args:
        name: Logger name (defaults to calling module's __name__)

    Returns:
        Logger instance
    """
    if name is None:
        import inspect
        frame = inspect.currentframe()
        try:
            caller_frame = frame.f_back
            name = caller_frame.f_globals.get('__name__', __name__)
        finally:
            del frame

    return logging.getLogger(name)

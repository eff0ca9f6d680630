import logging
import sys
from pathlib import Path

from .config import LogConfig

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(threadName)s - %(name)s - %(message)s"

# Third-party loggers that are too chatty below WARNING
NOISY_LOGGERS = ("googleapiclient.discovery", "googleapiclient.discovery_cache", "urllib3")


def setup_logging(config: LogConfig) -> None:
    """
    Configure the root logger for the server process.

    Adds a file handler when ``config.file`` is set (creating its directory),
    a stderr handler when ``config.console`` is true, and applies
    ``config.level`` to both. Existing root handlers are replaced, so calling
    this twice does not duplicate output. pyftpdlib logs through the same
    root logger.
    """
    level = getattr(logging, config.level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    if config.file:
        log_path = Path(config.file)
        if log_path.parent and not log_path.parent.exists():
            log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    if config.console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

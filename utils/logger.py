"""
Logging utility for Crenors
Console and rotating file output shared by every module logger
"""

import logging
import logging.handlers
from pathlib import Path
from typing import Optional

DEFAULT_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

# Third-party loggers that flood DEBUG output
NOISY_LOGGERS = ("discord", "discord.http", "discord.gateway", "pymongo")


def _rotating_file_handler(log_file: str, formatter: logging.Formatter) -> logging.Handler:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUPS,
        encoding='utf-8'
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    return handler


def setup_logger(
    name: Optional[str] = None,
    level: str = "INFO",
    log_file: Optional[str] = "logs/bot.log",
    log_format: str = DEFAULT_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT
) -> logging.Logger:
    """
    Attach console and file handlers to a logger

    Called with no name it configures the root logger, so the
    `logging.getLogger(__name__)` loggers of core/, database/ and cogs/
    all write to the same outputs.

    Args:
        name: Logger name, None for the root logger
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (None for console only)
        log_format: Log message format
        date_format: Date format for timestamps

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    logger.handlers.clear()

    formatter = logging.Formatter(log_format, datefmt=date_format)

    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        logger.addHandler(_rotating_file_handler(log_file, formatter))

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.INFO)

    return logger


class BotLogger:
    """Logger for bot lifecycle events (startup, cogs, commands)"""

    def __init__(self, config: dict):
        setup_logger(
            level=config.get("level", "INFO"),
            log_file=config.get("file", "logs/bot.log"),
            log_format=config.get("format", DEFAULT_FORMAT),
            date_format=config.get("date_format", DEFAULT_DATE_FORMAT)
        )
        self.logger = logging.getLogger("Crenors")

    def debug(self, message: str) -> None:
        self.logger.debug(message)

    def info(self, message: str) -> None:
        self.logger.info(message)

    def warning(self, message: str) -> None:
        self.logger.warning(message)

    def error(self, message: str, exc_info: bool = False) -> None:
        self.logger.error(message, exc_info=exc_info)

    def command(self, user: str, command: str, guild: str) -> None:
        self.info(f"/{command} used by {user} in {guild}")

    def cog_load(self, cog_name: str) -> None:
        self.info(f"Loaded cog: {cog_name}")

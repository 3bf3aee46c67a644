"""Logging configuration for the synchronizer daemon."""

import logging
import os
import time
from logging.handlers import TimedRotatingFileHandler

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


class SizeAndTimeRotatingHandler(TimedRotatingFileHandler):
    """Log handler that rotates the daemon log by size as well as by time.

    A long-lived sync loop at debug level can fill a file well before
    midnight, so either limit triggers a rollover.
    """

    def __init__(self, filename, max_bytes, backup_count=0, **kwargs):
        """Initialize the handler; ``max_bytes <= 0`` disables the size limit."""
        self.max_bytes = max_bytes
        super().__init__(filename, backupCount=backup_count, **kwargs)

    def shouldRollover(self, record):
        """Roll over once the record is past the rollover time or the file is full."""
        if int(record.created) >= self.rolloverAt:
            return 1

        if self.stream and self.max_bytes > 0:
            self.stream.seek(0, os.SEEK_END)
            if self.stream.tell() >= self.max_bytes:
                return 1
        return 0

    def doRollover(self):
        """Rotate the file and schedule the next time-based rollover."""
        super().doRollover()
        self.rolloverAt = self.computeRollover(int(time.time()))


def parse_level(name: str) -> int:
    """Map a level name such as ``"debug"`` to its logging constant."""
    level = logging.getLevelName(name.strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {name}")
    return level


def configure_logging(
    level: int = logging.INFO,
    log_dir: str | None = "logs",
    log_file: str = "sync_daemon.log",
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 7,
    console: bool = True,
) -> logging.Logger:
    """Configure the root logger.

    Args:
        level: Logging level for the root logger and console.
        log_dir: Directory for the rotating log file, or None to skip it.
        log_file: Log file name inside ``log_dir``.
        max_bytes: Max file size before rotation.
        backup_count: Number of rotated files to keep.
        console: Whether to also log to stderr.

    Returns:
        The configured root logger.
    """
    logger = logging.getLogger()
    logger.setLevel(level)
    logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = SizeAndTimeRotatingHandler(
            filename=os.path.join(log_dir, log_file),
            when="midnight",
            interval=1,
            max_bytes=max_bytes,
            backup_count=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    # httpx logs every request at INFO, which drowns out poll cycles.
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))

    return logger

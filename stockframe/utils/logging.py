"""
Logging configuration and utilities for the stockframe pipeline.
"""

import logging
import logging.handlers
from pathlib import Path
from typing import Optional
import sys
import time

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5
) -> logging.Logger:
    """
    Set up logging for the stockframe package logger.
    
    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (optional)
        log_format: Custom log format (optional)
        max_bytes: Maximum size of log file before rotation
        backup_count: Number of backup log files to keep
        
    Returns:
        Configured package logger
    """
    if log_format is None:
        log_format = DEFAULT_LOG_FORMAT
    
    level = getattr(logging, log_level.upper())
    
    logger = logging.getLogger("stockframe")
    logger.setLevel(level)
    logger.handlers.clear()
    
    formatter = logging.Formatter(log_format)
    
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)
    
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    
    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance under the package namespace.
    
    Args:
        name: Logger name (typically __name__ or a stage name)
        
    Returns:
        Logger instance
    """
    if name.startswith("stockframe"):
        return logging.getLogger(name)
    return logging.getLogger(f"stockframe.{name}")


class LoggingMixin:
    """
    Gives pipeline components a logger named after their class.

    Subclasses may set ``log_name`` to log under a different child name.
    """

    log_name: Optional[str] = None

    @property
    def logger(self) -> logging.Logger:
        return get_logger(self.log_name or type(self).__name__)

    def log_info(self, msg: str, *args, **kwargs) -> None:
        self.logger.info(msg, *args, **kwargs)

    def log_warning(self, msg: str, *args, **kwargs) -> None:
        self.logger.warning(msg, *args, **kwargs)

    def log_error(self, msg: str, *args, **kwargs) -> None:
        self.logger.error(msg, *args, **kwargs)

    def log_debug(self, msg: str, *args, **kwargs) -> None:
        self.logger.debug(msg, *args, **kwargs)


class StageTimer:
    """
    Context manager that logs entry/exit row counts and wall time of a stage.

    Example:
        >>> with StageTimer(logger, "densify", rows_in=len(df)) as timer:
        ...     out = densify(df)
        ...     timer.rows_out = len(out)
    """

    def __init__(self, logger: logging.Logger, stage: str, rows_in: int):
        self.logger = logger
        self.stage = stage
        self.rows_in = rows_in
        self.rows_out: Optional[int] = None
        self._started = 0.0

    def __enter__(self) -> "StageTimer":
        self._started = time.perf_counter()
        self.logger.info(f"[{self.stage}] start: {self.rows_in} rows")
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        elapsed = time.perf_counter() - self._started
        if exc is not None:
            self.logger.error(f"[{self.stage}] failed after {elapsed:.2f}s: {exc}")
        else:
            self.logger.info(
                f"[{self.stage}] done in {elapsed:.2f}s: {self.rows_in} -> {self.rows_out} rows"
            )
        return False

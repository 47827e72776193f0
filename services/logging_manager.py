"""
Logging manager to configure Python logging according to AppConfig.logging.

Every record carries a ``request_id`` attribute so that the stages of one
OCR request can be traced across modules and worker threads.
"""
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional
import os

from models.config import LoggingConfig, AppConfig


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s"
NO_REQUEST = "-"


class RequestIdFilter(logging.Filter):
    """Supply a default ``request_id`` for records logged outside a request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = NO_REQUEST
        return True


def request_logger(name: str, request_id: Optional[str] = None) -> logging.LoggerAdapter:
    """Return a logger adapter that tags records with ``request_id``."""
    return logging.LoggerAdapter(logging.getLogger(name), {"request_id": request_id or NO_REQUEST})


class LoggingManager:
    def __init__(self):
        self._configured = False

    def setup(self, cfg: AppConfig) -> None:
        """Configure logging based on AppConfig.logging settings."""
        if self._configured:
            return

        log_cfg: LoggingConfig = cfg.logging
        level = getattr(logging, log_cfg.level.upper(), logging.INFO)

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        formatter = logging.Formatter(LOG_FORMAT)

        # Console handler
        ch = logging.StreamHandler()
        ch.setLevel(level)
        ch.setFormatter(formatter)
        ch.addFilter(RequestIdFilter())

        root_logger.handlers.clear()
        root_logger.addHandler(ch)

        # File handler with rotation; an empty path disables it
        if log_cfg.file:
            log_dir = os.path.dirname(log_cfg.file)
            if log_dir and not os.path.exists(log_dir):
                os.makedirs(log_dir, exist_ok=True)
            fh = RotatingFileHandler(log_cfg.file, maxBytes=self._parse_size(log_cfg.max_size), backupCount=3, encoding="utf-8")
            fh.setLevel(level)
            fh.setFormatter(formatter)
            fh.addFilter(RequestIdFilter())
            root_logger.addHandler(fh)

        self._configured = True

    @staticmethod
    def _parse_size(size_str: str) -> int:
        """Parse human-readable size (e.g., '10MB') into bytes."""
        s = size_str.strip().upper()
        try:
            if s.endswith("KB"):
                return int(float(s[:-2]) * 1024)
            if s.endswith("MB"):
                return int(float(s[:-2]) * 1024 * 1024)
            if s.endswith("GB"):
                return int(float(s[:-2]) * 1024 * 1024 * 1024)
            return int(s)
        except ValueError:
            return 10 * 1024 * 1024  # default 10MB

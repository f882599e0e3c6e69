"""
Logging setup for the ExamCoach access service

Every module logs through the shared ``logger`` defined here so that
handlers and levels are configured in one place at startup.
"""

import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger("examcoach")

_configured = False


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the shared logger.

    Safe to call more than once; handlers are only attached the first time.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path for a rotating log file

    Returns:
        The configured shared logger
    """
    global _configured

    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if _configured:
        return logger

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(path, maxBytes=5 * 1024 * 1024, backupCount=3)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    _configured = True
    return logger


def mask_phone(phone: Optional[str]) -> str:
    """Mask a phone number for log output, keeping prefix and last 4 digits"""
    if not phone:
        return "<none>"
    digits = re.sub(r"\D", "", phone)
    if len(digits) <= 4:
        return "****"
    prefix = "+" + digits[:3] if phone.startswith("+") else digits[:3]
    return f"{prefix}{'*' * max(len(digits) - 7, 1)}{digits[-4:]}"

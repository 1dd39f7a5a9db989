"""Logging utilities for the repository migration tool."""

import sys
import threading
from pathlib import Path
from typing import Optional

from loguru import logger

SECRET_MASK = '***'

_secrets = set()
_secrets_lock = threading.Lock()


def register_secret(secret: Optional[str]) -> None:
    """Mask a value in every log record emitted from now on.

    Args:
        secret: Token, password or connection string to hide
    """
    if not secret:
        return
    with _secrets_lock:
        _secrets.add(secret)


def clear_secrets() -> None:
    """Forget all registered secrets."""
    with _secrets_lock:
        _secrets.clear()


def mask_secrets(message: str) -> str:
    """Replace every registered secret in a message with the mask."""
    with _secrets_lock:
        # Longest first, so a secret containing another is fully hidden
        secrets = sorted(_secrets, key=len, reverse=True)
    for secret in secrets:
        message = message.replace(secret, SECRET_MASK)
    return message


def _mask_record(record) -> None:
    record['message'] = mask_secrets(record['message'])


logger.configure(patcher=_mask_record)


def setup_logging(
    level: str = 'INFO',
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    verbose: bool = False,
) -> None:
    """Setup logging configuration using loguru.

    Verbose output (request/response traces, retry notices) is emitted at
    DEBUG level, so verbose forces the level down to DEBUG.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path
        log_format: Optional custom log format
        verbose: Enable verbose output
    """
    if verbose:
        level = 'DEBUG'

    # Remove default handler
    logger.remove()

    if log_format is None:
        log_format = (
            '<green>{time:YYYY-MM-DD HH:mm:ss}</green> | '
            '<level>{level: <8}</level> | '
            '<level>{message}</level>'
        )

    logger.add(
        sys.stderr,
        format=log_format,
        level=level,
        colorize=True,
        backtrace=True,
        diagnose=False,
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_format = (
            '{time:YYYY-MM-DD HH:mm:ss} | '
            '{level: <8} | '
            '{name}:{function}:{line} | '
            '{message}'
        )

        logger.add(
            log_file,
            format=file_format,
            level=level,
            rotation='10 MB',
            retention='30 days',
            compression='gz',
            backtrace=True,
            diagnose=False,
        )

    logger.debug(f'Logging initialized with level: {level}')
    if log_file:
        logger.debug(f'Log file: {log_file}')

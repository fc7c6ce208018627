"""
Logging configuration
Structured logging built on loguru
"""
import os
import sys
from loguru import logger
from typing import Optional


def setup_logger(
    log_level: str = 'INFO',
    log_file: Optional[str] = None,
    rotation: str = '10 MB',
    retention: str = '7 days'
) -> None:
    """
    Configure the logging system

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path
        rotation: Rotation size of the log file
        retention: How long rotated files are kept
    """
    # Drop loguru's default handler
    logger.remove()

    level = os.environ.get('LOG_LEVEL', log_level).upper()

    console_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{extra[name]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
        "<level>{message}</level>"
    )

    logger.configure(extra={'name': 'tubesync'})

    logger.add(
        sys.stderr,
        format=console_format,
        level=level,
        colorize=True,
        backtrace=True,
        diagnose=False,
    )

    if log_file:
        file_format = (
            "{time:YYYY-MM-DD HH:mm:ss} | "
            "{level: <8} | "
            "{extra[name]}:{function}:{line} | "
            "{message}"
        )
        logger.add(
            log_file,
            format=file_format,
            level=level,
            rotation=rotation,
            retention=retention,
            compression='zip',
            encoding='utf-8',
        )

    logger.info(f"Logger initialized with level: {level}")


def get_logger(name: str = None):
    """
    Return a logger bound to a component name

    Args:
        name: Component name shown in every record
    """
    if name:
        return logger.bind(name=name)
    return logger


def log_sync_event(channel_id: str, event: str, details: dict = None):
    """Log a sync lifecycle event for a channel"""
    msg = f"Sync Event: channel={channel_id}, event={event}"
    if details:
        msg += f", details={details}"
    logger.bind(name='sync').info(msg)


def log_job_transition(job_id: int, old_state: str, new_state: str, reason: str = None):
    """Log a job state transition"""
    msg = f"Job {job_id}: {old_state} -> {new_state}"
    if reason:
        msg += f" ({reason})"
    logger.bind(name='job_queue').info(msg)

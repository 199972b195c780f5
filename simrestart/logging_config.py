"""Centralized logging configuration using loguru."""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger


def setup_logging(
    run_name: str,
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    rank: int = 0,
) -> Optional[Path]:
    """Configure loguru for a simulation run.

    Args:
        run_name: Case or run name, shown in every record
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for ``restart_rank<N>.log``, or None for console only
        rank: Rank of the calling process

    Returns:
        Path to the log file, or None when logging to console only
    """
    # Remove default handler
    logger.remove()
    logger.configure(extra={"run": run_name, "rank": rank})

    # Console handler with colors
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<magenta>{extra[run]}:{extra[rank]}</magenta> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
        "<level>{message}</level>",
        level=level,
        colorize=True,
    )

    if log_dir is None:
        return None

    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"restart_rank{rank}.log"

    logger.add(
        log_path,
        level="DEBUG",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | "
        "{extra[run]}:{extra[rank]} | {name}:{function}:{line} - {message}",
        enqueue=True,
    )

    logger.info(f"Logging to {log_path.absolute()} (level {level})")
    return log_path


def get_logger(name: str = __name__):
    """Get a logger instance for a module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logger.bind(name=name)

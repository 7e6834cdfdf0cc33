"""Logging setup for fitplan.

Generation code logs with structured kwargs (``logger.info("...", user_id=...)``),
which loguru keeps in ``record["extra"]``. Text handlers render them as
``key=value`` pairs after the message; with ``serialize=True`` the file handler
writes one JSON object per line instead.
"""

import sys
from pathlib import Path

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>{extra[context]}"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}{extra[context]}"


def render_context(record) -> None:
    fields = {key: value for key, value in record["extra"].items() if key != "context"}
    record["extra"]["context"] = " | " + " ".join(f"{key}={value}" for key, value in fields.items()) if fields else ""


def setup_logger(
    level: str = "INFO",
    log_file: str | None = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
    serialize: bool = False,
) -> None:
    """Replace loguru's handlers with fitplan's console and optional file handler.

    Args:
        level: Minimum level for both handlers
        log_file: Optional path; parent directories are created
        rotation: When to rotate the file (e.g. "10 MB", "1 day")
        retention: How long rotated files are kept
        serialize: Write the file as JSON lines instead of text
    """
    logger.remove()
    logger.configure(patcher=render_context)

    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            format=FILE_FORMAT,
            level=level,
            rotation=rotation,
            retention=retention,
            compression="zip",
            serialize=serialize,
            backtrace=True,
            diagnose=False,
        )

    logger.info("Logger initialized", level=level, log_file=log_file, serialize=serialize)

"""Logger configuration for the coaching context engine.

Besides the console and rotating file sinks, the retrieval and assembly
events (messages starting with ``rag_``) can be written as JSON lines to a
separate file, one record per event with its keyword context under
``record.extra``.
"""

import sys
from pathlib import Path

from loguru import logger

RETRIEVAL_EVENT_PREFIX = "rag_"

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def is_retrieval_event(record) -> bool:
    """Loguru filter keeping only the structured retrieval events."""
    return record["message"].startswith(RETRIEVAL_EVENT_PREFIX)


def _with_extra(base: str):
    # Event context goes in extra; plain messages carry none
    def formatter(record) -> str:
        suffix = " | {extra}" if record["extra"] else ""
        return base + suffix + "\n{exception}"

    return formatter


def setup_logger(
    level: str = "INFO",
    log_file: str | None = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
    events_file: str | None = None,
) -> None:
    """Configure loguru logger with console and optional file output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file. If None, only console logging.
        rotation: Log rotation size (e.g., "10 MB", "1 day")
        retention: Log retention period (e.g., "7 days", "1 month")
        events_file: Optional path for the JSON-lines retrieval event log.
            Written at INFO whatever ``level`` is, so a quiet console still
            records every retrieval.
    """
    logger.remove()

    logger.add(sys.stderr, format=_with_extra(CONSOLE_FORMAT), level=level, colorize=True)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_path,
            format=_with_extra(FILE_FORMAT),
            level=level,
            rotation=rotation,
            retention=retention,
            compression="zip",
            backtrace=True,
            diagnose=False,
        )

    if events_file:
        events_path = Path(events_file)
        events_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            events_path,
            level="INFO",
            filter=is_retrieval_event,
            serialize=True,
            rotation=rotation,
            retention=retention,
        )

    logger.debug(f"Logger initialized with level={level}, retrieval events={events_file or 'off'}")

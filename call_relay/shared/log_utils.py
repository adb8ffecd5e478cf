"""
MODULE OVERVIEW:
Loguru sink setup and the structured helpers shared by every component.

WHAT IS HAPPENING HERE:
The console sink mirrors what operators are used to reading:
`[12:01:02.345] INFO - message`. Each run also gets its own log file so a
single process lifetime can be handed over for troubleshooting.
"""
import sys
import time
from pathlib import Path
from loguru import logger

LOG_FORMAT = "[{time:HH:mm:ss.SSS}] <level>{level}</level> - {message}"

def configure_logging(level: str = "INFO", log_dir: str | None = "logs") -> Path | None:
    """
    Replace loguru's default sink with the relay's console (and optional file) sinks.
    Returns the path of the per-run log file, or None when file logging is off.
    """
    level = level.upper()
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT, colorize=True)

    if not log_dir:
        return None

    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    log_file = directory / f"call_{int(time.time() * 1000)}.log"
    logger.add(log_file, level=level, format=LOG_FORMAT, colorize=False)
    return log_file

def log_connection(event: str, extra: dict | None = None) -> None:
    """
    Single structured log entry for a connection lifecycle step.
    Writes `event=<event>` followed by any extra `key=value` fields.
    """
    log_str = f"event={event}"
    for k, v in (extra or {}).items():
        log_str += f" {k}={v}"
    logger.info(log_str)

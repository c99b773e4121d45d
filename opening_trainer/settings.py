"""Runtime settings with environment overrides.

Every setting has a module-level default that an OPENING_TRAINER_* variable
can override. Values are read once by ``load_settings()``.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parent.parent

DEFAULT_DATA_DIR = _PROJECT_ROOT / "data"
DEFAULT_REPLY_DELAY = 0.5
DEFAULT_FIRST_MOVE_DELAY = 0.3
DEFAULT_LOG_LEVEL = "WARNING"

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_LOGGER_NAME = "opening_trainer"


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    catalog_path: Path
    reply_delay: float = DEFAULT_REPLY_DELAY
    first_move_delay: float = DEFAULT_FIRST_MOVE_DELAY
    log_level: str = DEFAULT_LOG_LEVEL
    validate_responses: bool = False


def _read_delay(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        delay = float(value)
    except ValueError:
        logger.warning("Ignoring %s=%r: not a number", name, value)
        return default
    if delay < 0:
        logger.warning("Ignoring %s=%r: must not be negative", name, value)
        return default
    return delay


def load_settings() -> Settings:
    """Build Settings from defaults and OPENING_TRAINER_* variables."""
    data_dir = Path(os.getenv("OPENING_TRAINER_DATA_DIR") or DEFAULT_DATA_DIR)
    catalog = os.getenv("OPENING_TRAINER_CATALOG")
    return Settings(
        data_dir=data_dir,
        catalog_path=Path(catalog) if catalog else data_dir / "openings.json",
        reply_delay=_read_delay("OPENING_TRAINER_REPLY_DELAY", DEFAULT_REPLY_DELAY),
        first_move_delay=_read_delay(
            "OPENING_TRAINER_FIRST_MOVE_DELAY", DEFAULT_FIRST_MOVE_DELAY
        ),
        log_level=(os.getenv("OPENING_TRAINER_LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper(),
        validate_responses=os.getenv("OPENING_TRAINER_VALIDATE") == "1",
    )


def configure_logging(level: str | int = DEFAULT_LOG_LEVEL) -> logging.Logger:
    """Attach one stderr handler to the package logger and set its level.

    Logs go to stderr so stdout stays free for JSON output and the MCP
    stdio transport. Calling this again only changes the level.
    """
    package_logger = logging.getLogger(_LOGGER_NAME)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.WARNING
    package_logger.setLevel(level)
    if not package_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        package_logger.addHandler(handler)
    return package_logger

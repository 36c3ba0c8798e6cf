"""Logging from config and env.

Levels (inclusive):
- ERROR: protocol failures (remote create/comment, failed rollbacks)
- WARNING: non-fatal issues (corrupt cache entries, unsaved credentials or links)
- INFO: remote calls and protocol progress
- DEBUG: cache hits/misses and everything above

Configure via ~/.jigit.yaml (logging.level, logging.format), env
(LOGGING_LEVEL, LOGGING_FORMAT) or the --verbose flag.
"""

import logging

from jigit.config import LoggingConfig

# Supported levels only (DEBUG, INFO, WARNING, ERROR)
LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}

DEFAULT_LEVEL = "WARNING"
DEFAULT_FORMAT = "%(levelname)s %(name)s: %(message)s"


def _resolve_level(level: str) -> int:
    """Map level name to logging constant.

    Falls back to DEFAULT_LEVEL if unknown.
    """
    return LEVELS.get(level.upper().strip(), LEVELS[DEFAULT_LEVEL])


class JigitLogging:
    """Configures root logger from LoggingConfig (YAML + env LOGGING_*)."""

    def __init__(self, config: LoggingConfig, verbose: bool = False) -> None:
        """Store logging config; verbose forces DEBUG."""
        self._level = logging.DEBUG if verbose else _resolve_level(config.level)
        self._format = config.format or DEFAULT_FORMAT

    def setup(self) -> None:
        """Apply level and format to the root logger."""
        logging.basicConfig(
            level=self._level,
            format=self._format,
            force=True,
        )

    def get_logger(self, name: str) -> logging.Logger:
        """Return a logger with the given name (uses root config)."""
        return logging.getLogger(name)

import logging
import sys
from typing import Optional

import structlog

LOGGER_NAME = "bytestep"

VERBOSITY_LEVELS = {
    -1: logging.ERROR,
    0: logging.WARNING,
    1: logging.INFO,
    2: logging.DEBUG,
}


def level_for(verbosity: int) -> int:
    """Map -q / -v / -vv to a logging level."""
    verbosity = max(-1, min(verbosity, 2))
    return VERBOSITY_LEVELS[verbosity]


def configure_logging(verbosity: int = 0, handler: Optional[logging.Handler] = None) -> logging.Logger:
    """
    Route structlog through the stdlib `bytestep` logger.

    Records go to stderr unless another handler is given (the live UI passes
    one that buffers them for its log panel).
    """
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level_for(verbosity))
    logger.propagate = False
    for existing in list(logger.handlers):
        logger.removeHandler(existing)

    if handler is None:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    return logger


def get_logger(name: str = LOGGER_NAME):
    return structlog.get_logger(name)

import logging
import sys

import structlog


def stderr_logger(*args) -> structlog.PrintLogger:
    # Resolved per logger so a swapped sys.stderr (e.g. under a test runner) is honoured.
    return structlog.PrintLogger(sys.stderr)


def configure_logging(level: str = "warning", json_output: bool = False) -> None:
    """Route structlog to stderr so stdout stays clean for results."""
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level.upper())),
        logger_factory=stderr_logger,
        cache_logger_on_first_use=False,
    )

"""structlog setup for applications embedding the engine."""

import sys

import structlog


def configure_logging(cache_logger_on_first_use: bool = True) -> None:
    """Route structlog output to stderr with ISO timestamps.

    Args:
        cache_logger_on_first_use: Passed through to structlog. Tests disable
            it so they can reconfigure between cases.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=lambda *args: structlog.PrintLogger(file=sys.stderr),
        wrapper_class=structlog.BoundLogger,
        context_class=dict,
        cache_logger_on_first_use=cache_logger_on_first_use,
    )

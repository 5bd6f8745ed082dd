"""Structured logging for ctxvault using structlog."""

import logging
import os

import structlog
from structlog.types import FilteringBoundLogger


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes", "on")


# Configure structlog based on environment
def configure_structlog(
    log_format: str | None = None,
    log_colors: bool | None = None,
    log_level: str | None = None,
):
    """Configure structlog with pretty or JSON output.

    Explicit arguments win over CTXVAULT_LOG_FORMAT / CTXVAULT_LOG_COLORS /
    CTXVAULT_LOG_LEVEL. stdlib logging is routed through structlog so that
    library records share the same renderer.
    """
    if log_format is None:
        log_format = os.getenv("CTXVAULT_LOG_FORMAT", "pretty")
    if log_colors is None:
        log_colors = _env_flag("CTXVAULT_LOG_COLORS", "true")
    if log_level is None:
        log_level = os.getenv("CTXVAULT_LOG_LEVEL", "WARNING")

    # Choose renderer for final output
    if log_format.lower() == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=log_colors)

    # Root logger + handler with ProcessorFormatter; stdout is reserved for command output
    logging.root.handlers = []
    handler = logging.StreamHandler()
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=[
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
            ],
        )
    )
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, log_level.upper(), logging.WARNING))

    logging.captureWarnings(True)

    # structlog pipeline; wrap_for_formatter hands off to ProcessorFormatter above
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Configure structlog on module import
configure_structlog()


def get_logger(name: str) -> FilteringBoundLogger:
    """Get a configured structlog logger.

    Levels are controlled on the root logger so that the CLI flags apply to
    every module logger at once.
    """
    return structlog.get_logger(name)


# Global logger instances
logger = get_logger("ctxvault")
storage_logger = get_logger("ctxvault.storage")
cli_logger = get_logger("ctxvault.cli")

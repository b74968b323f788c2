import logging
import sys

import structlog

LOG_FORMATS = ("console", "json")


def _renderer(log_format: "str") -> "structlog.typing.Processor":
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def setup_logging(level: "str", log_format: "str" = "console") -> "None":
    """
    configures structlog on top of stdlib logging. Log lines go
    to stderr; stdout carries only the command's report.
    """
    if log_format not in LOG_FORMATS:
        raise ValueError(f"unknown log format: {log_format}")

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.WARNING),
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            _renderer(log_format),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

# src/citrace/logging.py
"""Structured logging for citrace inside a host test runner.

citrace runs inside somebody else's test process, so it never touches the
root logger: the test runner owns it (and pytest's log capture hangs off
it). ``configure_logging`` attaches one handler to the ``citrace`` logger
tree and to ddtrace's, routing stdlib records and structlog events through
the same ``ProcessorFormatter`` chain.

Hosts call it once, before patching. ``create_integration_manager`` does so
when ``TracingSettings.log_level`` is set.
"""

import logging
import sys
from typing import Any, TextIO

import structlog
from structlog.stdlib import ProcessorFormatter

# Logger trees that receive the citrace handler
_OWNED_LOGGERS: tuple[str, ...] = ("citrace", "ddtrace")

# Never more verbose than WARNING, even when citrace logs at DEBUG
_QUIET_LOGGERS: tuple[str, ...] = ("ddtrace.internal", "urllib3")


def _drop_formatter_bookkeeping(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Remove the ``_record`` / ``_from_structlog`` keys ProcessorFormatter adds."""
    del event_dict["_record"]
    del event_dict["_from_structlog"]
    return event_dict


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
    stream: TextIO | None = None,
) -> logging.Handler:
    """Configure structlog and citrace's stdlib loggers.

    Calling it again replaces the handler installed by the previous call.

    Args:
        json_output: If True, one JSON object per line; otherwise console format
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        stream: Output stream. Defaults to stderr, since test runners report on stdout.

    Returns:
        The installed handler
    """
    log_level = getattr(logging, level.upper())

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
    ]
    if json_output:
        final_processors: list[Any] = [
            _drop_formatter_bookkeeping,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        final_processors = [_drop_formatter_bookkeeping, structlog.dev.ConsoleRenderer(colors=False)]

    structlog.configure(
        processors=[*shared_processors, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(
        ProcessorFormatter(
            processors=final_processors,
            foreign_pre_chain=shared_processors,
        )
    )
    handler.set_name("citrace")

    for name in _OWNED_LOGGERS:
        owned = logging.getLogger(name)
        owned.handlers = [h for h in owned.handlers if h.get_name() != "citrace"]
        owned.addHandler(handler)
        owned.setLevel(log_level)
        # Records stop here, so the runner's own handlers never print them twice
        owned.propagate = False

    quiet_level = max(log_level, logging.WARNING)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    return handler

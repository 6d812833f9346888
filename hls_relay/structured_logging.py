"""
Structured logging configuration using structlog.

structlog events are routed through the standard ``logging`` module so that
gunicorn's and werkzeug's own log records share one handler and format.

Usage in code:
    import structlog
    log = structlog.get_logger(__name__)
    log.info("upstream_retry", label="M3U8", attempt=2)
"""

import logging
import sys

import structlog

_SENSITIVE = ("token", "signature", "secret", "key", "authorization")

_HANDLER_NAME = "hls_relay"


def _add_request_context(logger, method_name, event_dict):
    """Add Flask request context to log events."""
    from flask import has_request_context, request

    if has_request_context():
        event_dict.setdefault("method", request.method)
        event_dict.setdefault("path", request.path)
    return event_dict


def _censor_sensitive_data(logger, method_name, event_dict):
    """Redact values whose key looks like a credential."""
    for key in list(event_dict.keys()):
        if key == "event":
            continue
        if any(sens in key.lower() for sens in _SENSITIVE):
            event_dict[key] = "***REDACTED***"
    return event_dict


def get_log_level(name: str) -> int:
    return getattr(logging, (name or "INFO").upper(), logging.INFO)


def configure_component_loggers(base_level: int) -> None:
    # urllib3 and requests log every connection at DEBUG
    logging.getLogger("urllib3").setLevel(max(base_level, logging.WARNING))
    logging.getLogger("requests").setLevel(max(base_level, logging.WARNING))
    logging.getLogger("werkzeug").setLevel(
        logging.DEBUG if base_level <= logging.DEBUG else logging.WARNING
    )


def configure_logging(level: str = "INFO", fmt: str = "console") -> None:
    """
    Configure stdlib logging and structlog.

    ``fmt`` is "console" for human-readable lines or "json" for one JSON
    object per line. Safe to call more than once; the last call wins.
    """
    base_level = get_log_level(level)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_request_context,
        _censor_sensitive_data,
    ]

    if fmt == "json":
        renderers = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta]
        + renderers,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler.set_name(_HANDLER_NAME)

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(base_level)

    configure_component_loggers(base_level)

    structlog.configure(
        processors=shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

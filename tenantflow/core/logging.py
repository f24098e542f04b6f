"""structlog setup shared by the API process and the onboarding workflow.

Every entry is rendered by one stdlib handler (JSON in production, console in
debug), so uvicorn, SQLAlchemy and botocore records look like our own. Two
processors are specific to this service:

- ``add_correlation_id`` tags entries with the X-Request-ID of the request
- ``redact_secrets`` masks verification tokens, passwords and bearer
  headers, which pass through the onboarding code paths
"""

import logging
import logging.config

import structlog
from asgi_correlation_id.context import correlation_id

REDACTED_KEYS = frozenset({"token", "verification_token", "password", "password_hash", "authorization"})

# Third-party loggers that are only useful at WARNING and above
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "botocore", "stripe")


def add_correlation_id(logger, method, event_dict):
    cid = correlation_id.get(None)
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


def redact_secrets(logger, method, event_dict):
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = "[redacted]"
    return event_dict


def onboarding_log_context(onboarding_id):
    """Context manager: every entry logged inside it carries ``onboarding_id``."""
    return structlog.contextvars.bound_contextvars(onboarding_id=str(onboarding_id))


def configure_structlog(log_level: str = "INFO", json_logs: bool = True) -> None:
    """Install the processor chain and the stdlib bridge.

    Must run before other tenantflow modules log anything: loggers are
    cached on first use.
    """
    renderer = (
        [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
        if json_logs
        else [structlog.dev.ConsoleRenderer()]
    )
    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_correlation_id,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "tenantflow": {
                "()": structlog.stdlib.ProcessorFormatter,
                "foreign_pre_chain": pre_chain,
                "processors": [structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderer],
            },
        },
        "handlers": {
            "stdout": {"class": "logging.StreamHandler", "formatter": "tenantflow", "stream": "ext://sys.stdout"},
        },
        "root": {"handlers": ["stdout"], "level": log_level},
        "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
    })

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

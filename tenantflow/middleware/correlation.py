"""Request correlation ids.

Each request gets an X-Request-ID (the client's own value is kept when sent).
The id is echoed on the response, attached to every structlog entry by
``tenantflow.core.logging.add_correlation_id`` and returned alongside
``debug_id`` in error bodies, so a failed onboarding call can be traced from
the client to the log line.
"""

import uuid

from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id
from fastapi import FastAPI

REQUEST_ID_HEADER = "X-Request-ID"


def setup_correlation_middleware(app: FastAPI) -> None:
    app.add_middleware(
        CorrelationIdMiddleware,
        header_name=REQUEST_ID_HEADER,
        update_request_header=True,
        generator=lambda: uuid.uuid4().hex,
        validator=None,  # upstream proxies use their own formats
    )


def get_correlation_id() -> str | None:
    return correlation_id.get(None)

"""Bearer-token guard for internal job endpoints.

Paths under ``/internal/`` are called by the scheduler, never by clients.
A request without the configured ``INTERNAL_JOB_TOKEN`` gets 404, the same
response as a path that does not exist. With no token configured every
internal path is unreachable.
"""

import hmac
import logging

from fastapi import Request
from fastapi.responses import JSONResponse, Response

logger = logging.getLogger(__name__)

INTERNAL_PATH_PREFIX = "/internal/"


def get_expected_token(request: Request) -> str:
    """Return the configured internal token; empty string means disabled."""
    config = getattr(request.app.state, "config", None)
    if config is None:
        return ""
    return config.internal_job_token.strip()


def extract_bearer_token(authorization: str | None) -> str:
    """Token from an ``Authorization: Bearer <token>`` header, or ''."""
    if not authorization:
        return ""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


def should_guard(path: str) -> bool:
    """Return True when this path requires the internal token."""
    return path.startswith(INTERNAL_PATH_PREFIX)


async def require_internal_token(request: Request, call_next) -> Response:
    """FastAPI middleware entrypoint for the internal token guard."""
    if not should_guard(request.url.path):
        return await call_next(request)

    expected = get_expected_token(request)
    provided = extract_bearer_token(request.headers.get("Authorization"))
    if not expected or not provided or not hmac.compare_digest(
        provided.encode(), expected.encode()
    ):
        logger.warning("Rejected internal request to %s", request.url.path)
        return JSONResponse(status_code=404, content={"detail": "Not Found"})
    return await call_next(request)

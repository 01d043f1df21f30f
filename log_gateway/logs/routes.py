"""
Log Proxy Routes
================

Authenticated-context proxy from the browser to the log store.

The query (group, stream, limit, direction) is chosen by the server from
configuration, never from the request. Authentication status is computed
for every call; it is only enforced when LOGS_REQUIRE_AUTH is set.

Endpoints:
----------
- GET /api/logs: One page of events from the configured log stream
"""

import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from ..auth.dependencies import get_auth_status
from ..models import AuthStatus, LogErrorResponse, LogPage, LogQuery, utc_timestamp
from .store import LogStore, LogStoreError

logger = logging.getLogger(__name__)

logs_router = APIRouter(prefix="/api", tags=["logs"])


# ============================================================================
# Dependencies
# ============================================================================

def get_log_store(request: Request) -> LogStore:
    """Dependency to get the log store from app state."""
    return request.app.state.app_state.log_store


# ============================================================================
# Endpoints
# ============================================================================

@logs_router.get("/logs", response_model=LogPage)
async def get_logs(
    request: Request,
    auth: AuthStatus = Depends(get_auth_status),
    log_store: LogStore = Depends(get_log_store),
):
    """
    Return one page of log events.

    Provider failures become a 500 envelope with the provider's error code
    and request ids; no stack traces or internal state are returned.
    """
    settings = request.app.state.app_state.settings
    logger.info(
        f"Received request for logs at: {utc_timestamp()}",
        extra={"authenticated": auth.authenticated},
    )

    if settings.LOGS_REQUIRE_AUTH and not auth.authenticated:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "Unauthorized", "timestamp": utc_timestamp()},
        )

    query = LogQuery.from_settings(settings)

    try:
        return await log_store.fetch_page(query)
    except LogStoreError as e:
        logger.error(
            f"Error fetching logs: {e.message}",
            extra={"code": e.code, "request_id": e.request_id},
        )
        envelope = LogErrorResponse(error=e.message, details=e.details)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=envelope.model_dump(exclude_none=True),
        )

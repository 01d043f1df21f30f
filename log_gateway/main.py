"""
FastAPI Gateway Application Factory
===================================

Entry point for the authentication gateway that sits between browsers,
the OIDC identity provider and the CloudWatch log store.

Architecture:
    Browser → Gateway (this service) → Identity Provider / CloudWatch Logs

Routes:
    - /             : Landing page with authentication status
    - /login        : Start the OIDC authorization code flow
    - /callback     : Complete the OIDC flow
    - /logout       : End the session at the gateway and the provider
    - /api/logs     : One page of log events
    - /health       : Liveness and OIDC readiness

Running the Service:
    Development:
        uvicorn log_gateway.main:create_app --factory --reload --port 3001

    Production:
        uvicorn log_gateway.main:create_app --factory --host 0.0.0.0 --port 3001 --workers 1

    The in-memory session store is per process, so run a single worker
    unless a shared SessionStore is configured.
"""

import html
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import HTMLResponse, JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth.dependencies import OIDCClientHolder, ServiceNotReadyError, get_auth_status
from .auth.oidc import OIDCClient
from .auth.routes import LOGIN_FAILED_ERROR, auth_router
from .auth.session import InMemorySessionStore, ServerSessionMiddleware, SessionStore
from .config import Settings, get_settings
from .logs.routes import logs_router
from .logs.store import LogStore
from .models import AuthStatus, ErrorResponse, HealthResponse

logger = logging.getLogger("log_gateway.main")

SERVICE_VERSION = "1.0.0"


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)],
    )


class AppState:
    """
    Per-application state container.

    Holds the settings and the shared collaborators routes depend on.
    """

    def __init__(
        self,
        settings: Settings,
        oidc: OIDCClientHolder,
        session_store: SessionStore,
        log_store: LogStore,
    ):
        self.settings = settings
        self.oidc = oidc
        self.session_store = session_store
        self.log_store = log_store


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup tasks:
        - Configure logging
        - Discover the identity provider and build the OIDC client.
          Failure is fatal: the exception propagates and the server
          does not start.
        - Start the session cleanup task

    Shutdown tasks:
        - Stop the session cleanup task
    """
    app_state: AppState = app.state.app_state
    settings = app_state.settings

    setup_logging(settings.LOG_LEVEL)
    logger.info(
        "Starting log gateway",
        extra={"issuer": settings.OIDC_ISSUER_URL, "log_level": settings.LOG_LEVEL},
    )

    if not app_state.oidc.is_ready():
        try:
            client = await OIDCClient.discover(settings)
        except Exception:
            logger.critical("Failed to initialize OIDC client", exc_info=True)
            raise
        app_state.oidc.set(client)
        logger.info("OIDC Client initialized successfully")

    if isinstance(app_state.session_store, InMemorySessionStore):
        await app_state.session_store.start_cleanup()

    yield

    logger.info("Shutting down log gateway")
    if isinstance(app_state.session_store, InMemorySessionStore):
        await app_state.session_store.stop()


def _render_landing_page(auth: AuthStatus, login_failed: bool) -> str:
    if auth.authenticated and auth.profile is not None:
        status_html = (
            f"<p class=\"status\">Signed in as <strong>{html.escape(auth.profile.display_name)}</strong></p>"
            f"<p class=\"subject\">Subject: {html.escape(auth.profile.sub)}</p>"
            "<a href=\"/api/logs\">View logs</a> | <a href=\"/logout\">Log out</a>"
        )
    else:
        status_html = (
            "<p class=\"status\">You are not signed in.</p>"
            "<a href=\"/login\">Log in</a>"
        )

    error_html = (
        "<p class=\"error\">Authentication failed. Please try again.</p>" if login_failed else ""
    )

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>Log Gateway</title>
</head>
<body data-authenticated="{str(auth.authenticated).lower()}">
    <h1>Log Gateway</h1>
    {error_html}
    {status_html}
</body>
</html>
"""


# Create FastAPI application
def create_app(
    settings: Optional[Settings] = None,
    oidc_client: Optional[OIDCClient] = None,
    session_store: Optional[SessionStore] = None,
    log_store: Optional[LogStore] = None,
) -> FastAPI:
    """
    Application factory function.

    Collaborators not passed in are built from settings. Passing an
    oidc_client skips provider discovery at startup.

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Log Gateway",
        description="OIDC login gateway in front of the CloudWatch log API",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )

    if session_store is None:
        session_store = InMemorySessionStore(max_age_seconds=settings.SESSION_MAX_AGE_SECONDS)
    if log_store is None:
        log_store = LogStore.from_settings(settings)

    app.state.app_state = AppState(
        settings=settings,
        oidc=OIDCClientHolder(oidc_client),
        session_store=session_store,
        log_store=log_store,
    )

    app.add_middleware(
        ServerSessionMiddleware,
        store=session_store,
        secret_key=settings.SESSION_SECRET,
        cookie_name=settings.SESSION_COOKIE_NAME,
        max_age=settings.SESSION_MAX_AGE_SECONDS,
        https_only=settings.SESSION_COOKIE_SECURE,
    )

    app.include_router(auth_router)
    app.include_router(logs_router)

    # Landing page
    @app.get("/", response_class=HTMLResponse, tags=["System"])
    async def home(request: Request, auth: AuthStatus = Depends(get_auth_status)) -> HTMLResponse:
        login_failed = request.query_params.get("error") == LOGIN_FAILED_ERROR
        return HTMLResponse(_render_landing_page(auth, login_failed))

    # Health check endpoint
    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check(request: Request) -> HealthResponse:
        """
        Health check endpoint.

        Reports liveness and whether the OIDC client is ready.
        """
        return HealthResponse(oidcClientReady=request.app.state.app_state.oidc.is_ready())

    @app.exception_handler(ServiceNotReadyError)
    async def not_ready_handler(request: Request, exc: ServiceNotReadyError) -> JSONResponse:
        error = ErrorResponse(error=exc.message)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=error.model_dump(exclude_none=True),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """
        Render HTTP errors as JSON envelopes.

        A path that exists but not for this method is still an unmatched
        route, so 405 is answered with the same 404 envelope.
        """
        if exc.status_code in (status.HTTP_404_NOT_FOUND, status.HTTP_405_METHOD_NOT_ALLOWED):
            error = ErrorResponse(error="Not Found", path=request.url.path)
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content=error.model_dump(exclude_none=True),
            )

        error = ErrorResponse(error=str(exc.detail), path=request.url.path)
        return JSONResponse(
            status_code=exc.status_code,
            content=error.model_dump(exclude_none=True),
            headers=getattr(exc, "headers", None),
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.
        """
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__,
            },
            exc_info=True,
        )

        error = ErrorResponse(
            error="Internal Server Error",
            message=str(exc) if settings.LOG_LEVEL == "DEBUG" else "An unexpected error occurred",
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error.model_dump(exclude_none=True),
        )

    return app


if __name__ == "__main__":
    settings = get_settings()

    uvicorn.run(
        "log_gateway.main:create_app",
        factory=True,
        host=settings.GATEWAY_HOST,
        port=settings.GATEWAY_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )

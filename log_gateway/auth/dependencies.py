"""
Request gates shared by the gateway routes.

- Readiness gate: routes that need the OIDC client fail fast with 503
  until startup has built it.
- Auth gate: computes whether the session carries an identity. It never
  enforces anything; each route decides what to do with the status.
"""

import logging
from typing import Optional

from fastapi import Request

from ..models import AuthStatus
from .oidc import OIDCClient
from .session import load_session

logger = logging.getLogger(__name__)

NOT_READY_MESSAGE = "Authentication service not ready"


class ServiceNotReadyError(Exception):
    """A dependency needed by the route has not been initialized yet"""

    def __init__(self, message: str = NOT_READY_MESSAGE):
        super().__init__(message)
        self.message = message


class OIDCClientHolder:
    """
    Holds the process-wide OIDC client once startup has built it.

    Set exactly once; readers only ever see "not ready" or the finished
    client.
    """

    def __init__(self, client: Optional[OIDCClient] = None):
        self._client = client

    def is_ready(self) -> bool:
        return self._client is not None

    def set(self, client: OIDCClient) -> None:
        if self._client is not None:
            raise RuntimeError("OIDC client is already initialized")
        self._client = client

    def get(self) -> OIDCClient:
        if self._client is None:
            raise ServiceNotReadyError()
        return self._client


def require_oidc_client(request: Request) -> OIDCClient:
    """
    FastAPI dependency returning the OIDC client.

    Raises:
        ServiceNotReadyError: If the client has not been initialized
    """
    holder: OIDCClientHolder = request.app.state.app_state.oidc
    if not holder.is_ready():
        logger.warning("Rejected request before OIDC client was ready", extra={"path": request.url.path})
        raise ServiceNotReadyError()
    return holder.get()


def get_auth_status(request: Request) -> AuthStatus:
    """FastAPI dependency computing the caller's authentication status."""
    record = load_session(request)
    return AuthStatus(authenticated=record.authenticated, profile=record.user_profile)

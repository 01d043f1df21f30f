"""
Server-Side Session Management Module
======================================

Keeps per-browser session data on the server and hands the browser only a
signed, opaque session id.

- SessionStore: persistence protocol (create/load/save/destroy)
- InMemorySessionStore: single-process store with absolute expiry
- ServerSessionMiddleware: resolves the cookie and exposes request.session
- load_session / store_session: typed SessionRecord access for routes
"""

import asyncio
import copy
import logging
import secrets
import time
from typing import Any, Callable, Dict, Optional, Protocol

from fastapi import Request
from itsdangerous import BadSignature, TimestampSigner
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from ..models import SessionRecord

logger = logging.getLogger(__name__)


# =============================================================================
# Storage
# =============================================================================

class SessionStore(Protocol):
    """Protocol defining the interface for session storage backends."""

    async def create(self, data: Dict[str, Any]) -> str:
        """Store a new session and return its id."""
        ...

    async def load(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Return session data, or None if unknown or expired."""
        ...

    async def save(self, session_id: str, data: Dict[str, Any]) -> None:
        """Replace session data without extending its lifetime."""
        ...

    async def destroy(self, session_id: str) -> None:
        """Remove a session."""
        ...


class InMemorySessionStore:
    """
    In-memory session storage with absolute expiration.

    Each entry expires max_age_seconds after creation, regardless of
    activity. Sessions are partitioned by id and every operation completes
    without awaiting, so no lock is needed.

    WARNING: sessions are lost on restart and not shared between workers.
    """

    def __init__(
        self,
        max_age_seconds: int,
        cleanup_interval: int = 300,
        clock: Callable[[], float] = time.time,
    ):
        self.max_age_seconds = max_age_seconds
        self._clock = clock
        self._store: Dict[str, Dict[str, Any]] = {}
        self._cleanup_interval = cleanup_interval
        self._cleanup_task: Optional[asyncio.Task] = None

    async def create(self, data: Dict[str, Any]) -> str:
        session_id = secrets.token_urlsafe(32)
        self._store[session_id] = {
            "data": copy.deepcopy(data),
            "expires_at": self._clock() + self.max_age_seconds,
        }
        return session_id

    async def load(self, session_id: str) -> Optional[Dict[str, Any]]:
        entry = self._store.get(session_id)
        if entry is None:
            return None
        if entry["expires_at"] <= self._clock():
            self._store.pop(session_id, None)
            return None
        return copy.deepcopy(entry["data"])

    async def save(self, session_id: str, data: Dict[str, Any]) -> None:
        entry = self._store.get(session_id)
        if entry is None:
            return
        entry["data"] = copy.deepcopy(data)

    async def destroy(self, session_id: str) -> None:
        self._store.pop(session_id, None)

    def purge_expired(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._store.items() if entry["expires_at"] <= now]
        for key in expired:
            self._store.pop(key, None)
        return len(expired)

    async def start_cleanup(self) -> None:
        """Start background cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info("Session cleanup task started")

    async def stop(self) -> None:
        """Stop background cleanup task."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
            logger.info("Session cleanup task stopped")

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            removed = self.purge_expired()
            if removed:
                logger.debug(f"Cleaned {removed} expired sessions")


# =============================================================================
# Middleware
# =============================================================================

class ServerSessionMiddleware(BaseHTTPMiddleware):
    """
    Resolve the signed session cookie and expose the stored data as
    request.session for the duration of the request.

    After the response is produced, non-empty sessions are persisted and a
    cookie is issued for new ones. A session that was emptied, or marked
    destroyed by the logout route, has its cookie expired.
    """

    def __init__(
        self,
        app: ASGIApp,
        store: SessionStore,
        secret_key: str,
        cookie_name: str = "gateway_session",
        max_age: int = 24 * 60 * 60,
        https_only: bool = True,
        same_site: str = "lax",
    ):
        super().__init__(app)
        self.store = store
        self.signer = TimestampSigner(secret_key)
        self.cookie_name = cookie_name
        self.max_age = max_age
        self.https_only = https_only
        self.same_site = same_site

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        session_id = self._unsign(request.cookies.get(self.cookie_name))
        data: Dict[str, Any] = {}

        if session_id is not None:
            stored = await self.store.load(session_id)
            if stored is None:
                session_id = None
            else:
                data = stored

        request.scope["session"] = data
        request.state.session_id = session_id
        request.state.session_destroyed = False

        response = await call_next(request)

        data = request.scope["session"]
        if request.state.session_destroyed:
            self._expire_cookie(response)
        elif data:
            if session_id is None:
                session_id = await self.store.create(data)
                self._set_cookie(response, session_id)
            else:
                await self.store.save(session_id, data)
        elif session_id is not None:
            await self.store.destroy(session_id)
            self._expire_cookie(response)

        return response

    def _unsign(self, cookie: Optional[str]) -> Optional[str]:
        if not cookie:
            return None
        try:
            return self.signer.unsign(cookie, max_age=self.max_age).decode("utf-8")
        except BadSignature:
            logger.debug("Rejected session cookie with bad or expired signature")
            return None

    def _set_cookie(self, response: Response, session_id: str) -> None:
        response.set_cookie(
            self.cookie_name,
            self.signer.sign(session_id).decode("utf-8"),
            max_age=self.max_age,
            httponly=True,
            secure=self.https_only,
            samesite=self.same_site,
            path="/",
        )

    def _expire_cookie(self, response: Response) -> None:
        response.delete_cookie(
            self.cookie_name,
            httponly=True,
            secure=self.https_only,
            samesite=self.same_site,
            path="/",
        )


# =============================================================================
# Typed Session Access
# =============================================================================

def load_session(request: Request) -> SessionRecord:
    """Read the current session as a SessionRecord."""
    return SessionRecord.model_validate(request.session)


def store_session(request: Request, record: SessionRecord) -> None:
    """Replace the current session contents with the record."""
    request.session.clear()
    request.session.update(record.to_session())


async def destroy_session(request: Request, store: SessionStore) -> None:
    """
    Clear the session for this request and delete it from the store.

    The cookie is expired by the middleware even if the store raises.

    Raises:
        Exception: Whatever the store raised while deleting
    """
    request.session.clear()
    request.state.session_destroyed = True

    session_id = getattr(request.state, "session_id", None)
    if session_id is not None:
        await store.destroy(session_id)


__all__ = [
    "SessionStore",
    "InMemorySessionStore",
    "ServerSessionMiddleware",
    "load_session",
    "store_session",
    "destroy_session",
]

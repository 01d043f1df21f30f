"""
Data Models Module

This module defines Pydantic models for session state, identity data and
the JSON envelopes returned by the gateway.

Models are organized by functional area:
- Identity models (user profile, token set)
- Session models (the typed per-cookie session record)
- Log models (log query, log page, error envelope)
- Front door models (health, generic errors)
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


def utc_timestamp() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ============================================================================
# Identity Models
# ============================================================================

class UserProfile(BaseModel):
    """Claims returned by the provider's userinfo endpoint."""

    model_config = ConfigDict(extra="allow")

    sub: str = Field(..., description="Subject identifier at the provider")
    email: Optional[str] = Field(None, description="User email address")

    @property
    def display_name(self) -> str:
        return self.email or self.sub


class TokenSet(BaseModel):
    """Tokens issued by the provider after the authorization code exchange."""

    access_token: str = Field(..., description="Bearer token for the userinfo endpoint")
    id_token: Optional[str] = Field(None, description="Signed identity token")
    refresh_token: Optional[str] = Field(None, description="Refresh token, stored but never used")
    token_type: Optional[str] = Field(None, description="Token type, normally Bearer")
    expires_in: Optional[int] = Field(None, description="Access token lifetime in seconds")


# ============================================================================
# Session Models
# ============================================================================

class SessionRecord(BaseModel):
    """
    Server-side session contents for one browser.

    pending_state/pending_nonce only exist between /login and the matching
    /callback. user_profile/token_set only exist after a successful callback.
    """

    pending_state: Optional[str] = None
    pending_nonce: Optional[str] = None
    user_profile: Optional[UserProfile] = None
    token_set: Optional[TokenSet] = None

    @property
    def authenticated(self) -> bool:
        return self.user_profile is not None

    def begin_login(self, state: str, nonce: str) -> None:
        """Anonymous -> AwaitingCallback. Overwrites any earlier pending pair."""
        self.pending_state = state
        self.pending_nonce = nonce

    def consume_pending(self) -> Tuple[Optional[str], Optional[str]]:
        """Remove and return the pending (state, nonce) pair."""
        state, nonce = self.pending_state, self.pending_nonce
        self.pending_state = None
        self.pending_nonce = None
        return state, nonce

    def authenticate(self, profile: UserProfile, tokens: TokenSet) -> None:
        """AwaitingCallback -> Authenticated."""
        self.pending_state = None
        self.pending_nonce = None
        self.user_profile = profile
        self.token_set = tokens

    def clear_identity(self) -> None:
        self.user_profile = None
        self.token_set = None

    def to_session(self) -> Dict[str, Any]:
        """Serialise for the session store, dropping unset fields."""
        return self.model_dump(exclude_none=True)


class AuthStatus(BaseModel):
    """Per-request authentication status computed from the session."""

    authenticated: bool = False
    profile: Optional[UserProfile] = None


# ============================================================================
# Log Models
# ============================================================================

class LogQuery(BaseModel):
    """Server-chosen query against the log store."""

    log_group_name: str
    log_stream_name: str
    limit: int = Field(100, ge=1, le=10000)
    start_from_head: bool = True

    @classmethod
    def from_settings(cls, settings) -> "LogQuery":
        return cls(
            log_group_name=settings.LOG_GROUP_NAME,
            log_stream_name=settings.LOG_STREAM_NAME,
            limit=settings.LOG_EVENTS_LIMIT,
            start_from_head=settings.LOG_START_FROM_HEAD,
        )

    def to_request_params(self) -> Dict[str, Any]:
        """Keyword arguments for CloudWatch Logs GetLogEvents."""
        return {
            "logGroupName": self.log_group_name,
            "logStreamName": self.log_stream_name,
            "limit": self.limit,
            "startFromHead": self.start_from_head,
        }


class LogPage(BaseModel):
    """One page of log events, passed through from the store."""

    timestamp: str = Field(default_factory=utc_timestamp)
    events: List[Dict[str, Any]] = Field(default_factory=list)
    nextForwardToken: Optional[str] = None
    nextBackwardToken: Optional[str] = None


class LogErrorDetails(BaseModel):
    """Sanitized provider metadata attached to a log store failure."""

    code: Optional[str] = None
    requestId: Optional[str] = None
    cfId: Optional[str] = None


class LogErrorResponse(BaseModel):
    error: str
    timestamp: str = Field(default_factory=utc_timestamp)
    details: LogErrorDetails = Field(default_factory=LogErrorDetails)


# ============================================================================
# Front Door Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response model."""

    status: str = Field("healthy", description="Service health status")
    timestamp: str = Field(default_factory=utc_timestamp, description="Check timestamp")
    oidcClientReady: bool = Field(..., description="Whether the OIDC client has been initialized")


class ErrorResponse(BaseModel):
    """Standardized error response model."""

    error: str = Field(..., description="Error type")
    message: Optional[str] = Field(None, description="Human-readable error message")
    path: Optional[str] = Field(None, description="Request path, for not-found errors")
    timestamp: str = Field(default_factory=utc_timestamp, description="Error timestamp")

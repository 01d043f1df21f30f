"""
OpenID Connect client for the identity provider.

This module handles:
- Discovering provider metadata (openid-configuration)
- Building authorization and logout URLs
- Exchanging authorization codes for tokens
- Fetching and caching the provider JWKS and verifying ID tokens
- Fetching the user profile from the userinfo endpoint
"""

import logging
import secrets
import time
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import quote, urlencode

import httpx
from fastapi import Request
from jose import JOSEError, jwt
from pydantic import BaseModel, ConfigDict, ValidationError

from ..config import Settings
from ..models import TokenSet, UserProfile

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================

class OIDCError(Exception):
    """Base exception for identity provider errors"""
    pass


class DiscoveryError(OIDCError):
    """Provider metadata could not be fetched or is unusable"""
    pass


class AuthorizationError(OIDCError):
    """The provider redirected back with an error instead of a code"""
    pass


class StateMismatchError(OIDCError):
    """Callback state does not match the state stored at login"""
    pass


class TokenExchangeError(OIDCError):
    """The token endpoint rejected the authorization code"""
    pass


class IDTokenValidationError(OIDCError):
    """ID token signature, claims or nonce are invalid"""
    pass


class UserInfoError(OIDCError):
    """The userinfo endpoint did not return a usable profile"""
    pass


# =============================================================================
# Provider Metadata
# =============================================================================

class ProviderMetadata(BaseModel):
    """Subset of the discovery document the gateway relies on."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str
    userinfo_endpoint: Optional[str] = None
    end_session_endpoint: Optional[str] = None
    id_token_signing_alg_values_supported: Tuple[str, ...] = ("RS256",)


def generate_state() -> str:
    """High-entropy, single-use anti-CSRF token."""
    return secrets.token_urlsafe(32)


def generate_nonce() -> str:
    """High-entropy, single-use anti-replay token."""
    return secrets.token_urlsafe(32)


def build_logout_url(endpoint: str, client_id: str, post_logout_redirect_uri: str) -> str:
    """
    Build the provider logout URL.

    Args:
        endpoint: Provider logout endpoint
        client_id: OAuth client ID
        post_logout_redirect_uri: Where the provider sends the browser afterwards

    Returns:
        Logout URL with client_id and URL-encoded logout_uri
    """
    query = urlencode(
        {"client_id": client_id, "logout_uri": post_logout_redirect_uri},
        quote_via=quote,
    )
    return f"{endpoint}?{query}"


# =============================================================================
# OIDC Client
# =============================================================================

class OIDCClient:
    """
    Identity client descriptor bound to one provider and one OAuth client.

    Built once at startup from the discovery document; nothing but the JWKS
    cache changes afterwards, so it is safe to share between requests.
    """

    response_types = ("code",)

    def __init__(
        self,
        metadata: ProviderMetadata,
        client_id: str,
        redirect_uri: str,
        client_secret: Optional[str] = None,
        scope: str = "openid",
        token_auth_method: str = "client_secret_basic",
        timeout: float = 10.0,
        jwks_cache_seconds: int = 3600,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.metadata = metadata
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scope = scope
        self.token_auth_method = token_auth_method
        self._timeout = timeout
        self._jwks_cache_seconds = jwks_cache_seconds
        self._transport = transport
        self._jwks: Optional[Dict[str, Any]] = None
        self._jwks_fetched_at: float = 0.0

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    async def discover(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "OIDCClient":
        """
        Fetch the provider discovery document and build a client.

        Args:
            settings: Application settings with issuer and client credentials
            transport: Optional httpx transport (used by tests)

        Returns:
            Ready-to-use OIDCClient

        Raises:
            DiscoveryError: If the document cannot be fetched, parsed or
                            does not belong to the configured issuer
        """
        url = settings.discovery_url
        logger.info("Discovering OIDC provider metadata", extra={"discovery_url": url})

        try:
            async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS, transport=transport) as client:
                response = await client.get(url)
                response.raise_for_status()
                document = response.json()
        except httpx.HTTPError as e:
            raise DiscoveryError(f"Unable to fetch discovery document: {e}") from e
        except ValueError as e:
            raise DiscoveryError(f"Discovery document is not valid JSON: {e}") from e

        try:
            metadata = ProviderMetadata.model_validate(document)
        except ValidationError as e:
            raise DiscoveryError(f"Discovery document is missing required fields: {e}") from e

        if metadata.issuer.rstrip("/") != settings.OIDC_ISSUER_URL.rstrip("/"):
            raise DiscoveryError(
                f"Discovered issuer {metadata.issuer} does not match configured issuer "
                f"{settings.OIDC_ISSUER_URL}"
            )

        return cls(
            metadata=metadata,
            client_id=settings.OIDC_CLIENT_ID,
            client_secret=settings.OIDC_CLIENT_SECRET,
            redirect_uri=settings.OIDC_REDIRECT_URI,
            scope=settings.OIDC_SCOPES,
            token_auth_method=settings.OIDC_TOKEN_AUTH_METHOD,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            jwks_cache_seconds=settings.JWKS_CACHE_SECONDS,
            transport=transport,
        )

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    # -------------------------------------------------------------------------
    # Authorization Request
    # -------------------------------------------------------------------------

    def authorization_url(self, state: str, nonce: str) -> str:
        """
        Build the provider authorization URL for the code flow.

        Args:
            state: Anti-CSRF token stored in the session
            nonce: Anti-replay token stored in the session

        Returns:
            URL to redirect the browser to
        """
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "scope": self.scope,
            "state": state,
            "nonce": nonce,
        }
        return f"{self.metadata.authorization_endpoint}?{urlencode(params)}"

    @staticmethod
    def callback_params(request: Request) -> Dict[str, str]:
        """Extract the parameters the provider sent to the callback."""
        return dict(request.query_params)

    # -------------------------------------------------------------------------
    # Callback Handling
    # -------------------------------------------------------------------------

    async def callback(
        self,
        params: Mapping[str, str],
        expected_state: Optional[str],
        expected_nonce: Optional[str],
    ) -> TokenSet:
        """
        Validate callback parameters and exchange the code for tokens.

        Steps run in order and the first failure raises:
        1. Provider-reported error
        2. State must equal the state stored at login
        3. Code exchange at the token endpoint
        4. ID token signature, audience, issuer and nonce

        Args:
            params: Callback query parameters
            expected_state: State consumed from the session
            expected_nonce: Nonce consumed from the session

        Returns:
            Validated token set

        Raises:
            OIDCError: Subclass describing the failed step
        """
        if params.get("error"):
            raise AuthorizationError(
                f"Provider returned error: {params.get('error')} - {params.get('error_description', '')}"
            )

        returned_state = params.get("state")
        if not expected_state or not returned_state:
            raise StateMismatchError("State missing from session or callback")
        if not secrets.compare_digest(returned_state, expected_state):
            raise StateMismatchError("Callback state does not match session state")

        code = params.get("code")
        if not code:
            raise TokenExchangeError("Callback is missing the authorization code")

        token_set = await self.exchange_code(code)
        if not token_set.id_token:
            raise IDTokenValidationError("Token response missing id_token")

        await self.verify_id_token(
            token_set.id_token,
            expected_nonce=expected_nonce,
            access_token=token_set.access_token,
        )
        return token_set

    async def exchange_code(self, code: str) -> TokenSet:
        """
        Exchange authorization code for access and ID tokens.

        Raises:
            TokenExchangeError: If the token endpoint rejects the request
        """
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
        }
        auth = None

        if self.client_secret and self.token_auth_method == "client_secret_basic":
            auth = httpx.BasicAuth(self.client_id, self.client_secret)
        else:
            payload["client_id"] = self.client_id
            if self.client_secret:
                payload["client_secret"] = self.client_secret

        async with self._http_client() as client:
            response = await client.post(
                self.metadata.token_endpoint,
                data=payload,
                auth=auth,
                headers={"Accept": "application/json"},
            )

        if not response.is_success:
            error_data = _json_or_empty(response)
            error_msg = error_data.get("error_description") or error_data.get("error") or response.status_code
            raise TokenExchangeError(f"Token exchange failed: {error_msg}")

        try:
            return TokenSet.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise TokenExchangeError(f"Invalid token response: {e}") from e

    # -------------------------------------------------------------------------
    # ID Token Verification
    # -------------------------------------------------------------------------

    async def fetch_jwks(self, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Fetch the provider JWKS with caching.

        Raises:
            httpx.HTTPError: If the JWKS endpoint is unreachable
            IDTokenValidationError: If the response has no keys
        """
        now = time.time()
        if not force_refresh and self._jwks and (now - self._jwks_fetched_at) < self._jwks_cache_seconds:
            return self._jwks

        async with self._http_client() as client:
            response = await client.get(self.metadata.jwks_uri)
            response.raise_for_status()
            jwks_data = response.json()

        if "keys" not in jwks_data:
            raise IDTokenValidationError("Invalid JWKS response: missing 'keys' field")

        self._jwks = jwks_data
        self._jwks_fetched_at = now
        return jwks_data

    async def _get_signing_key(self, id_token: str) -> Dict[str, Any]:
        try:
            kid = jwt.get_unverified_header(id_token).get("kid")
        except JOSEError as e:
            raise IDTokenValidationError(f"Failed to decode token header: {e}") from e

        jwks = await self.fetch_jwks()
        key = _find_key(jwks, kid)
        if key is None:
            # Keys may have rotated since the cache was filled
            jwks = await self.fetch_jwks(force_refresh=True)
            key = _find_key(jwks, kid)

        if key is None:
            raise IDTokenValidationError(f"Unable to find signing key '{kid}' in provider JWKS")
        return key

    async def verify_id_token(
        self,
        id_token: str,
        expected_nonce: Optional[str],
        access_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Verify and decode an ID token issued by the provider.

        Args:
            id_token: JWT ID token string
            expected_nonce: Nonce stored in the session at login
            access_token: Access token to check against at_hash, if present

        Returns:
            Verified token claims

        Raises:
            IDTokenValidationError: If the signature, claims or nonce are invalid
        """
        signing_key = await self._get_signing_key(id_token)

        try:
            claims = jwt.decode(
                id_token,
                signing_key,
                algorithms=list(self.metadata.id_token_signing_alg_values_supported),
                audience=self.client_id,
                issuer=self.metadata.issuer,
                access_token=access_token,
                options={"leeway": 10},
            )
        except JOSEError as e:
            raise IDTokenValidationError(f"ID token verification failed: {e}") from e

        token_nonce = claims.get("nonce")
        if not expected_nonce or not token_nonce or not secrets.compare_digest(token_nonce, expected_nonce):
            raise IDTokenValidationError("Nonce mismatch")

        return claims

    # -------------------------------------------------------------------------
    # User Profile
    # -------------------------------------------------------------------------

    async def userinfo(self, access_token: str) -> UserProfile:
        """
        Fetch the user's claims with the access token.

        Raises:
            UserInfoError: If the endpoint is missing or returns an error
        """
        if not self.metadata.userinfo_endpoint:
            raise UserInfoError("Provider does not advertise a userinfo endpoint")

        async with self._http_client() as client:
            response = await client.get(
                self.metadata.userinfo_endpoint,
                headers={"Authorization": f"Bearer {access_token}"},
            )

        if not response.is_success:
            raise UserInfoError(f"Userinfo request failed with status {response.status_code}")

        try:
            return UserProfile.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise UserInfoError(f"Invalid userinfo response: {e}") from e


def _find_key(jwks: Dict[str, Any], kid: Optional[str]) -> Optional[Dict[str, Any]]:
    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return key
    return None


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}

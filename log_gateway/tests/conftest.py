"""
Shared fixtures for gateway tests.

The identity provider is simulated with an httpx.MockTransport that serves
discovery, JWKS, token and userinfo endpoints. ID tokens are signed with a
throwaway RSA key. CloudWatch Logs calls go through a real boto3 client
wrapped in a botocore Stubber.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs

import boto3
import httpx
import jwt
import pytest
from botocore.stub import Stubber
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient
from jwt.algorithms import RSAAlgorithm

from log_gateway.auth.oidc import OIDCClient, ProviderMetadata
from log_gateway.auth.session import InMemorySessionStore
from log_gateway.config import Settings
from log_gateway.logs.store import LogStore
from log_gateway.main import create_app

ISSUER = "https://idp.example.com/pool"
CLIENT_ID = "test-client-id"
CLIENT_SECRET = "test-client-secret"
REDIRECT_URI = "https://gateway.example.com/callback"
TEST_KID = "test-key-id-2024"


# Test RSA key pair generation for mocking JWKS
def generate_test_key():
    """Generate RSA private key for testing"""
    return rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
        backend=default_backend(),
    )


TEST_PRIVATE_KEY = generate_test_key()


def create_jwks(kid: str = TEST_KID) -> Dict[str, Any]:
    """JWKS document holding the test public key."""
    jwk = RSAAlgorithm.to_jwk(TEST_PRIVATE_KEY.public_key(), as_dict=True)
    jwk["kid"] = kid
    jwk["use"] = "sig"
    jwk["alg"] = "RS256"
    return {"keys": [jwk]}


class FakeProvider:
    """
    Minimal OIDC provider served through httpx.MockTransport.

    Tests tweak the public attributes to make individual endpoints fail.
    """

    def __init__(self):
        self.profile: Dict[str, Any] = {"sub": "test-user-sub-123", "email": "user@example.com"}
        self.nonce: Optional[str] = None
        self.issued_nonce: Optional[str] = None
        self.kid = TEST_KID
        self.audience = CLIENT_ID
        self.exp_delta_minutes = 60
        self.token_status = 200
        self.token_error: Dict[str, Any] = {"error": "invalid_grant", "error_description": "Code expired"}
        self.include_id_token = True
        self.userinfo_status = 200
        self.discovery_document = self.metadata_document()
        self.jwks = create_jwks()
        self.token_requests: List[httpx.Request] = []
        self.userinfo_requests: List[httpx.Request] = []
        self.jwks_requests = 0

    @staticmethod
    def metadata_document() -> Dict[str, Any]:
        return {
            "issuer": ISSUER,
            "authorization_endpoint": "https://auth.example.com/oauth2/authorize",
            "token_endpoint": "https://auth.example.com/oauth2/token",
            "userinfo_endpoint": "https://auth.example.com/oauth2/userInfo",
            "jwks_uri": f"{ISSUER}/.well-known/jwks.json",
            "response_types_supported": ["code"],
            "id_token_signing_alg_values_supported": ["RS256"],
        }

    def mint_id_token(self, nonce: Optional[str] = None) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "iss": ISSUER,
            "sub": self.profile["sub"],
            "aud": self.audience,
            "exp": now + timedelta(minutes=self.exp_delta_minutes),
            "iat": now,
            "email": self.profile.get("email"),
        }
        if nonce is not None:
            payload["nonce"] = nonce
        return jwt.encode(payload, TEST_PRIVATE_KEY, algorithm="RS256", headers={"kid": self.kid})

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path

        if path == "/pool/.well-known/openid-configuration":
            return httpx.Response(200, json=self.discovery_document)

        if path == "/pool/.well-known/jwks.json":
            self.jwks_requests += 1
            return httpx.Response(200, json=self.jwks)

        if path == "/oauth2/token":
            self.token_requests.append(request)
            if self.token_status != 200:
                return httpx.Response(self.token_status, json=self.token_error)
            body = {
                "access_token": "test-access-token",
                "refresh_token": "test-refresh-token",
                "token_type": "Bearer",
                "expires_in": 3600,
            }
            if self.include_id_token:
                body["id_token"] = self.mint_id_token(self.nonce or self.issued_nonce)
            return httpx.Response(200, json=body)

        if path == "/oauth2/userInfo":
            self.userinfo_requests.append(request)
            if self.userinfo_status != 200:
                return httpx.Response(self.userinfo_status, json={"error": "invalid_token"})
            return httpx.Response(200, json=self.profile)

        return httpx.Response(404)

    @staticmethod
    def form(request: httpx.Request) -> Dict[str, str]:
        return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def settings():
    """Application settings for tests"""
    return Settings(
        OIDC_ISSUER_URL=ISSUER,
        OIDC_CLIENT_ID=CLIENT_ID,
        OIDC_CLIENT_SECRET=CLIENT_SECRET,
        OIDC_REDIRECT_URI=REDIRECT_URI,
        OIDC_LOGOUT_ENDPOINT="https://auth.example.com/logout",
        POST_LOGOUT_REDIRECT_URI="https://gateway.example.com/",
        SESSION_SECRET="test-session-secret-0123456789abcdef",
        LOG_GROUP_NAME="test",
        LOG_STREAM_NAME="custom",
        LOG_EVENTS_LIMIT=100,
    )


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def transport(provider):
    return httpx.MockTransport(provider.handler)


@pytest.fixture
def oidc_client(settings, transport):
    """OIDC client wired to the fake provider"""
    return OIDCClient(
        metadata=ProviderMetadata.model_validate(FakeProvider.metadata_document()),
        client_id=settings.OIDC_CLIENT_ID,
        client_secret=settings.OIDC_CLIENT_SECRET,
        redirect_uri=settings.OIDC_REDIRECT_URI,
        scope=settings.OIDC_SCOPES,
        transport=transport,
    )


@pytest.fixture
def logs_client():
    """Real boto3 logs client; never reaches AWS while stubbed"""
    return boto3.client(
        "logs",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def logs_stubber(logs_client):
    with Stubber(logs_client) as stubber:
        yield stubber


@pytest.fixture
def session_store(settings):
    return InMemorySessionStore(max_age_seconds=settings.SESSION_MAX_AGE_SECONDS)


@pytest.fixture
def app(settings, oidc_client, session_store, logs_client):
    return create_app(
        settings=settings,
        oidc_client=oidc_client,
        session_store=session_store,
        log_store=LogStore(logs_client),
    )


@pytest.fixture
def client(app):
    """Test client over https so the Secure session cookie is sent back"""
    return TestClient(app, base_url="https://testserver")

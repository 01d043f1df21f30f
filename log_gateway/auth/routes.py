"""
Authentication routes for OIDC login, callback and logout.

This module implements the OAuth 2.0 / OIDC authorization code flow
against the configured identity provider:

    Anonymous --/login--> AwaitingCallback --/callback--> Authenticated
    Authenticated --/logout--> LoggedOut
"""

import logging

import httpx
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import RedirectResponse

from ..models import SessionRecord
from .dependencies import require_oidc_client
from .oidc import OIDCClient, OIDCError, build_logout_url, generate_nonce, generate_state
from .session import destroy_session, load_session, store_session

logger = logging.getLogger(__name__)

LOGIN_FAILED_ERROR = "authentication_failed"
LOGIN_FAILED_REDIRECT = f"/?error={LOGIN_FAILED_ERROR}"


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(
    tags=["authentication"],
)


# =============================================================================
# Login Endpoint
# =============================================================================

@auth_router.get("/login", response_class=RedirectResponse)
async def login(request: Request, oidc_client: OIDCClient = Depends(require_oidc_client)):
    """
    Initiate OIDC login flow by redirecting to the identity provider.

    This endpoint:
    1. Generates fresh state and nonce parameters
    2. Stores both in the session for callback validation
    3. Redirects the browser to the provider authorization endpoint

    Returns:
        RedirectResponse to the provider authorization endpoint
    """
    state = generate_state()
    nonce = generate_nonce()

    record = load_session(request)
    record.begin_login(state, nonce)
    store_session(request, record)

    logger.info("Starting OIDC login")
    return RedirectResponse(
        url=oidc_client.authorization_url(state=state, nonce=nonce),
        status_code=status.HTTP_302_FOUND,
    )


# =============================================================================
# Callback Endpoint
# =============================================================================

@auth_router.get("/callback", response_class=RedirectResponse)
async def callback(request: Request, oidc_client: OIDCClient = Depends(require_oidc_client)):
    """
    Handle the provider redirect after login.

    The pending state and nonce are consumed before anything else, so a
    callback can be attempted only once per login. Then:
    1. Validates state against the session (CSRF protection)
    2. Exchanges the code for tokens and validates the ID token nonce
    3. Fetches the user profile with the access token
    4. Stores profile and tokens in the session

    Any failure redirects to the landing page with a generic error flag;
    details are only logged.
    """
    record = load_session(request)
    expected_state, expected_nonce = record.consume_pending()
    store_session(request, record)

    params = oidc_client.callback_params(request)

    try:
        token_set = await oidc_client.callback(
            params,
            expected_state=expected_state,
            expected_nonce=expected_nonce,
        )
        profile = await oidc_client.userinfo(token_set.access_token)
    except (OIDCError, httpx.HTTPError) as e:
        logger.warning(
            f"Authentication callback failed: {e}",
            extra={"failure_type": type(e).__name__},
        )
        return _fail_login(request, record)
    except Exception:
        logger.error("Unexpected error in authentication callback", exc_info=True)
        return _fail_login(request, record)

    record.authenticate(profile, token_set)
    store_session(request, record)

    logger.info(f"User logged in: {profile.display_name}")
    return RedirectResponse(url="/", status_code=status.HTTP_302_FOUND)


def _fail_login(request: Request, record: SessionRecord) -> RedirectResponse:
    record.clear_identity()
    store_session(request, record)
    return RedirectResponse(url=LOGIN_FAILED_REDIRECT, status_code=status.HTTP_302_FOUND)


# =============================================================================
# Logout Endpoint
# =============================================================================

@auth_router.get("/logout", response_class=RedirectResponse)
async def logout(request: Request):
    """
    End the session and redirect to the provider logout endpoint.

    A failure to delete the stored session is logged; the browser is
    still sent to the provider so the user is not stuck.
    """
    app_state = request.app.state.app_state
    settings = app_state.settings

    try:
        await destroy_session(request, app_state.session_store)
    except Exception:
        logger.error("Session destruction error", exc_info=True)

    logout_url = build_logout_url(
        endpoint=settings.OIDC_LOGOUT_ENDPOINT,
        client_id=settings.OIDC_CLIENT_ID,
        post_logout_redirect_uri=settings.POST_LOGOUT_REDIRECT_URI,
    )
    return RedirectResponse(url=logout_url, status_code=status.HTTP_302_FOUND)

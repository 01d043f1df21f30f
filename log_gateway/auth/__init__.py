"""
Authentication Package

This package handles login against the OpenID Connect identity provider
and the server-side session that remembers the signed-in user.

Modules:
- oidc: Provider discovery, authorization URL, code exchange, ID token
  verification and userinfo
- session: Session store, cookie middleware and typed session access
- dependencies: Readiness gate and auth status gate
- routes: /login, /callback and /logout

The authentication flow:
1. Browser hits /login; state and nonce are stored in the session
2. User authenticates at the identity provider
3. Provider redirects to /callback with a code and the state
4. Gateway checks state, exchanges the code, checks the ID token nonce
5. Gateway fetches the profile and stores profile + tokens in the session
"""

from .routes import auth_router

__all__ = [
    "auth_router",
]

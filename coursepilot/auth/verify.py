"""
verify.py
---------
Purpose:
    Supabase JWT verification for protected routes.

Notes:
    - HS256 with SUPABASE_JWT_SECRET when the secret is configured.
    - Otherwise ES256 against the project's JWKS, keys cached by PyJWKClient.
    - Provides `auth_dependency` (claims) and `current_user_id` (sub claim).
"""

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from coursepilot.config import settings

SUPABASE_AUDIENCE = "authenticated"

_jwk_client: PyJWKClient | None = None
_security = HTTPBearer()


def _get_jwk_client() -> PyJWKClient:
    global _jwk_client
    if _jwk_client is None:
        url = settings.jwks_url()
        if not url:
            raise RuntimeError("Neither SUPABASE_JWT_SECRET nor SUPABASE_URL is configured")
        _jwk_client = PyJWKClient(url)
    return _jwk_client


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_jwt(token: str) -> dict:
    try:
        if settings.SUPABASE_JWT_SECRET:
            return jwt.decode(
                token,
                settings.SUPABASE_JWT_SECRET,
                algorithms=["HS256"],
                audience=SUPABASE_AUDIENCE,
                options={"verify_exp": True},
            )

        signing_key = _get_jwk_client().get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["ES256"],
            audience=SUPABASE_AUDIENCE,
            options={"verify_exp": True},
        )
    except Exception as e:
        raise _unauthorized(f"Invalid authentication token: {e}") from e


def auth_dependency(credentials: HTTPAuthorizationCredentials = Depends(_security)) -> dict:
    token = credentials.credentials
    return verify_jwt(token)


def current_user_id(claims: dict = Depends(auth_dependency)) -> str:
    user_id = claims.get("sub")
    if not user_id:
        raise _unauthorized("Invalid token")
    return user_id

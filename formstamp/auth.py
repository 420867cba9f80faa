"""
Bearer-token authentication for the HTTP API.

Tokens are HS256 JWTs signed with ``FORMSTAMP_JWT_SECRET``. When the secret is
not configured the API runs open (local single-user mode) and both the
middleware in app_server.py and ``get_current_user`` let requests through.

Environment variables (set in .env, read by formstamp.config):
    FORMSTAMP_JWT_SECRET  -  shared HS256 signing secret
    FORMSTAMP_JWT_AUDIENCE  -  optional expected ``aud`` claim
"""

from __future__ import annotations

from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from . import config

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

JWT_SECRET: str = config.JWT_SECRET
JWT_AUDIENCE: str = config.JWT_AUDIENCE

_bearer = HTTPBearer(auto_error=False)


def auth_enabled() -> bool:
    return bool(JWT_SECRET)


def decode_token(token: str, secret: Optional[str] = None) -> dict:
    """
    Decode and validate an HS256 bearer token.  Raises jwt.InvalidTokenError
    (or a subclass) on failure.
    """
    secret = secret if secret is not None else JWT_SECRET
    if not secret:
        raise jwt.InvalidTokenError("FORMSTAMP_JWT_SECRET is not set - cannot validate token.")

    header = jwt.get_unverified_header(token)
    alg = header.get("alg", "HS256")
    if alg != "HS256":
        raise jwt.InvalidTokenError(f"Unsupported token algorithm: {alg}")

    if JWT_AUDIENCE:
        return jwt.decode(token, secret, algorithms=["HS256"], audience=JWT_AUDIENCE)
    return jwt.decode(token, secret, algorithms=["HS256"], options={"verify_aud": False})


def issue_token(subject: str, secret: Optional[str] = None, **claims) -> str:
    """Sign a token for ``subject``; used by scripts and tests."""
    secret = secret if secret is not None else JWT_SECRET
    payload = {"sub": subject, **claims}
    return jwt.encode(payload, secret, algorithm="HS256")


# ---------------------------------------------------------------------------
# Dependency
# ---------------------------------------------------------------------------


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> dict:
    """
    Decoded token payload for the request, or an anonymous user when auth is
    disabled.  Raises HTTP 401 on any validation failure.
    """
    if not auth_enabled():
        return {"sub": "anonymous"}
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid Authorization header.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return decode_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {exc}",
            headers={"WWW-Authenticate": "Bearer"},
        )

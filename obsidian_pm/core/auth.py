"""
Request identity.

Sessions are issued by the external auth provider as HS256 JWTs; this module
only verifies them. The `X-User-Id` header is accepted as a fallback for local
development and tests.
"""
from typing import Optional

import jwt
from fastapi import Header, Request

from obsidian_pm.core.config import settings
from obsidian_pm.core.errors import AuthenticationError
from obsidian_pm.core.logging import log_event


def verify_jwt(token: str) -> Optional[str]:
    """
    Return the `sub` claim of a valid token, or None when no AUTH_JWT_SECRET is
    configured (verification disabled).

    Raises:
        AuthenticationError: expired, malformed or wrongly signed token
    """
    if not settings.AUTH_JWT_SECRET:
        return None

    try:
        claims = jwt.decode(
            token,
            settings.AUTH_JWT_SECRET,
            algorithms=["HS256"],
            options={"require": ["sub", "exp"], "verify_aud": False},
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError as e:
        log_event("info", "auth.invalid_token", error_code="invalid_token", extra={"reason": e})
        raise AuthenticationError("Invalid token")

    return claims["sub"]


async def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Development/test user ID"),
) -> str:
    """
    FastAPI dependency resolving the caller's user id.

    A Bearer token wins over the header. The user row is created on first sight.
    """
    from obsidian_pm.features.users.service import get_or_create_user

    user_id = None
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token:
        user_id = verify_jwt(token)
    user_id = user_id or x_user_id

    if not user_id:
        raise AuthenticationError("Missing Authorization (Bearer JWT) or X-User-Id header")

    get_or_create_user(user_id)
    request.state.user_id = user_id
    return user_id

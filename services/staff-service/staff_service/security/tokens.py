"""Verification of the caller's identity-provider session token."""

from __future__ import annotations

from typing import Any

import jwt

from ..domain.errors import AuthenticationError


def decode_session_token(token: str, *, secret: str, audience: str) -> dict[str, Any]:
    """Decode and verify a session JWT returning its payload.

    Parameters
    ----------
    token:
        Encoded JWT issued by the identity provider to the signed-in admin.
    secret:
        Shared HS256 signing secret of the identity provider.
    audience:
        Expected ``aud`` claim, ``authenticated`` for signed-in users.

    Raises
    ------
    jwt.PyJWTError
        Propagated when the token is invalid, expired, or issued for another audience.
    """

    return jwt.decode(
        token,
        secret,
        algorithms=["HS256"],
        audience=audience,
        options={"require": ["exp", "sub"]},
    )


def verify_caller(
    authorization: str | None, admin_email: str, *, secret: str, audience: str
) -> dict[str, Any]:
    """Ensure the bearer token belongs to the admin named in the request body."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Unauthorized")
    try:
        claims = decode_session_token(token.strip(), secret=secret, audience=audience)
    except jwt.PyJWTError as exc:
        raise AuthenticationError("Unauthorized") from exc

    claimed_email = claims.get("email")
    if not isinstance(claimed_email, str) or claimed_email.lower() != admin_email.lower():
        raise AuthenticationError("Unauthorized")
    return claims

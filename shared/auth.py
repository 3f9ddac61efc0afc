"""Caller authentication for the HTTP API.

Callers present the access token issued by the auth provider as
`Authorization: Bearer <jwt>`. The token is verified locally (HS256,
shared secret, expected audience) and its `sub` claim is the user id.
"""

from typing import Annotated, Any
from uuid import UUID

import structlog
from fastapi import Header
from jose import ExpiredSignatureError, JWTError, jwt

from shared.config import settings
from shared.exceptions import UnauthorizedError

logger = structlog.get_logger()


def _extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    parts = authorization.strip().split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def decode_user_id(token: str, secret: str, audience: str | None) -> UUID:
    """Verify a bearer token and return its subject as a UUID."""
    if not secret:
        raise UnauthorizedError("Authentication is not configured")

    options = {"verify_aud": audience is not None}
    try:
        payload: dict[str, Any] = jwt.decode(
            token, secret, algorithms=["HS256"], audience=audience, options=options
        )
    except ExpiredSignatureError as exc:
        raise UnauthorizedError("Token has expired") from exc
    except JWTError as exc:
        raise UnauthorizedError("Invalid or expired token") from exc

    subject = payload.get("sub")
    try:
        return UUID(str(subject))
    except (TypeError, ValueError) as exc:
        raise UnauthorizedError("Token is missing a valid subject") from exc


def get_current_user_id(
    authorization: Annotated[str | None, Header(alias="Authorization")] = None,
) -> UUID:
    """FastAPI dependency returning the authenticated user's id."""
    token = _extract_bearer_token(authorization)
    if token is None:
        raise UnauthorizedError("Missing or invalid authorization header")

    user_id = decode_user_id(token, settings.auth_jwt_secret, settings.auth_jwt_audience or None)
    structlog.contextvars.bind_contextvars(user_id=str(user_id))
    return user_id

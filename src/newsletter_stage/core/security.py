"""Bearer token helpers identifying the admin user behind a request."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from newsletter_stage.core.settings import settings


class InvalidTokenError(ValueError):
    """Raised when an access token cannot be decoded into a user id."""


def create_access_token(user_id: uuid.UUID, extra_claims: dict[str, str] | None = None) -> str:
    """Create a JWT access token whose subject is the user id."""
    to_encode: dict[str, object] = {"sub": str(user_id)}
    if extra_claims:
        to_encode.update(extra_claims)
    expire = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode["exp"] = expire
    encoded_jwt: str = jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt


def decode_access_token(token: str) -> uuid.UUID:
    """Return the user id carried by ``token``.

    Raises:
        InvalidTokenError: If the token is malformed, expired or has no
            UUID subject.
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as err:
        raise InvalidTokenError("Could not validate credentials") from err

    subject = payload.get("sub")
    if subject is None:
        raise InvalidTokenError("Token has no subject")
    try:
        return uuid.UUID(str(subject))
    except ValueError as err:
        raise InvalidTokenError("Token subject is not a user id") from err

"""JWT access tokens identifying principals."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from feedback_portal.core.settings import settings


def create_access_token(principal_id: int, extra_claims: dict[str, str] | None = None) -> str:
    """Create a JWT access token whose subject is the principal id."""
    to_encode: dict[str, object] = {"sub": str(principal_id)}
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


def decode_principal_id(token: str) -> int | None:
    """Return the principal id carried by a token, or None if it is invalid."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.isdigit():
        return None
    return int(subject)

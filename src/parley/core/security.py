"""Bearer token helpers.

Tokens are minted by the external auth service with the shared secret; the
delivery engine only needs to read the subject back out of them.
"""
from __future__ import annotations

from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from parley.core.settings import settings


def create_access_token(user_id: int, expires_minutes: int = 60) -> str:
    """Create a JWT whose subject is ``user_id`` (used by tooling and tests)."""
    expire = datetime.now(UTC) + timedelta(minutes=expires_minutes)
    to_encode: dict[str, object] = {"sub": str(user_id), "exp": expire}
    encoded_jwt: str = jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt


def decode_user_id(token: str) -> int | None:
    """Return the user id carried by ``token``, or None when it is invalid."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    subject = payload.get("sub")
    if subject is None:
        return None
    try:
        return int(subject)
    except (TypeError, ValueError):
        return None

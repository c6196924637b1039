"""Bearer token handling.

Tokens are issued by the auth service; this service only verifies them
and reads the user id from ``sub``. ``create_access_token`` exists for
local development and tests.
"""

from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from jose import JWTError, jwt

from agencycrm.core.config import get_settings


def create_access_token(
    user_id: UUID,
    agency_id: Optional[UUID] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a signed JWT access token for ``user_id``."""
    settings = get_settings()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode = {
        "sub": str(user_id),
        "exp": expire,
        "type": "access",
    }
    if agency_id is not None:
        to_encode["agency_id"] = str(agency_id)
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str) -> Optional[UUID]:
    """Decode and validate a JWT token. Returns the user id if valid."""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None

    user_id = payload.get("sub")
    if user_id is None or payload.get("type", "access") != "access":
        return None
    try:
        return UUID(user_id)
    except ValueError:
        return None

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt, JWTError
import structlog

from fidogate.core.config import settings
from fidogate.services.identity import SessionIdentity

logger = structlog.get_logger()


def create_session_token(
    identity: SessionIdentity, expires_delta: Optional[timedelta] = None
) -> str:
    """Encode a session identity as a signed JWT."""
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.SESSION_EXPIRE_MINUTES)
    )
    to_encode: Dict[str, Any] = identity.to_claims()
    to_encode["exp"] = expire
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_session_token(token: str) -> Optional[SessionIdentity]:
    """Decode a session JWT; returns None when the token is invalid or expired."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return SessionIdentity.from_claims(payload)
    except (JWTError, KeyError, ValueError):
        logger.warning("Rejected session token")
        return None

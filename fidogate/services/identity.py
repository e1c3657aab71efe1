"""
Turns a completed ceremony into the identity carried by the session.

The session identity is built once, at the request boundary, and handed to
everything downstream. Nothing re-derives the caller from other claims.
"""

from dataclasses import dataclass
from typing import Any, Dict
from uuid import UUID

import structlog

logger = structlog.get_logger()

AUTHENTICATION_METHOD = "webauthn"
CREDENTIAL_ID_CLAIM = "usercredentialid"


@dataclass(frozen=True)
class SessionIdentity:
    user_id: UUID
    credential_id: UUID
    method: str = AUTHENTICATION_METHOD

    def to_claims(self) -> Dict[str, Any]:
        return {
            "sub": str(self.user_id),
            "amr": self.method,
            CREDENTIAL_ID_CLAIM: str(self.credential_id),
        }

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "SessionIdentity":
        if claims.get("amr") != AUTHENTICATION_METHOD:
            raise ValueError("Unsupported authentication method")
        return cls(
            user_id=UUID(claims["sub"]),
            credential_id=UUID(claims[CREDENTIAL_ID_CLAIM]),
        )


class IdentityIssuer:
    def issue(self, user_id: UUID, credential_id: UUID) -> SessionIdentity:
        identity = SessionIdentity(user_id=user_id, credential_id=credential_id)
        logger.info(
            "Session identity issued",
            user_id=str(user_id),
            credential_id=str(credential_id),
        )
        return identity

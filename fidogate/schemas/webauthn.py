from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, UUID4

from fidogate.schemas.user import UserCreate


class AuthenticatorAttachmentPreference(str, Enum):
    PLATFORM = "platform"
    CROSS_PLATFORM = "cross-platform"


class SignupStart(UserCreate):
    attachment: Optional[AuthenticatorAttachmentPreference] = None


# Raw PublicKeyCredential JSON as produced by the browser
class PublicKeyCredentialResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    rawId: str
    response: Dict[str, Any]
    type: str


class AttestationResponse(PublicKeyCredentialResponse):
    pass


class AssertionResponse(PublicKeyCredentialResponse):
    pass


class SessionResponse(BaseModel):
    user_id: UUID4
    credential_id: UUID4
    method: str
    access_token: str
    token_type: str = "bearer"

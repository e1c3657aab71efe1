from pydantic import BaseModel, UUID4
from datetime import datetime

class UserCredentialResponse(BaseModel):
    """Public view of a credential; key material and raw ids stay server side."""
    id: UUID4
    user_id: UUID4
    display_name: str
    attestation_format_id: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

from pydantic import BaseModel, Field, UUID4, field_serializer
from typing import Optional
from datetime import datetime

from fido2.utils import websafe_encode

from fidogate.models.user import NAME_MAX_LENGTH

# Shared properties
class UserBase(BaseModel):
    display_name: str = Field(min_length=1, max_length=NAME_MAX_LENGTH)
    first_name: str = Field(min_length=1, max_length=NAME_MAX_LENGTH)
    last_name: str = Field(min_length=1, max_length=NAME_MAX_LENGTH)

# Properties to receive via API on creation
class UserCreate(UserBase):
    pass

# Properties to receive via API on update
class UserUpdate(UserBase):
    pass

# Additional properties to return via API
class UserResponse(BaseModel):
    id: UUID4
    display_name: str
    first_name: str
    last_name: str
    user_handle: bytes
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @field_serializer("user_handle")
    def serialize_user_handle(self, user_handle: bytes) -> str:
        return websafe_encode(user_handle)

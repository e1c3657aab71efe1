import uuid
from sqlalchemy import Column, String, DateTime, LargeBinary, Uuid
from sqlalchemy.orm import relationship

from fidogate.db.postgres import Base
from fidogate.models.base import utcnow

NAME_MAX_LENGTH = 255
USER_HANDLE_LENGTH = 64

class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # WebAuthn user.id; random, never derived from the primary key
    user_handle = Column(LargeBinary(USER_HANDLE_LENGTH), unique=True, nullable=False, index=True)
    display_name = Column(String(NAME_MAX_LENGTH), nullable=False)
    first_name = Column(String(NAME_MAX_LENGTH), nullable=False)
    last_name = Column(String(NAME_MAX_LENGTH), nullable=False)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    credentials = relationship(
        "UserCredential",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

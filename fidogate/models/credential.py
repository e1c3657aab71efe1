import uuid
from sqlalchemy import Column, String, BigInteger, ForeignKey, LargeBinary, DateTime, Uuid, CheckConstraint
from sqlalchemy.orm import relationship

from fidogate.db.postgres import Base
from fidogate.models.base import utcnow

# SHA-512 digest length
CREDENTIAL_HASH_LENGTH = 64
DISPLAY_NAME_MAX_LENGTH = 255
# https://www.w3.org/TR/webauthn/#attestation-statement-format-identifier
ATTESTATION_FORMAT_MAX_LENGTH = 32

class UserCredential(Base):
    __tablename__ = "user_credentials"
    __table_args__ = (
        CheckConstraint("signature_counter >= 0", name="ck_user_credentials_counter_unsigned"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # Raw id from the authenticator; unbounded, so never indexed directly
    credential_id = Column(LargeBinary, nullable=False)
    # Unique alternate key, sha512(credential_id)
    credential_id_hash = Column(LargeBinary(CREDENTIAL_HASH_LENGTH), unique=True, nullable=False)
    public_key = Column(LargeBinary, nullable=False)
    attestation_format_id = Column(String(ATTESTATION_FORMAT_MAX_LENGTH), nullable=False)
    aaguid = Column(Uuid, nullable=False)
    display_name = Column(String(DISPLAY_NAME_MAX_LENGTH), nullable=False)
    signature_counter = Column(BigInteger, nullable=False, default=0)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="credentials")

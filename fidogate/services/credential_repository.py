import hashlib
import secrets
from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fidogate.core.errors import ConflictError, NotFoundError, ReplaySuspectedError, ValidationError
from fidogate.models.base import utcnow
from fidogate.models.credential import (
    ATTESTATION_FORMAT_MAX_LENGTH,
    DISPLAY_NAME_MAX_LENGTH,
    UserCredential,
)
from fidogate.models.user import NAME_MAX_LENGTH, USER_HANDLE_LENGTH, User

logger = structlog.get_logger()


def hash_credential_id(credential_id: bytes) -> bytes:
    """SHA-512 of the raw credential id; the indexable alternate key."""
    return hashlib.sha512(credential_id).digest()


def new_user_handle() -> bytes:
    return secrets.token_bytes(USER_HANDLE_LENGTH)


@dataclass
class UserProfile:
    display_name: str
    first_name: str
    last_name: str


@dataclass
class NewCredential:
    credential_id: bytes
    public_key: bytes
    attestation_format_id: str
    aaguid: UUID
    display_name: str
    signature_counter: int = 0


def validate_profile(profile: UserProfile) -> None:
    for field_name in ("display_name", "first_name", "last_name"):
        value = getattr(profile, field_name)
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{field_name} is required")
        if len(value) > NAME_MAX_LENGTH:
            raise ValidationError(f"{field_name} must be at most {NAME_MAX_LENGTH} characters")


def _validate_credential(credential: NewCredential) -> None:
    if not credential.credential_id:
        raise ValidationError("credential_id is required")
    if not credential.public_key:
        raise ValidationError("public_key is required")
    if len(credential.attestation_format_id) > ATTESTATION_FORMAT_MAX_LENGTH:
        raise ValidationError("attestation_format_id is too long")
    if len(credential.display_name) > DISPLAY_NAME_MAX_LENGTH:
        raise ValidationError("display_name is too long")
    if credential.signature_counter < 0:
        raise ValidationError("signature_counter must be unsigned")


def _build_credential(credential: NewCredential) -> UserCredential:
    _validate_credential(credential)
    return UserCredential(
        credential_id=credential.credential_id,
        credential_id_hash=hash_credential_id(credential.credential_id),
        public_key=credential.public_key,
        attestation_format_id=credential.attestation_format_id,
        aaguid=credential.aaguid,
        display_name=credential.display_name,
        signature_counter=credential.signature_counter,
    )


class CredentialRepository:
    """Owns User and UserCredential persistence and their invariants."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # Users

    async def create_user(
        self,
        profile: UserProfile,
        user_handle: Optional[bytes] = None,
        credential: Optional[NewCredential] = None,
    ) -> User:
        validate_profile(profile)
        if user_handle is not None and len(user_handle) != USER_HANDLE_LENGTH:
            raise ValidationError("user handle has the wrong length")

        user = User(
            display_name=profile.display_name,
            first_name=profile.first_name,
            last_name=profile.last_name,
            user_handle=user_handle or new_user_handle(),
        )
        if credential is not None:
            row = _build_credential(credential)
            await self._ensure_hash_unused(row.credential_id_hash)
            user.credentials = [row]

        self.db.add(user)
        await self._commit_or_conflict("User or credential already exists")
        await self.db.refresh(user)
        logger.info("User created", user_id=str(user.id), with_credential=credential is not None)
        return user

    async def find_user_by_id(self, user_id: UUID) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def find_user_by_handle(self, user_handle: bytes) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.user_handle == user_handle))
        return result.scalar_one_or_none()

    async def update_user(self, user_id: UUID, profile: UserProfile) -> Optional[User]:
        validate_profile(profile)
        user = await self.find_user_by_id(user_id)
        if user is None:
            return None
        user.display_name = profile.display_name
        user.first_name = profile.first_name
        user.last_name = profile.last_name
        await self.db.commit()
        await self.db.refresh(user)
        return user

    # Credentials

    async def add_credential(self, user_id: UUID, credential: NewCredential) -> UserCredential:
        row = _build_credential(credential)
        row.user_id = user_id
        await self._ensure_hash_unused(row.credential_id_hash)

        self.db.add(row)
        await self._commit_or_conflict("Credential is already registered")
        await self.db.refresh(row)
        logger.info("Credential added", user_id=str(user_id), credential_id=str(row.id))
        return row

    async def credential_hash_exists(self, credential_id_hash: bytes) -> bool:
        result = await self.db.execute(
            select(UserCredential.id).where(UserCredential.credential_id_hash == credential_id_hash)
        )
        return result.first() is not None

    async def list_credentials(self, user_id: UUID) -> List[UserCredential]:
        result = await self.db.execute(
            select(UserCredential)
            .where(UserCredential.user_id == user_id)
            .order_by(UserCredential.created_at.asc())
        )
        return list(result.scalars().all())

    async def get_credential(self, user_id: UUID, credential_pk: UUID) -> Optional[UserCredential]:
        result = await self.db.execute(
            select(UserCredential).where(
                UserCredential.user_id == user_id, UserCredential.id == credential_pk
            )
        )
        return result.scalar_one_or_none()

    async def find_credential_by_owner_and_raw_id(
        self, user_id: UUID, raw_credential_id: bytes
    ) -> Optional[UserCredential]:
        result = await self.db.execute(
            select(UserCredential).where(
                UserCredential.user_id == user_id,
                UserCredential.credential_id_hash == hash_credential_id(raw_credential_id),
            )
        )
        credential = result.scalar_one_or_none()
        if credential is None or credential.credential_id != raw_credential_id:
            return None
        return credential

    async def delete_credential(self, user_id: UUID, credential_pk: UUID) -> bool:
        """False when the credential is missing or owned by another user."""
        credential = await self.get_credential(user_id, credential_pk)
        if credential is None:
            return False
        await self.db.delete(credential)
        await self.db.commit()
        logger.info("Credential deleted", user_id=str(user_id), credential_id=str(credential_pk))
        return True

    async def update_signature_counter(self, credential_pk: UUID, new_counter: int) -> UserCredential:
        """
        Advance the stored counter to ``new_counter``.

        The compare and the write are one conditional UPDATE, so two concurrent
        assertions for the same credential cannot both commit. Raises
        ``ReplaySuspectedError`` when the stored counter is already at or past
        ``new_counter`` and ``NotFoundError`` when the credential is gone.
        """
        stmt = (
            update(UserCredential)
            .where(
                UserCredential.id == credential_pk,
                UserCredential.signature_counter < new_counter,
            )
            .values(signature_counter=new_counter, updated_at=utcnow())
            .returning(UserCredential.id)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        updated = result.scalar_one_or_none()

        if updated is None:
            exists = await self.db.execute(
                select(UserCredential.signature_counter).where(UserCredential.id == credential_pk)
            )
            stored = exists.scalar_one_or_none()
            if stored is None:
                raise NotFoundError("Credential not found")
            logger.warning(
                "Signature counter did not increase",
                credential_id=str(credential_pk),
                stored_counter=stored,
                counter=new_counter,
            )
            raise ReplaySuspectedError()

        await self.db.commit()
        return await self.db.get(UserCredential, credential_pk, populate_existing=True)

    # Helpers

    async def _ensure_hash_unused(self, credential_id_hash: bytes) -> None:
        if await self.credential_hash_exists(credential_id_hash):
            raise ConflictError("Credential is already registered")

    async def _commit_or_conflict(self, message: str) -> None:
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.warning("Unique constraint rejected write", reason=message)
            raise ConflictError(message)

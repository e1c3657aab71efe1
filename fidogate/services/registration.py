"""
Registration ceremony: START -> OPTIONS_ISSUED -> COMPLETED.

``begin_*`` issues creation options and parks the engine state in the
challenge store under the caller's session. ``complete_*`` consumes that state
exactly once, has the engine verify the attestation and persists the new
credential. An abandoned ceremony simply expires with its challenge.
"""

import asyncio
from typing import Any, Dict, Mapping, Optional, Tuple

from fido2.utils import websafe_decode, websafe_encode
import structlog

from fidogate.core.errors import CeremonyFailedError, ConflictError, ExpiredChallengeError, InternalError
from fidogate.core.metrics import metadata_lookup_failures_total, record_ceremony
from fidogate.models.credential import DISPLAY_NAME_MAX_LENGTH, UserCredential
from fidogate.models.user import User
from fidogate.services.challenge_store import CeremonyKind, Challenge, ChallengeStore
from fidogate.services.credential_repository import (
    CredentialRepository,
    NewCredential,
    UserProfile,
    hash_credential_id,
    new_user_handle,
    validate_profile,
)
from fidogate.services.metadata_service import MetadataService
from fidogate.services.verification_engine import (
    AttestationVerified,
    RegistrationUser,
    VerificationEngine,
    VerificationFailure,
)

logger = structlog.get_logger()

METADATA_TIMEOUT_SECONDS = 2.0


def _registration_user(user_handle: bytes, display_name: str, first_name: str, last_name: str) -> RegistrationUser:
    return RegistrationUser(
        handle=user_handle,
        name=display_name,
        display_name=f"{first_name} {last_name}",
    )


class RegistrationCeremony:
    def __init__(
        self,
        repository: CredentialRepository,
        challenges: ChallengeStore,
        engine: VerificationEngine,
        metadata: MetadataService,
    ):
        self.repository = repository
        self.challenges = challenges
        self.engine = engine
        self.metadata = metadata

    async def begin_registration(
        self, session_id: str, user: User, attachment: Optional[str] = None
    ) -> Dict[str, Any]:
        """Creation options for adding a credential to an existing user."""
        existing = await self.repository.list_credentials(user.id)
        options, state = self.engine.request_new_credential(
            _registration_user(user.user_handle, user.display_name, user.first_name, user.last_name),
            [credential.credential_id for credential in existing],
            attachment,
        )
        await self.challenges.put(
            session_id,
            CeremonyKind.REGISTRATION,
            state,
            options,
            pending_user={"signup": False, "user_handle": websafe_encode(user.user_handle)},
        )
        logger.info("Registration started", user_id=str(user.id), excluded=len(existing))
        return options

    async def begin_signup(
        self, session_id: str, profile: UserProfile, attachment: Optional[str] = None
    ) -> Tuple[Dict[str, Any], bytes]:
        """Creation options for a user that will only exist once the ceremony completes."""
        validate_profile(profile)
        user_handle = new_user_handle()
        options, state = self.engine.request_new_credential(
            _registration_user(user_handle, profile.display_name, profile.first_name, profile.last_name),
            [],
            attachment,
        )
        await self.challenges.put(
            session_id,
            CeremonyKind.REGISTRATION,
            state,
            options,
            pending_user={
                "signup": True,
                "user_handle": websafe_encode(user_handle),
                "display_name": profile.display_name,
                "first_name": profile.first_name,
                "last_name": profile.last_name,
            },
        )
        logger.info("Signup registration started")
        return options, user_handle

    async def complete_registration(
        self, session_id: str, user: User, response: Mapping[str, Any]
    ) -> UserCredential:
        user_id = user.id
        challenge = await self._take_challenge(session_id, signup=False)
        if websafe_decode(challenge.pending_user["user_handle"]) != user.user_handle:
            # Options were issued to someone else on this session
            record_ceremony("registration", "expired")
            raise ExpiredChallengeError()

        verified = await self._verify(response, challenge)
        new_credential = await self._new_credential(verified)
        try:
            credential = await self.repository.add_credential(user_id, new_credential)
        except ConflictError:
            record_ceremony("registration", "conflict")
            raise

        record_ceremony("registration", "success")
        logger.info("Registration completed", user_id=str(user_id), credential_id=str(credential.id))
        return credential

    async def complete_signup(
        self, session_id: str, response: Mapping[str, Any]
    ) -> Tuple[User, UserCredential]:
        """Creates the pending user and its first credential in one commit."""
        challenge = await self._take_challenge(session_id, signup=True)
        pending = challenge.pending_user
        user_handle = websafe_decode(pending["user_handle"])

        verified = await self._verify(response, challenge, kind="signup")
        new_credential = await self._new_credential(verified)
        profile = UserProfile(
            display_name=pending["display_name"],
            first_name=pending["first_name"],
            last_name=pending["last_name"],
        )
        try:
            user = await self.repository.create_user(
                profile, user_handle=user_handle, credential=new_credential
            )
        except ConflictError:
            record_ceremony("signup", "conflict")
            raise

        credential = await self.repository.find_credential_by_owner_and_raw_id(
            user.id, verified.credential_id
        )
        if credential is None:
            raise InternalError("Credential missing after signup")
        record_ceremony("signup", "success")
        logger.info("Signup completed", user_id=str(user.id), credential_id=str(credential.id))
        return user, credential

    async def _take_challenge(self, session_id: str, signup: bool) -> Challenge:
        kind = "signup" if signup else "registration"
        challenge = await self.challenges.take_and_clear(session_id)
        if (
            challenge is None
            or challenge.kind is not CeremonyKind.REGISTRATION
            or not challenge.pending_user
            or bool(challenge.pending_user.get("signup")) != signup
        ):
            record_ceremony(kind, "expired")
            raise ExpiredChallengeError()
        return challenge

    async def _verify(
        self, response: Mapping[str, Any], challenge: Challenge, kind: str = "registration"
    ) -> AttestationVerified:
        async def is_unique(credential_id: bytes) -> bool:
            return not await self.repository.credential_hash_exists(hash_credential_id(credential_id))

        result = await self.engine.make_new_credential(response, challenge.state, is_unique)
        if isinstance(result, VerificationFailure):
            record_ceremony(kind, "failed")
            raise CeremonyFailedError(result.message, result.inner_message)
        return result

    async def _new_credential(self, verified: AttestationVerified) -> NewCredential:
        return NewCredential(
            credential_id=verified.credential_id,
            public_key=verified.public_key,
            attestation_format_id=verified.attestation_format_id,
            aaguid=verified.aaguid,
            display_name=await self._credential_display_name(verified),
            signature_counter=verified.counter,
        )

    async def _credential_display_name(self, verified: AttestationVerified) -> str:
        description = None
        try:
            entry = await asyncio.wait_for(
                self.metadata.get_entry(verified.aaguid), METADATA_TIMEOUT_SECONDS
            )
            description = entry.description if entry else None
        except Exception as e:
            metadata_lookup_failures_total.inc()
            logger.warning("Metadata lookup failed", aaguid=str(verified.aaguid), error=str(e))

        display_name = description or verified.attestation_format_id
        return display_name[:DISPLAY_NAME_MAX_LENGTH]

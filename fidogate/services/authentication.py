"""
Authentication ceremony: START -> OPTIONS_ISSUED -> COMPLETED.

Completion resolves the user from the handle the authenticator echoes back,
then the credential within that user's scope. Both lookups fail with the same
``UnauthorizedCeremonyError`` so callers cannot tell which one missed.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence
from uuid import UUID

import structlog

from fidogate.core.config import settings
from fidogate.core.errors import (
    CeremonyFailedError,
    ExpiredChallengeError,
    ReplaySuspectedError,
    UnauthorizedCeremonyError,
)
from fidogate.core.metrics import record_ceremony, replay_rejections_total
from fidogate.models.credential import UserCredential
from fidogate.services.challenge_store import CeremonyKind, ChallengeStore
from fidogate.services.credential_repository import CredentialRepository
from fidogate.services.verification_engine import VerificationEngine, VerificationFailure

logger = structlog.get_logger()


@dataclass(frozen=True)
class AuthenticatedCredential:
    user_id: UUID
    credential: UserCredential

    @property
    def credential_id(self) -> UUID:
        return self.credential.id


class AuthenticationCeremony:
    def __init__(
        self,
        repository: CredentialRepository,
        challenges: ChallengeStore,
        engine: VerificationEngine,
        strict_counter: Optional[bool] = None,
    ):
        self.repository = repository
        self.challenges = challenges
        self.engine = engine
        self.strict_counter = (
            settings.SIGNATURE_COUNTER_STRICT if strict_counter is None else strict_counter
        )

    async def begin_authentication(
        self, session_id: str, allow_credentials: Sequence[bytes] = ()
    ) -> Dict[str, Any]:
        """Assertion options; an empty allow list lets the authenticator pick (discoverable flow)."""
        options, state = self.engine.get_assertion_options(allow_credentials)
        await self.challenges.put(session_id, CeremonyKind.AUTHENTICATION, state, options)
        logger.info("Authentication started", allowed=len(allow_credentials))
        return options

    async def complete_authentication(
        self, session_id: str, response: Mapping[str, Any]
    ) -> AuthenticatedCredential:
        try:
            user_handle, raw_credential_id = self.engine.read_assertion_identifiers(response)
        except Exception as e:
            logger.info("Unreadable assertion response", error=str(e))
            record_ceremony("authentication", "unauthorized")
            raise UnauthorizedCeremonyError()

        user = await self.repository.find_user_by_handle(user_handle) if user_handle else None
        credential = (
            await self.repository.find_credential_by_owner_and_raw_id(user.id, raw_credential_id)
            if user is not None
            else None
        )
        if credential is None:
            logger.info("Unknown user handle or credential", known_user=user is not None)
            record_ceremony("authentication", "unauthorized")
            raise UnauthorizedCeremonyError()

        user_id = user.id
        credential_pk = credential.id
        stored_counter = credential.signature_counter

        challenge = await self.challenges.take_and_clear(session_id)
        if challenge is None or challenge.kind is not CeremonyKind.AUTHENTICATION:
            record_ceremony("authentication", "expired")
            raise ExpiredChallengeError()

        async def owns_credential(handle: bytes, credential_id: bytes) -> bool:
            return (
                handle == user.user_handle
                and credential_id == credential.credential_id
                and credential.user_id == user_id
            )

        result = await self.engine.make_assertion(
            response,
            challenge.state,
            credential.public_key,
            stored_counter,
            owns_credential,
        )
        if isinstance(result, VerificationFailure):
            record_ceremony("authentication", "failed")
            raise CeremonyFailedError(result.message, result.inner_message)

        if not self.strict_counter and result.counter == 0 and stored_counter == 0:
            # Authenticator does not implement a signature counter
            logger.info("Counterless authenticator", credential_id=str(credential_pk))
        else:
            try:
                credential = await self.repository.update_signature_counter(credential_pk, result.counter)
            except ReplaySuspectedError:
                replay_rejections_total.inc()
                record_ceremony("authentication", "replay")
                logger.warning(
                    "Possible cloned authenticator",
                    user_id=str(user_id),
                    credential_id=str(credential_pk),
                )
                raise

        record_ceremony("authentication", "success")
        logger.info("Authentication completed", user_id=str(user_id), credential_id=str(credential_pk))
        return AuthenticatedCredential(user_id=user_id, credential=credential)

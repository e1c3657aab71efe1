"""
Adapter around python-fido2's ``Fido2Server``.

Completion calls never raise for a rejected attestation or assertion. They
return either a verified result or a ``VerificationFailure`` holding only the
error message and its cause's message, and the orchestrators map that into
``CeremonyFailedError`` in one place.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence, Tuple, Union
from uuid import UUID

import fido2.features
from fido2 import cbor
from fido2.cose import CoseKey
from fido2.server import Fido2Server
from fido2.webauthn import (
    AttestationConveyancePreference,
    AttestedCredentialData,
    AuthenticationResponse,
    AuthenticatorAttachment,
    PublicKeyCredentialDescriptor,
    PublicKeyCredentialRpEntity,
    PublicKeyCredentialType,
    PublicKeyCredentialUserEntity,
    RegistrationResponse,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)
import structlog

from fidogate.core.config import settings

# Options and responses travel as WebAuthn JSON (base64url strings)
fido2.features.webauthn_json_mapping.enabled = True

logger = structlog.get_logger()

UniquenessCheck = Callable[[bytes], Awaitable[bool]]
OwnershipCheck = Callable[[bytes, bytes], Awaitable[bool]]

# The stored public key is all assertion verification needs
_UNKNOWN_AAGUID = bytes(16)


@dataclass(frozen=True)
class RegistrationUser:
    handle: bytes
    name: str
    display_name: str


@dataclass(frozen=True)
class AttestationVerified:
    credential_id: bytes
    public_key: bytes
    aaguid: UUID
    attestation_format_id: str
    counter: int


@dataclass(frozen=True)
class AssertionVerified:
    credential_id: bytes
    counter: int


@dataclass(frozen=True)
class VerificationFailure:
    message: str
    inner_message: Optional[str] = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> "VerificationFailure":
        cause = exc.__cause__ or exc.__context__
        return cls(
            message=str(exc) or type(exc).__name__,
            inner_message=(str(cause) or type(cause).__name__) if cause else None,
        )


AttestationResult = Union[AttestationVerified, VerificationFailure]
AssertionResult = Union[AssertionVerified, VerificationFailure]


class VerificationEngine(ABC):
    """Contract the ceremony orchestrators depend on."""

    @abstractmethod
    def request_new_credential(
        self,
        user: RegistrationUser,
        exclude_credentials: Sequence[bytes],
        attachment: Optional[str] = None,
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        pass

    @abstractmethod
    async def make_new_credential(
        self,
        response: Mapping[str, Any],
        state: Dict[str, Any],
        is_unique: UniquenessCheck,
    ) -> AttestationResult:
        pass

    @abstractmethod
    def get_assertion_options(
        self, allow_credentials: Sequence[bytes] = ()
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        pass

    @abstractmethod
    def read_assertion_identifiers(
        self, response: Mapping[str, Any]
    ) -> Tuple[Optional[bytes], bytes]:
        pass

    @abstractmethod
    async def make_assertion(
        self,
        response: Mapping[str, Any],
        state: Dict[str, Any],
        public_key: bytes,
        stored_counter: int,
        owns_credential: OwnershipCheck,
    ) -> AssertionResult:
        pass


def _descriptors(credential_ids: Sequence[bytes]):
    return [
        PublicKeyCredentialDescriptor(type=PublicKeyCredentialType.PUBLIC_KEY, id=credential_id)
        for credential_id in credential_ids
    ]


class Fido2VerificationEngine(VerificationEngine):
    def __init__(
        self,
        rp_id: Optional[str] = None,
        rp_name: Optional[str] = None,
        origins: Optional[Sequence[str]] = None,
        verify_attestation: Optional[Callable] = None,
    ):
        rp = PublicKeyCredentialRpEntity(
            id=rp_id or settings.FIDO2_RP_ID, name=rp_name or settings.FIDO2_RP_NAME
        )
        allowed_origins = set(origins if origins is not None else settings.fido2_origins)
        self.server = Fido2Server(
            rp,
            attestation=AttestationConveyancePreference.DIRECT,
            verify_origin=(lambda origin: origin in allowed_origins) if allowed_origins else None,
            verify_attestation=verify_attestation,
        )

    def request_new_credential(self, user, exclude_credentials, attachment=None):
        user_entity = PublicKeyCredentialUserEntity(
            id=user.handle, name=user.name, display_name=user.display_name
        )
        options, state = self.server.register_begin(
            user=user_entity,
            credentials=_descriptors(exclude_credentials),
            resident_key_requirement=ResidentKeyRequirement.REQUIRED,
            user_verification=UserVerificationRequirement.REQUIRED,
            authenticator_attachment=AuthenticatorAttachment(attachment) if attachment else None,
            extensions={"credProps": True},
        )
        return dict(options), dict(state)

    async def make_new_credential(self, response, state, is_unique):
        try:
            registration = RegistrationResponse.from_dict(response)
            auth_data = self.server.register_complete(state, registration)
        except Exception as e:
            logger.info("Attestation rejected", error=str(e))
            return VerificationFailure.from_exception(e)

        credential_data = auth_data.credential_data
        if credential_data is None:
            return VerificationFailure("Attestation carried no credential data")

        credential_id = bytes(credential_data.credential_id)
        if not await is_unique(credential_id):
            return VerificationFailure("Credential is already registered")

        return AttestationVerified(
            credential_id=credential_id,
            public_key=cbor.encode(dict(credential_data.public_key)),
            aaguid=UUID(bytes=bytes(credential_data.aaguid)),
            attestation_format_id=registration.response.attestation_object.fmt,
            counter=auth_data.counter,
        )

    def get_assertion_options(self, allow_credentials=()):
        options, state = self.server.authenticate_begin(
            credentials=_descriptors(allow_credentials) or None,
            user_verification=UserVerificationRequirement.REQUIRED,
        )
        return dict(options), dict(state)

    def read_assertion_identifiers(self, response):
        authentication = AuthenticationResponse.from_dict(response)
        user_handle = authentication.response.user_handle
        return (
            bytes(user_handle) if user_handle else None,
            bytes(authentication.id),
        )

    async def make_assertion(self, response, state, public_key, stored_counter, owns_credential):
        try:
            authentication = AuthenticationResponse.from_dict(response)
        except Exception as e:
            return VerificationFailure.from_exception(e)

        credential_id = bytes(authentication.id)
        user_handle = authentication.response.user_handle
        if not user_handle or not await owns_credential(bytes(user_handle), credential_id):
            return VerificationFailure("Credential does not belong to the user")

        try:
            stored = AttestedCredentialData.create(
                _UNKNOWN_AAGUID, credential_id, CoseKey.parse(cbor.decode(public_key))
            )
            self.server.authenticate_complete(state, [stored], authentication)
        except Exception as e:
            logger.info("Assertion rejected", error=str(e))
            return VerificationFailure.from_exception(e)

        counter = authentication.response.authenticator_data.counter
        if counter <= stored_counter:
            # Counter enforcement is the repository's job; just note it here
            logger.warning(
                "Assertion counter did not advance",
                stored_counter=stored_counter,
                counter=counter,
            )
        return AssertionVerified(credential_id=credential_id, counter=counter)

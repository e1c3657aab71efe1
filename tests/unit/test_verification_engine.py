import hashlib
from unittest.mock import AsyncMock

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from fido2 import cbor
from fido2.cose import ES256, CoseKey
from fido2.utils import websafe_decode, websafe_encode
from fido2.webauthn import (
    AttestationObject,
    AttestedCredentialData,
    AuthenticatorData,
    CollectedClientData,
)

from fidogate.services.verification_engine import (
    AssertionVerified,
    AttestationVerified,
    Fido2VerificationEngine,
    RegistrationUser,
    VerificationEngine,
    VerificationFailure,
)

HANDLE = b"\x01" * 64
ORIGIN = "https://example.com"
RP_ID_HASH = hashlib.sha256(b"example.com").digest()
FLAGS = AuthenticatorData.FLAG.UP | AuthenticatorData.FLAG.UV


@pytest.fixture
def engine():
    return Fido2VerificationEngine(
        rp_id="example.com", rp_name="Example", origins=[ORIGIN]
    )


class SoftAuthenticator:
    """Software ES256 authenticator producing none-attestation registrations."""

    def __init__(self, credential_id: bytes = b"soft-credential-1"):
        self.credential_id = credential_id
        self.private_key = ec.generate_private_key(ec.SECP256R1())

    def _client_data(self, kind: str, options) -> CollectedClientData:
        challenge = websafe_decode(options["publicKey"]["challenge"])
        return CollectedClientData.create(type=kind, challenge=challenge, origin=ORIGIN)

    def attest(self, options):
        client_data = self._client_data("webauthn.create", options)
        credential_data = AttestedCredentialData.create(
            bytes(16),
            self.credential_id,
            ES256.from_cryptography_key(self.private_key.public_key()),
        )
        auth_data = AuthenticatorData.create(
            RP_ID_HASH, FLAGS | AuthenticatorData.FLAG.AT, 0, credential_data
        )
        attestation = AttestationObject.create("none", auth_data, {})
        return {
            "id": websafe_encode(self.credential_id),
            "rawId": websafe_encode(self.credential_id),
            "type": "public-key",
            "response": {
                "clientDataJSON": websafe_encode(client_data),
                "attestationObject": websafe_encode(attestation),
            },
            "clientExtensionResults": {},
        }

    def assert_(self, options, user_handle: bytes, counter: int):
        client_data = self._client_data("webauthn.get", options)
        auth_data = AuthenticatorData.create(RP_ID_HASH, FLAGS, counter)
        signature = self.private_key.sign(
            bytes(auth_data) + client_data.hash, ec.ECDSA(hashes.SHA256())
        )
        return {
            "id": websafe_encode(self.credential_id),
            "rawId": websafe_encode(self.credential_id),
            "type": "public-key",
            "response": {
                "clientDataJSON": websafe_encode(client_data),
                "authenticatorData": websafe_encode(auth_data),
                "signature": websafe_encode(signature),
                "userHandle": websafe_encode(user_handle),
            },
            "clientExtensionResults": {},
        }


@pytest.mark.asyncio
async def test_registration_then_authentication_with_real_signatures(engine):
    # Arrange
    authenticator = SoftAuthenticator()
    user = RegistrationUser(handle=HANDLE, name="alice", display_name="Alice Liddell")
    creation_options, creation_state = engine.request_new_credential(user, [])
    is_unique = AsyncMock(return_value=True)

    # Act: register
    attested = await engine.make_new_credential(
        authenticator.attest(creation_options), creation_state, is_unique
    )

    # Assert
    assert isinstance(attested, AttestationVerified)
    assert attested.credential_id == authenticator.credential_id
    assert attested.attestation_format_id == "none"
    assert attested.counter == 0
    assert isinstance(CoseKey.parse(cbor.decode(attested.public_key)), ES256)
    is_unique.assert_awaited_once_with(authenticator.credential_id)

    # Act: authenticate
    request_options, request_state = engine.get_assertion_options()
    assertion = authenticator.assert_(request_options, HANDLE, counter=5)
    identifiers = engine.read_assertion_identifiers(assertion)
    owns_credential = AsyncMock(return_value=True)
    verified = await engine.make_assertion(
        assertion, request_state, attested.public_key, attested.counter, owns_credential
    )

    # Assert
    assert identifiers == (HANDLE, authenticator.credential_id)
    assert verified == AssertionVerified(credential_id=authenticator.credential_id, counter=5)
    owns_credential.assert_awaited_once_with(HANDLE, authenticator.credential_id)


@pytest.mark.asyncio
async def test_assertion_signed_by_another_key_is_a_failure_value(engine):
    registered = SoftAuthenticator()
    creation_options, creation_state = engine.request_new_credential(
        RegistrationUser(handle=HANDLE, name="alice", display_name="Alice Liddell"), []
    )
    attested = await engine.make_new_credential(
        registered.attest(creation_options), creation_state, AsyncMock(return_value=True)
    )
    impostor = SoftAuthenticator(credential_id=registered.credential_id)

    request_options, request_state = engine.get_assertion_options()
    result = await engine.make_assertion(
        impostor.assert_(request_options, HANDLE, counter=5),
        request_state,
        attested.public_key,
        0,
        AsyncMock(return_value=True),
    )

    assert isinstance(result, VerificationFailure)


@pytest.mark.asyncio
async def test_attestation_for_another_challenge_is_a_failure_value(engine):
    user = RegistrationUser(handle=HANDLE, name="alice", display_name="Alice Liddell")
    stale_options, _ = engine.request_new_credential(user, [])
    _, current_state = engine.request_new_credential(user, [])

    result = await engine.make_new_credential(
        SoftAuthenticator().attest(stale_options), current_state, AsyncMock(return_value=True)
    )

    assert isinstance(result, VerificationFailure)


def test_creation_options(engine):
    user = RegistrationUser(handle=HANDLE, name="alice", display_name="Alice Liddell")

    options, state = engine.request_new_credential(user, [b"C1"], "platform")

    public_key = options["publicKey"]
    assert public_key["rp"]["id"] == "example.com"
    assert public_key["user"]["id"] == websafe_encode(HANDLE)
    assert public_key["user"]["name"] == "alice"
    assert public_key["user"]["displayName"] == "Alice Liddell"
    assert [c["id"] for c in public_key["excludeCredentials"]] == [websafe_encode(b"C1")]
    assert public_key["authenticatorSelection"]["residentKey"] == "required"
    assert public_key["authenticatorSelection"]["userVerification"] == "required"
    assert public_key["authenticatorSelection"]["authenticatorAttachment"] == "platform"
    assert public_key["attestation"] == "direct"
    assert state["challenge"] == public_key["challenge"]


def test_every_ceremony_gets_a_fresh_challenge(engine):
    user = RegistrationUser(handle=HANDLE, name="alice", display_name="Alice Liddell")

    _, first = engine.request_new_credential(user, [])
    _, second = engine.request_new_credential(user, [])

    assert first["challenge"] != second["challenge"]


def test_assertion_options_for_discoverable_flow(engine):
    options, state = engine.get_assertion_options()

    public_key = options["publicKey"]
    assert public_key["rpId"] == "example.com"
    assert not public_key.get("allowCredentials")
    assert public_key["userVerification"] == "required"
    assert state["challenge"] == public_key["challenge"]


@pytest.mark.asyncio
async def test_malformed_attestation_is_a_failure_value(engine):
    _, state = engine.request_new_credential(
        RegistrationUser(handle=HANDLE, name="alice", display_name="Alice Liddell"), []
    )
    is_unique = AsyncMock(return_value=True)

    result = await engine.make_new_credential(
        {"id": "AA", "rawId": "AA", "type": "public-key", "response": {}}, state, is_unique
    )

    assert isinstance(result, VerificationFailure)
    assert result.message
    is_unique.assert_not_awaited()


@pytest.mark.asyncio
async def test_malformed_assertion_is_a_failure_value(engine):
    _, state = engine.get_assertion_options()
    owns_credential = AsyncMock(return_value=True)

    result = await engine.make_assertion(
        {"id": "AA", "rawId": "AA", "type": "public-key", "response": {}},
        state,
        b"",
        0,
        owns_credential,
    )

    assert isinstance(result, VerificationFailure)
    owns_credential.assert_not_awaited()


def test_unreadable_assertion_identifiers_raise(engine):
    with pytest.raises(Exception):
        engine.read_assertion_identifiers({"id": "AA", "rawId": "AA", "response": {}})


def test_failure_keeps_inner_message():
    try:
        try:
            raise ValueError("bad ECDSA")
        except ValueError as e:
            raise RuntimeError("Invalid signature") from e
    except RuntimeError as e:
        failure = VerificationFailure.from_exception(e)

    assert failure.message == "Invalid signature"
    assert failure.inner_message == "bad ECDSA"


def test_engine_without_assertion_support_cannot_be_built():
    class RegistrationOnly(VerificationEngine):
        def request_new_credential(self, user, exclude_credentials, attachment=None):
            return {}, {}

        async def make_new_credential(self, response, state, is_unique):
            return VerificationFailure("unsupported")

    with pytest.raises(TypeError):
        RegistrationOnly()

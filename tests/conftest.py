import os

# Test environment; must be in place before fidogate reads its settings
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["CHALLENGE_BACKEND"] = "memory"
os.environ["COOKIE_SECURE"] = "false"
os.environ["SECRET_KEY"] = "test_secret_key_for_unit_tests_32chars"
os.environ["LOG_JSON"] = "false"
os.environ["FIDO2_RP_ID"] = "example.com"

from typing import Any, AsyncGenerator, Dict, Optional
from uuid import UUID

import pytest
from fido2.utils import websafe_decode, websafe_encode
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from fidogate.main import app
from fidogate.api.dependencies import get_challenge_store, get_metadata_service, get_verification_engine
from fidogate.db.postgres import Base, get_db
from fidogate.models import credential, user  # noqa: F401
from fidogate.services.challenge_store import InMemoryChallengeStore
from fidogate.services.credential_repository import CredentialRepository
from fidogate.services.metadata_service import NullMetadataService
from fidogate.services.verification_engine import (
    AssertionVerified,
    AttestationVerified,
    VerificationEngine,
    VerificationFailure,
)

STUB_AAGUID = UUID("cb69481e-8ff7-4039-93ec-0a2729a154a8")


class StubVerificationEngine(VerificationEngine):
    """
    Accepts any well-formed response without checking signatures.

    The counter an authenticator would report is read from
    ``response["response"]["counter"]``. Set ``fail_with`` to reject.
    """

    def __init__(self):
        self.fail_with: Optional[VerificationFailure] = None
        self.attestation_format = "packed"
        self.aaguid = STUB_AAGUID
        self.requests = []
        self._issued = 0

    def _state(self) -> Dict[str, Any]:
        self._issued += 1
        return {"challenge": f"challenge-{self._issued}", "user_verification": "required"}

    def request_new_credential(self, user, exclude_credentials, attachment=None):
        self.requests.append((user, list(exclude_credentials), attachment))
        state = self._state()
        public_key = {
            "rp": {"id": "example.com", "name": "fidogate"},
            "user": {
                "id": websafe_encode(user.handle),
                "name": user.name,
                "displayName": user.display_name,
            },
            "challenge": state["challenge"],
            "excludeCredentials": [
                {"type": "public-key", "id": websafe_encode(c)} for c in exclude_credentials
            ],
        }
        if attachment:
            public_key["authenticatorSelection"] = {"authenticatorAttachment": attachment}
        return {"publicKey": public_key}, state

    async def make_new_credential(self, response, state, is_unique):
        if self.fail_with:
            return self.fail_with
        credential_id = websafe_decode(response["rawId"])
        if not await is_unique(credential_id):
            return VerificationFailure("Credential is already registered")
        return AttestationVerified(
            credential_id=credential_id,
            public_key=b"cose:" + credential_id,
            aaguid=self.aaguid,
            attestation_format_id=self.attestation_format,
            counter=response["response"].get("counter", 0),
        )

    def get_assertion_options(self, allow_credentials=()):
        state = self._state()
        options = {
            "publicKey": {
                "challenge": state["challenge"],
                "rpId": "example.com",
                "allowCredentials": [
                    {"type": "public-key", "id": websafe_encode(c)} for c in allow_credentials
                ],
                "userVerification": "required",
            }
        }
        return options, state

    def read_assertion_identifiers(self, response):
        user_handle = response["response"].get("userHandle")
        return (
            websafe_decode(user_handle) if user_handle else None,
            websafe_decode(response["rawId"]),
        )

    async def make_assertion(self, response, state, public_key, stored_counter, owns_credential):
        if self.fail_with:
            return self.fail_with
        user_handle, credential_id = self.read_assertion_identifiers(response)
        if not await owns_credential(user_handle, credential_id):
            return VerificationFailure("Credential does not belong to the user")
        return AssertionVerified(credential_id=credential_id, counter=response["response"]["counter"])


def build_attestation(credential_id: bytes, counter: int = 0) -> Dict[str, Any]:
    encoded = websafe_encode(credential_id)
    return {
        "id": encoded,
        "rawId": encoded,
        "type": "public-key",
        "response": {
            "clientDataJSON": "e30",
            "attestationObject": "oA",
            "counter": counter,
        },
    }


def build_assertion(credential_id: bytes, user_handle: Optional[bytes], counter: int) -> Dict[str, Any]:
    encoded = websafe_encode(credential_id)
    response: Dict[str, Any] = {
        "clientDataJSON": "e30",
        "authenticatorData": "AA",
        "signature": "AA",
        "counter": counter,
    }
    if user_handle is not None:
        response["userHandle"] = websafe_encode(user_handle)
    return {"id": encoded, "rawId": encoded, "type": "public-key", "response": response}


@pytest.fixture
def attestation_for():
    return build_attestation


@pytest.fixture
def assertion_for():
    return build_assertion


@pytest.fixture
async def db_engine():
    """A fresh in-memory database per test."""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(autoflush=False, bind=db_engine, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Fixture to get a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def repository(db_session) -> CredentialRepository:
    return CredentialRepository(db_session)


@pytest.fixture
def challenge_store() -> InMemoryChallengeStore:
    return InMemoryChallengeStore(ttl_seconds=300)


@pytest.fixture
def verification_engine() -> StubVerificationEngine:
    return StubVerificationEngine()


@pytest.fixture
def metadata_service() -> NullMetadataService:
    return NullMetadataService()


@pytest.fixture
async def async_client(
    session_factory, challenge_store, verification_engine, metadata_service
) -> AsyncGenerator[AsyncClient, None]:
    """Fixture for an async test client wired to the test doubles."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_challenge_store] = lambda: challenge_store
    app.dependency_overrides[get_verification_engine] = lambda: verification_engine
    app.dependency_overrides[get_metadata_service] = lambda: metadata_service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        yield client

    app.dependency_overrides.clear()

import secrets
from functools import lru_cache
from typing import Optional

from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fidogate.core.config import ChallengeBackend, settings
from fidogate.core.security import create_session_token, decode_session_token
from fidogate.db.postgres import get_db
from fidogate.db.redis import redis_client
from fidogate.models.user import User
from fidogate.schemas.webauthn import SessionResponse
from fidogate.services.authentication import AuthenticationCeremony
from fidogate.services.challenge_store import ChallengeStore, InMemoryChallengeStore, RedisChallengeStore
from fidogate.services.credential_repository import CredentialRepository
from fidogate.services.identity import IdentityIssuer, SessionIdentity
from fidogate.services.metadata_service import MetadataService, build_metadata_service
from fidogate.services.registration import RegistrationCeremony
from fidogate.services.verification_engine import Fido2VerificationEngine, VerificationEngine

logger = structlog.get_logger()

CEREMONY_COOKIE = "fidogate_ceremony"
SESSION_COOKIE = "fidogate_session"

bearer_scheme = HTTPBearer(auto_error=False)


@lru_cache
def get_challenge_store() -> ChallengeStore:
    if settings.CHALLENGE_BACKEND is ChallengeBackend.MEMORY:
        return InMemoryChallengeStore()
    return RedisChallengeStore(redis_client)


@lru_cache
def get_verification_engine() -> VerificationEngine:
    return Fido2VerificationEngine()


@lru_cache
def get_metadata_service() -> MetadataService:
    return build_metadata_service()


@lru_cache
def get_identity_issuer() -> IdentityIssuer:
    return IdentityIssuer()


def get_repository(db: AsyncSession = Depends(get_db)) -> CredentialRepository:
    return CredentialRepository(db)


def get_registration_ceremony(
    repository: CredentialRepository = Depends(get_repository),
    challenges: ChallengeStore = Depends(get_challenge_store),
    engine: VerificationEngine = Depends(get_verification_engine),
    metadata: MetadataService = Depends(get_metadata_service),
) -> RegistrationCeremony:
    return RegistrationCeremony(repository, challenges, engine, metadata)


def get_authentication_ceremony(
    repository: CredentialRepository = Depends(get_repository),
    challenges: ChallengeStore = Depends(get_challenge_store),
    engine: VerificationEngine = Depends(get_verification_engine),
) -> AuthenticationCeremony:
    return AuthenticationCeremony(repository, challenges, engine)


def get_ceremony_session(request: Request, response: Response) -> str:
    """Ceremony session id for begin calls; minted on first use."""
    session_id = request.cookies.get(CEREMONY_COOKIE)
    if not session_id:
        session_id = secrets.token_urlsafe(32)
        response.set_cookie(
            CEREMONY_COOKIE,
            session_id,
            max_age=settings.CHALLENGE_TTL_SECONDS,
            httponly=True,
            secure=settings.COOKIE_SECURE,
            samesite="strict",
        )
    return session_id


def get_existing_ceremony_session(request: Request) -> str:
    """Ceremony session id for completion calls; an empty id matches no challenge."""
    return request.cookies.get(CEREMONY_COOKIE, "")


async def get_current_identity(
    request: Request,
    bearer: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> SessionIdentity:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    token = request.cookies.get(SESSION_COOKIE) or (bearer.credentials if bearer else None)
    if not token:
        raise credentials_exception

    identity = decode_session_token(token)
    if identity is None:
        raise credentials_exception
    structlog.contextvars.bind_contextvars(user_id=str(identity.user_id))
    return identity


async def get_current_user(
    identity: SessionIdentity = Depends(get_current_identity),
    repository: CredentialRepository = Depends(get_repository),
) -> User:
    user = await repository.find_user_by_id(identity.user_id)
    if user is None:
        logger.warning("User not found from session", user_id=str(identity.user_id))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    return user


def sign_in(response: Response, identity: SessionIdentity) -> SessionResponse:
    """Hand the issued identity to the client as a session cookie (and bearer token)."""
    token = create_session_token(identity)
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=settings.SESSION_EXPIRE_MINUTES * 60,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict",
    )
    response.delete_cookie(CEREMONY_COOKIE)
    return SessionResponse(
        user_id=identity.user_id,
        credential_id=identity.credential_id,
        method=identity.method,
        access_token=token,
    )


def sign_out(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE)

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Response, status
import structlog

from fidogate.api.dependencies import (
    get_authentication_ceremony,
    get_ceremony_session,
    get_current_identity,
    get_current_user,
    get_existing_ceremony_session,
    get_identity_issuer,
    get_registration_ceremony,
    sign_in,
    sign_out,
)
from fidogate.core.errors import ANONYMOUS_CEREMONY_ERRORS, UnauthorizedCeremonyError
from fidogate.models.user import User
from fidogate.schemas.credential import UserCredentialResponse
from fidogate.schemas.webauthn import (
    AssertionResponse,
    AttestationResponse,
    AuthenticatorAttachmentPreference,
    SessionResponse,
    SignupStart,
)
from fidogate.services.authentication import AuthenticationCeremony
from fidogate.services.credential_repository import UserProfile
from fidogate.services.identity import IdentityIssuer, SessionIdentity
from fidogate.services.registration import RegistrationCeremony

router = APIRouter()
logger = structlog.get_logger()


@router.post("/signup-start", status_code=status.HTTP_200_OK)
async def signup_start(
    *,
    signup: SignupStart,
    session_id: str = Depends(get_ceremony_session),
    ceremony: RegistrationCeremony = Depends(get_registration_ceremony),
) -> Dict[str, Any]:
    """Begin registration for a new user; the user is created on finish."""
    options, _ = await ceremony.begin_signup(
        session_id,
        UserProfile(
            display_name=signup.display_name,
            first_name=signup.first_name,
            last_name=signup.last_name,
        ),
        signup.attachment.value if signup.attachment else None,
    )
    return options


@router.post("/signup-finish", response_model=SessionResponse)
async def signup_finish(
    *,
    attestation: AttestationResponse,
    response: Response,
    session_id: str = Depends(get_existing_ceremony_session),
    ceremony: RegistrationCeremony = Depends(get_registration_ceremony),
    issuer: IdentityIssuer = Depends(get_identity_issuer),
) -> SessionResponse:
    """Complete signup and sign the new user in."""
    try:
        user, credential = await ceremony.complete_signup(session_id, attestation.model_dump())
    except ANONYMOUS_CEREMONY_ERRORS as e:
        logger.info("Signup rejected", reason=type(e).__name__, detail=e.public_message)
        raise UnauthorizedCeremonyError()

    return sign_in(response, issuer.issue(user.id, credential.id))


@router.get("/register", status_code=status.HTTP_200_OK)
async def register_begin(
    *,
    attachment: Optional[AuthenticatorAttachmentPreference] = None,
    session_id: str = Depends(get_ceremony_session),
    current_user: User = Depends(get_current_user),
    ceremony: RegistrationCeremony = Depends(get_registration_ceremony),
) -> Dict[str, Any]:
    """Begin adding a credential to the signed-in user."""
    return await ceremony.begin_registration(
        session_id, current_user, attachment.value if attachment else None
    )


@router.post("/register", response_model=UserCredentialResponse)
async def register_complete(
    *,
    attestation: AttestationResponse,
    session_id: str = Depends(get_existing_ceremony_session),
    current_user: User = Depends(get_current_user),
    ceremony: RegistrationCeremony = Depends(get_registration_ceremony),
) -> Any:
    """Complete adding a credential to the signed-in user."""
    return await ceremony.complete_registration(session_id, current_user, attestation.model_dump())


@router.get("/authenticate", status_code=status.HTTP_200_OK)
async def authenticate_begin(
    *,
    session_id: str = Depends(get_ceremony_session),
    ceremony: AuthenticationCeremony = Depends(get_authentication_ceremony),
) -> Dict[str, Any]:
    """Begin sign in with a discoverable credential."""
    return await ceremony.begin_authentication(session_id)


@router.post("/authenticate", response_model=SessionResponse)
async def authenticate_complete(
    *,
    assertion: AssertionResponse,
    response: Response,
    session_id: str = Depends(get_existing_ceremony_session),
    ceremony: AuthenticationCeremony = Depends(get_authentication_ceremony),
    issuer: IdentityIssuer = Depends(get_identity_issuer),
) -> SessionResponse:
    """Complete sign in and issue a session."""
    try:
        result = await ceremony.complete_authentication(session_id, assertion.model_dump())
    except ANONYMOUS_CEREMONY_ERRORS as e:
        logger.info("Sign in rejected", reason=type(e).__name__, detail=e.public_message)
        raise UnauthorizedCeremonyError()

    return sign_in(response, issuer.issue(result.user_id, result.credential_id))


@router.post("/logout", status_code=status.HTTP_200_OK)
async def logout(
    response: Response,
    identity: SessionIdentity = Depends(get_current_identity),
) -> Dict[str, str]:
    """Sign out by clearing the session cookie."""
    sign_out(response)
    logger.info("User logged out", user_id=str(identity.user_id))
    return {"status": "signed out"}

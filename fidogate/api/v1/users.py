from typing import Any, List
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
import structlog

from fidogate.api.dependencies import get_current_identity, get_current_user, get_repository
from fidogate.core.errors import ForbiddenError, NotFoundError
from fidogate.models.user import User
from fidogate.schemas.credential import UserCredentialResponse
from fidogate.schemas.user import UserCreate, UserResponse, UserUpdate
from fidogate.services.credential_repository import CredentialRepository, UserProfile
from fidogate.services.identity import SessionIdentity

router = APIRouter()
logger = structlog.get_logger()


def _profile(user_in: UserCreate | UserUpdate) -> UserProfile:
    return UserProfile(
        display_name=user_in.display_name,
        first_name=user_in.first_name,
        last_name=user_in.last_name,
    )


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    *,
    user_in: UserCreate,
    repository: CredentialRepository = Depends(get_repository),
) -> Any:
    """
    Create a user without a credential.
    """
    user = await repository.create_user(_profile(user_in))
    logger.info("User registered", user_id=str(user.id))
    return user


@router.get("/me", response_model=UserResponse)
async def read_user_me(current_user: User = Depends(get_current_user)) -> Any:
    """
    Get current user.
    """
    return current_user


@router.get("/me/credentials", response_model=List[UserCredentialResponse])
async def read_my_credentials(
    identity: SessionIdentity = Depends(get_current_identity),
    repository: CredentialRepository = Depends(get_repository),
) -> Any:
    return await repository.list_credentials(identity.user_id)


@router.get("/me/credentials/current", response_model=UserCredentialResponse)
async def read_current_credential(
    identity: SessionIdentity = Depends(get_current_identity),
    repository: CredentialRepository = Depends(get_repository),
) -> Any:
    """
    The credential that authenticated this session.
    """
    credential = await repository.get_credential(identity.user_id, identity.credential_id)
    if credential is None:
        raise NotFoundError("Credential not found")
    return credential


@router.delete("/me/credentials/{credential_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_my_credential(
    credential_id: UUID,
    identity: SessionIdentity = Depends(get_current_identity),
    repository: CredentialRepository = Depends(get_repository),
) -> Response:
    # Someone else's credential and a missing one answer the same way
    if not await repository.delete_credential(identity.user_id, credential_id):
        raise NotFoundError("Credential not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{user_id}", response_model=UserResponse)
async def read_user(
    user_id: UUID,
    identity: SessionIdentity = Depends(get_current_identity),
    repository: CredentialRepository = Depends(get_repository),
) -> Any:
    if identity.user_id != user_id:
        raise ForbiddenError()
    user = await repository.find_user_by_id(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: UUID,
    user_in: UserUpdate,
    identity: SessionIdentity = Depends(get_current_identity),
    repository: CredentialRepository = Depends(get_repository),
) -> Any:
    if identity.user_id != user_id:
        raise ForbiddenError()
    user = await repository.update_user(user_id, _profile(user_in))
    if user is None:
        raise NotFoundError("User not found")
    return user

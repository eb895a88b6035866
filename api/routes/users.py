"""
User API Routes

This module provides the REST endpoints for face-based registration, login
and user management:
- POST /users/register: Register with email + selfie
- POST /users/login: Log in with email + selfie, returns a session token
- GET /users/me: Identity of the bearer token
- GET /users: List all users
- GET /users/{user_id}: Get a user
- DELETE /users/{user_id}: Delete a user

Selfies arrive as multipart files. A file in the "encryptedImage" field is a
client-encrypted envelope and wins over a plain "selfie" file.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from email_validator import EmailNotValidError, validate_email
from starlette.concurrency import run_in_threadpool

from api.schemas import (
    DeleteIdentityResponse,
    ErrorResponse,
    IdentityListResponse,
    IdentityResponse,
    LoginResponse,
    TokenClaims,
)
from core.errors import ServiceError
from core.face_auth_service import FaceAuthService, get_face_auth_service
from core.selfie_decryption import UploadPayload

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/users",
    tags=["users"],
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)

bearer_scheme = HTTPBearer(auto_error=False)


def get_service() -> FaceAuthService:
    """Dependency returning the process-wide FaceAuthService."""
    return get_face_auth_service()


def check_email(email: str) -> str:
    """
    Validate the address syntax and return it exactly as submitted.

    The normalized form from email-validator is discarded: the submitted
    string is part of the selfie encryption keys and is stored as is.
    """
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError as e:
        raise ServiceError.validation_failed(
            "Validation error", {"issues": [{"loc": ["body", "email"], "msg": str(e)}]}
        ) from e
    return email


async def read_upload(
    selfie: Optional[UploadFile],
    encrypted_image: Optional[UploadFile],
) -> Optional[UploadPayload]:
    """
    Build an UploadPayload from the multipart files.

    Returns:
        The payload, or None if neither file was sent.
    """
    if encrypted_image is not None:
        data = await encrypted_image.read()
        return UploadPayload.encrypted(data, encrypted_image.filename)
    if selfie is not None:
        data = await selfie.read()
        return UploadPayload.plain(data, selfie.filename)
    return None


@router.post(
    "/register",
    response_model=IdentityResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register(
    email: str = Form(...),
    selfie: Optional[UploadFile] = File(None),
    encrypted_image: Optional[UploadFile] = File(None, alias="encryptedImage"),
    original_image: Optional[UploadFile] = File(None, alias="originalImage"),
    service: FaceAuthService = Depends(get_service),
):
    """
    Register a new user with a selfie.

    Expects multipart/form-data with "email" and either "selfie" (plain image)
    or "encryptedImage" (client-encrypted envelope). "originalImage" is
    accepted for client compatibility and ignored.
    """
    check_email(email)
    upload = await read_upload(selfie, encrypted_image)
    if upload is None:
        raise ServiceError.validation_failed(
            "No selfie provided for registration. Please capture a photo to create your account."
        )

    identity = await run_in_threadpool(service.register, email, upload)
    return IdentityResponse(**identity.to_public_dict())


@router.post("/login", response_model=LoginResponse)
async def login(
    email: str = Form(...),
    selfie: Optional[UploadFile] = File(None),
    encrypted_image: Optional[UploadFile] = File(None, alias="encryptedImage"),
    original_image: Optional[UploadFile] = File(None, alias="originalImage"),
    service: FaceAuthService = Depends(get_service),
):
    """
    Log in by face.

    Returns the user and a signed session token on a successful match.
    """
    check_email(email)
    upload = await read_upload(selfie, encrypted_image)
    if upload is None:
        raise ServiceError.validation_failed(
            "No selfie provided for authentication. Please capture a photo to login."
        )

    result = await run_in_threadpool(service.authenticate, email, upload)
    return LoginResponse(**result.to_dict())


@router.get("/me", response_model=TokenClaims)
async def me(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    service: FaceAuthService = Depends(get_service),
):
    """Return the claims of the bearer token."""
    if credentials is None:
        raise ServiceError.unauthorized("Access token missing")
    claims = service.verify_token(credentials.credentials)
    return TokenClaims(**claims)


@router.get("", response_model=IdentityListResponse)
async def list_users(service: FaceAuthService = Depends(get_service)):
    """List all registered users."""
    identities = await run_in_threadpool(service.list_identities)
    return IdentityListResponse(
        users=[IdentityResponse(**i.to_public_dict()) for i in identities],
        total=len(identities),
    )


@router.get("/{user_id}", response_model=IdentityResponse)
async def get_user(user_id: int, service: FaceAuthService = Depends(get_service)):
    """
    Get a registered user.

    Raises:
        404: If the user is not found.
    """
    identity = await run_in_threadpool(service.get_identity, user_id)
    return IdentityResponse(**identity.to_public_dict())


@router.delete("/{user_id}", response_model=DeleteIdentityResponse)
async def delete_user(user_id: int, service: FaceAuthService = Depends(get_service)):
    """
    Delete a registered user.

    Raises:
        404: If the user is not found.
    """
    identity = await run_in_threadpool(service.delete_identity, user_id)
    return DeleteIdentityResponse(
        success=True,
        id=identity.id,
        email=identity.email,
        message=f"User {identity.id} deleted successfully",
    )

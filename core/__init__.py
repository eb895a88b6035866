"""
Core Module for the Password Manager Face Authentication backend

This package contains the face-based enrollment and verification pipeline.

Main components:
    - config: Configuration loading and secret resolution
    - errors: Error taxonomy (ServiceError and component exceptions)
    - crypto_utils: PBKDF2 key strengthening and client-compatible AES
    - selfie_decryption: Unwrapping client-encrypted selfie uploads
    - image_normalizer: Decoding and downscaling uploaded images
    - face_embedder: Face embedding extraction (dlib / insightface)
    - identity_store: SQLite persistence of identities
    - tokens: JWT session tokens
    - face_auth_service: Register / authenticate orchestration

Usage:
    from core.face_auth_service import get_face_auth_service
    from core.selfie_decryption import UploadPayload
"""

from core.config import (
    get_config,
    get_section,
    get_face_embedding_config,
    get_image_config,
    get_storage_config,
    get_api_config,
    get_server_config,
    get_security_settings,
    SecuritySettings,
)

from core.errors import (
    ErrorCode,
    ServiceError,
    ConfigurationError,
    ModelLoadError,
    InvalidImage,
    DecryptionFailed,
)

from core.face_embedder import FaceEmbedder, get_embedder

from core.identity_store import (
    IdentityStore,
    Identity,
    EmailAlreadyExists,
    get_identity_store,
)

from core.selfie_decryption import UploadPayload, UploadKind

from core.face_auth_service import (
    FaceAuthService,
    AuthResult,
    MATCH_DISTANCE_THRESHOLD,
    get_face_auth_service,
)

__all__ = [
    # Configuration
    "get_config",
    "get_section",
    "get_face_embedding_config",
    "get_image_config",
    "get_storage_config",
    "get_api_config",
    "get_server_config",
    "get_security_settings",
    "SecuritySettings",
    # Errors
    "ErrorCode",
    "ServiceError",
    "ConfigurationError",
    "ModelLoadError",
    "InvalidImage",
    "DecryptionFailed",
    # Face Embedding
    "FaceEmbedder",
    "get_embedder",
    # Persistence
    "IdentityStore",
    "Identity",
    "EmailAlreadyExists",
    "get_identity_store",
    # Uploads
    "UploadPayload",
    "UploadKind",
    # Service
    "FaceAuthService",
    "AuthResult",
    "MATCH_DISTANCE_THRESHOLD",
    "get_face_auth_service",
]

"""
Face Authentication Service

Orchestrates the enrollment and verification pipeline:

    upload -> [decrypt, if encrypted] -> normalize -> extract embedding
           -> register: persist identity
           -> authenticate: compare with stored embedding, issue token

Every public operation either returns its result or raises a single
ServiceError. Expected failures (bad input, no face, mismatch, duplicate
email) are VALIDATION_FAILED or NOT_FOUND; everything else is INTERNAL.

Usage:
    from core.face_auth_service import get_face_auth_service
    from core.selfie_decryption import UploadPayload

    service = get_face_auth_service()
    identity = service.register("alice@example.com", UploadPayload.plain(jpeg))
    result = service.authenticate("alice@example.com", UploadPayload.plain(jpeg))
    result.token
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from core.config import SecuritySettings
from core.errors import DecryptionFailed, InvalidImage, ModelLoadError, ServiceError
from core.face_embedder import FaceEmbedder
from core.identity_store import EmailAlreadyExists, Identity, IdentityStore
from core.image_normalizer import DEFAULT_MAX_DIMENSION, normalize
from core.selfie_decryption import (
    CandidateKey,
    UploadPayload,
    authentication_keys,
    registration_keys,
    unwrap_upload,
)
from core.tokens import TokenIssuer

logger = logging.getLogger(__name__)

# Euclidean distance above which two faces are considered different people.
# Lower is more similar; a distance equal to the threshold is accepted.
MATCH_DISTANCE_THRESHOLD = 0.6

NO_FACE_MESSAGE = (
    "No face detected in the image. Please ensure your face is clearly "
    "visible and well-lit, then try again."
)
FACE_MISMATCH_MESSAGE = (
    "Face verification failed. The face in the image doesn't match your "
    "registered face. Please try again or contact support if this continues."
)
NO_REGISTERED_FACE_MESSAGE = (
    "No registered face found for this user. Please contact support to "
    "re-register your account."
)


@dataclass
class AuthResult:
    """Successful authentication: the identity and its session token."""

    identity: Identity
    token: str
    distance: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user": {"id": self.identity.id, "email": self.identity.email},
            "token": self.token,
        }


def euclidean_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Euclidean distance between two equal-length embeddings."""
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    if a.shape != b.shape:
        raise ValueError(f"Embedding dimension mismatch: {a.shape[0]} vs {b.shape[0]}")
    return float(np.linalg.norm(a - b))


class FaceAuthService:
    """
    Register identities by face and verify claimed identities.

    Args:
        store: Persistence collaborator.
        embedder: Face embedding extractor.
        settings: Resolved secrets. The token issuer is built from these at
                  construction, so a missing signing secret fails here
                  rather than on the first login.
        max_dimension: Longest side of normalized images.
        match_threshold: Maximum accepted Euclidean distance.
    """

    def __init__(
        self,
        store: IdentityStore,
        embedder: FaceEmbedder,
        settings: SecuritySettings,
        max_dimension: int = DEFAULT_MAX_DIMENSION,
        match_threshold: float = MATCH_DISTANCE_THRESHOLD,
    ):
        self.store = store
        self.embedder = embedder
        self.settings = settings
        self.max_dimension = max_dimension
        self.match_threshold = match_threshold
        self.token_issuer = TokenIssuer(
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            ttl_hours=settings.token_ttl_hours,
        )

    # ------------------------------------------------------------
    # Pipeline stages
    # ------------------------------------------------------------

    def _unwrap(self, upload: UploadPayload, keys: List[CandidateKey]) -> bytes:
        try:
            return unwrap_upload(upload, keys, self.settings.encryption_salt)
        except DecryptionFailed as e:
            logger.warning(
                f"Selfie decryption failed for upload {upload.filename!r}: {e} "
                f"(attempts={e.attempts})"
            )
            raise ServiceError.validation_failed(
                "Failed to decrypt image data", {"attempts": e.attempts}
            ) from e

    def _embed(self, image_bytes: bytes) -> np.ndarray:
        try:
            raster = normalize(image_bytes, self.max_dimension)
        except InvalidImage as e:
            raise ServiceError.validation_failed(str(e)) from e

        try:
            embedding = self.embedder.extract_embedding(raster)
        except ModelLoadError as e:
            logger.error(f"Face models unavailable: {e}")
            raise ServiceError.internal("Face recognition is unavailable") from e

        if embedding is None:
            raise ServiceError.validation_failed(NO_FACE_MESSAGE)
        return embedding

    # ------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------

    def register(self, email: str, upload: Optional[UploadPayload]) -> Identity:
        """
        Register a new identity from a selfie.

        Args:
            email: Email for the new identity.
            upload: The selfie upload (plain or encrypted).

        Returns:
            The created Identity.

        Raises:
            ServiceError: VALIDATION_FAILED for missing/undecryptable/invalid
                          images, no detected face or a duplicate email;
                          INTERNAL for model or storage faults.
        """
        return self._guard(self._register, email, upload)

    def _register(self, email: str, upload: Optional[UploadPayload]) -> Identity:
        if upload is None or not upload.data:
            raise ServiceError.validation_failed("Selfie image is required")

        image_bytes = self._unwrap(upload, registration_keys(email, self.settings.app_secret_key))
        embedding = self._embed(image_bytes)

        try:
            identity = self.store.create_identity(email, embedding)
        except EmailAlreadyExists as e:
            raise ServiceError.validation_failed("A user with this email already exists") from e

        logger.info(f"Registered identity {identity.id} ({len(embedding)}-dim embedding)")
        return identity

    def authenticate(self, email: str, upload: Optional[UploadPayload]) -> AuthResult:
        """
        Verify a claimed identity against a live selfie.

        Args:
            email: The claimed identity's email.
            upload: The selfie upload (plain or encrypted).

        Returns:
            AuthResult with the identity and a signed session token.

        Raises:
            ServiceError: NOT_FOUND for an unknown email; VALIDATION_FAILED
                          for no registered face, missing/invalid images,
                          no detected face or a face mismatch; INTERNAL for
                          model or storage faults.
        """
        return self._guard(self._authenticate, email, upload)

    def _authenticate(self, email: str, upload: Optional[UploadPayload]) -> AuthResult:
        start_time = time.time()

        identity = self.store.find_identity_by_email(email)
        if identity is None:
            raise ServiceError.not_found(f"User {email} not found")
        if not identity.has_face:
            raise ServiceError.validation_failed(NO_REGISTERED_FACE_MESSAGE)
        if upload is None or not upload.data:
            raise ServiceError.validation_failed("Selfie is required")

        keys = authentication_keys(identity.id, email, self.settings.app_secret_key)
        image_bytes = self._unwrap(upload, keys)
        embedding = self._embed(image_bytes)

        try:
            distance = euclidean_distance(identity.face_descriptor, embedding)
        except ValueError as e:
            # Stored embedding was produced by a different model
            logger.error(f"Cannot compare embeddings for identity {identity.id}: {e}")
            raise ServiceError.internal("Stored face embedding is incompatible") from e

        is_match = distance <= self.match_threshold
        self._log_attempt(identity.id, distance, is_match, start_time)

        if not is_match:
            logger.info(f"Face mismatch for identity {identity.id} (distance={distance:.4f})")
            raise ServiceError.validation_failed(FACE_MISMATCH_MESSAGE)

        token = self.token_issuer.sign({"id": identity.id, "email": identity.email})
        logger.info(f"Authenticated identity {identity.id} (distance={distance:.4f})")
        return AuthResult(identity=identity, token=token, distance=distance)

    def get_identity(self, identity_id: int) -> Identity:
        identity = self._guard(self.store.find_identity_by_id, identity_id)
        if identity is None:
            raise ServiceError.not_found(f"User with id {identity_id} not found")
        return identity

    def list_identities(self) -> List[Identity]:
        return self._guard(self.store.list_identities)

    def delete_identity(self, identity_id: int) -> Identity:
        """Delete an identity, returning it as it was before deletion."""
        identity = self.get_identity(identity_id)
        if not self._guard(self.store.delete_identity, identity_id):
            raise ServiceError.not_found(f"User with id {identity_id} not found")
        return identity

    def verify_token(self, token: str) -> Dict[str, Any]:
        return self.token_issuer.verify(token)

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------

    def _log_attempt(self, identity_id: int, distance: float, is_match: bool, start_time: float) -> None:
        try:
            self.store.log_authentication(
                identity_id=identity_id,
                distance=distance,
                is_match=is_match,
                processing_time_ms=int((time.time() - start_time) * 1000),
            )
        except Exception as e:
            logger.warning(f"Failed to log auth attempt: {e}")

    @staticmethod
    def _guard(func, *args):
        """Run an operation, turning unexpected exceptions into INTERNAL."""
        try:
            return func(*args)
        except ServiceError:
            raise
        except Exception as e:
            logger.exception(f"Unexpected error in {func.__name__}")
            raise ServiceError.internal("An unexpected error occurred") from e


_service_instance: Optional[FaceAuthService] = None


def get_face_auth_service() -> FaceAuthService:
    """
    Get or create the singleton FaceAuthService from config.yaml and the
    environment.

    Raises:
        ConfigurationError: If required secrets are missing.
    """
    global _service_instance

    if _service_instance is None:
        from core.config import get_image_config, get_security_settings
        from core.face_embedder import get_embedder
        from core.identity_store import get_identity_store

        image_config = get_image_config()
        _service_instance = FaceAuthService(
            store=get_identity_store(),
            embedder=get_embedder(),
            settings=get_security_settings(),
            max_dimension=int(image_config.get("max_dimension", DEFAULT_MAX_DIMENSION)),
        )

    return _service_instance

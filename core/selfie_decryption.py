"""
Selfie Decryption Adapter

Unwraps a client-encrypted selfie into raw image bytes.

The client uploads either a JSON envelope {"data": "<ciphertext>"} or the
bare ciphertext string. The ciphertext decrypts to the base64 text of the
image. Candidate keys are tried in a fixed order and every failed attempt is
recorded on the raised DecryptionFailed.

Key order:
    registration:   temporary key only (no identity id exists yet)
    authentication: identity key, then temporary key

Usage:
    from core.selfie_decryption import UploadPayload, authentication_keys, unwrap_upload

    payload = UploadPayload.encrypted(raw_bytes)
    image_bytes = unwrap_upload(payload, authentication_keys(7, "a@x.com", secret))
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from core.crypto_utils import decrypt, get_temp_encryption_key, get_user_encryption_key
from core.errors import DecryptionFailed

logger = logging.getLogger(__name__)

# A labelled key: ("identity", "pwd-manager-7-...")
CandidateKey = Tuple[str, str]

_DATA_URL_MARKER = ";base64,"


class UploadKind(str, Enum):
    """Whether an uploaded selfie arrived encrypted by the client."""

    PLAIN = "plain"
    ENCRYPTED = "encrypted"


@dataclass(frozen=True)
class UploadPayload:
    """
    A selfie upload as received from the ingestion layer.

    Attributes:
        kind: PLAIN for a raw image file, ENCRYPTED for a client envelope.
        data: The uploaded bytes.
        filename: Original filename, for logging only.
    """

    kind: UploadKind
    data: bytes
    filename: Optional[str] = None

    @classmethod
    def plain(cls, data: bytes, filename: Optional[str] = None) -> "UploadPayload":
        return cls(UploadKind.PLAIN, data, filename)

    @classmethod
    def encrypted(cls, data: bytes, filename: Optional[str] = None) -> "UploadPayload":
        return cls(UploadKind.ENCRYPTED, data, filename)

    @property
    def is_encrypted(self) -> bool:
        return self.kind == UploadKind.ENCRYPTED

    def __len__(self) -> int:
        return len(self.data)


def registration_keys(email: str, app_secret: Optional[str] = None) -> List[CandidateKey]:
    """Candidate keys for a selfie uploaded during registration."""
    return [("temporary", get_temp_encryption_key(email, app_secret))]


def authentication_keys(
    identity_id: int, email: str, app_secret: Optional[str] = None
) -> List[CandidateKey]:
    """Candidate keys for a selfie uploaded during login, in trial order."""
    return [
        ("identity", get_user_encryption_key(identity_id, email, app_secret)),
        ("temporary", get_temp_encryption_key(email, app_secret)),
    ]


def parse_envelope(data: bytes) -> str:
    """
    Extract the ciphertext from an uploaded envelope.

    A JSON object with a string "data" field yields that field. Anything
    else that is valid UTF-8 is treated as the ciphertext itself.

    Raises:
        DecryptionFailed: If the bytes are not UTF-8 text.
    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionFailed("Encrypted payload is not UTF-8 text") from e

    try:
        envelope = json.loads(text)
    except ValueError:
        return text.strip()

    if isinstance(envelope, dict) and isinstance(envelope.get("data"), str):
        return envelope["data"]

    # Valid JSON without a usable data field (e.g. a quoted string)
    if isinstance(envelope, str):
        return envelope
    return text.strip()


def _decode_image_base64(text: str) -> bytes:
    """Decode the base64 image text, tolerating a data: URL prefix."""
    if text.startswith("data:") and _DATA_URL_MARKER in text:
        text = text.split(_DATA_URL_MARKER, 1)[1]
    return base64.b64decode("".join(text.split()), validate=True)


def decrypt_envelope(
    data: bytes, candidate_keys: Sequence[CandidateKey], salt: Optional[str] = None
) -> bytes:
    """
    Decrypt an encrypted selfie envelope into image bytes.

    Args:
        data: Uploaded envelope bytes.
        candidate_keys: Ordered (label, key) pairs to try.
        salt: PBKDF2 salt override (defaults to ENCRYPTION_SALT).

    Returns:
        The decoded image bytes (never empty).

    Raises:
        DecryptionFailed: If no key produces a plaintext, or the plaintext
                          is not decodable base64 image data.
    """
    if not data:
        raise DecryptionFailed("Encrypted payload is empty")

    ciphertext = parse_envelope(data)
    if not ciphertext:
        raise DecryptionFailed("Encrypted payload contains no ciphertext")

    attempts: List[Dict[str, str]] = []
    plaintext = ""
    for label, key in candidate_keys:
        plaintext = decrypt(ciphertext, key, salt)
        if plaintext:
            logger.debug(f"Selfie decrypted with {label} key")
            break
        attempts.append({"key": label, "reason": "decryption returned empty result"})
        logger.debug(f"Selfie decryption with {label} key failed")

    if not plaintext:
        raise DecryptionFailed("Could not decrypt with any available key", attempts)

    try:
        image_bytes = _decode_image_base64(plaintext)
    except (binascii.Error, ValueError) as e:
        raise DecryptionFailed(
            "Failed to create image buffer from decrypted data", attempts
        ) from e

    if not image_bytes:
        raise DecryptionFailed("Decrypted image buffer is empty", attempts)

    return image_bytes


def unwrap_upload(
    payload: UploadPayload, candidate_keys: Sequence[CandidateKey], salt: Optional[str] = None
) -> bytes:
    """Return the image bytes of an upload, decrypting it when needed."""
    if payload.is_encrypted:
        return decrypt_envelope(payload.data, candidate_keys, salt)
    return payload.data

"""
Key derivation and symmetric encryption compatible with the browser client.

The client (crypto-js) encrypts selfies with a key it derives on its own, so
every byte of the scheme here has to match what crypto-js produces:

- strengthen_key: PBKDF2-HMAC-SHA256, 10,000 iterations, 256-bit output,
  process-wide UTF-8 salt, rendered as lowercase hex. SHA-256 is the
  PBKDF2 default from crypto-js 4.2 on; clients must run crypto-js >= 4.2
  (older releases default to SHA-1 and derive different keys).
- encrypt/decrypt: the OpenSSL "Salted__" passphrase format used by
  CryptoJS.AES with a string key. An 8-byte random salt feeds
  EVP_BytesToKey (MD5, one round) to derive an AES-256 key and CBC IV;
  the payload is PKCS#7 padded and the result is base64 of
  b"Salted__" + salt + ciphertext.

The per-user key scheme (get_user_encryption_key) is deterministic and built
from guessable inputs plus the application secret. Its strength rests entirely
on APP_SECRET_KEY staying secret.

Usage:
    from core.crypto_utils import encrypt, decrypt

    token = encrypt("hello", "some-seed")
    decrypt(token, "some-seed")    # "hello"
    decrypt(token, "other-seed")   # ""
"""

import base64
import binascii
import logging
import os
from typing import Optional, Tuple

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

# Must match the frontend
PBKDF2_ITERATIONS = 10000
KEY_SIZE_BITS = 256

OPENSSL_MAGIC = b"Salted__"
OPENSSL_SALT_LEN = 8
AES_KEY_LEN = 32
AES_IV_LEN = 16
AES_BLOCK_BITS = 128


def _default_salt() -> str:
    from core.config import get_security_settings
    return get_security_settings().encryption_salt


def _default_app_secret() -> str:
    from core.config import get_security_settings
    return get_security_settings().app_secret_key


def strengthen_key(seed: str, salt: Optional[str] = None) -> str:
    """
    Stretch a low-entropy seed with PBKDF2.

    Args:
        seed: The password-like input.
        salt: PBKDF2 salt. Defaults to the process-wide ENCRYPTION_SALT.

    Returns:
        The derived 256-bit key as a 64-character lowercase hex string.
    """
    if salt is None:
        salt = _default_salt()

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE_BITS // 8,
        salt=salt.encode("utf-8"),
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(seed.encode("utf-8")).hex()


def _evp_bytes_to_key(passphrase: bytes, salt: bytes) -> Tuple[bytes, bytes]:
    """OpenSSL EVP_BytesToKey with MD5 and a single iteration."""
    derived = b""
    block = b""
    while len(derived) < AES_KEY_LEN + AES_IV_LEN:
        digest = hashes.Hash(hashes.MD5())
        digest.update(block + passphrase + salt)
        block = digest.finalize()
        derived += block
    return derived[:AES_KEY_LEN], derived[AES_KEY_LEN:AES_KEY_LEN + AES_IV_LEN]


def encrypt(value: str, secret_key: str, salt: Optional[str] = None) -> str:
    """
    Encrypt a string with a key derived from secret_key.

    Empty input yields empty output.

    Args:
        value: Plaintext to encrypt.
        secret_key: Seed passed through strengthen_key.
        salt: PBKDF2 salt override (defaults to ENCRYPTION_SALT).

    Returns:
        Base64 OpenSSL-format ciphertext.
    """
    if not value:
        return ""

    passphrase = strengthen_key(secret_key, salt).encode("utf-8")
    openssl_salt = os.urandom(OPENSSL_SALT_LEN)
    key, iv = _evp_bytes_to_key(passphrase, openssl_salt)

    padder = padding.PKCS7(AES_BLOCK_BITS).padder()
    padded = padder.update(value.encode("utf-8")) + padder.finalize()

    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()

    return base64.b64encode(OPENSSL_MAGIC + openssl_salt + ciphertext).decode("ascii")


def decrypt(encrypted_value: str, secret_key: str, salt: Optional[str] = None) -> str:
    """
    Decrypt a value produced by encrypt (or by crypto-js).

    Never raises. A wrong key, malformed ciphertext or a plaintext that is not
    valid UTF-8 all produce "". Callers must read "" as "decryption failed".

    Args:
        encrypted_value: Base64 OpenSSL-format ciphertext.
        secret_key: Seed passed through strengthen_key.
        salt: PBKDF2 salt override (defaults to ENCRYPTION_SALT).

    Returns:
        The plaintext, or "" on any failure.
    """
    if not encrypted_value:
        return ""

    try:
        raw = base64.b64decode(encrypted_value.strip(), validate=False)
    except (binascii.Error, ValueError):
        logger.debug("Ciphertext is not valid base64")
        return ""

    header_len = len(OPENSSL_MAGIC) + OPENSSL_SALT_LEN
    body = raw[header_len:]
    if not raw.startswith(OPENSSL_MAGIC) or not body or len(body) % AES_IV_LEN:
        logger.debug("Ciphertext is not in OpenSSL salted format")
        return ""

    openssl_salt = raw[len(OPENSSL_MAGIC):header_len]
    passphrase = strengthen_key(secret_key, salt).encode("utf-8")
    key, iv = _evp_bytes_to_key(passphrase, openssl_salt)

    try:
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(body) + decryptor.finalize()
        unpadder = padding.PKCS7(AES_BLOCK_BITS).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()
        decrypted = plaintext.decode("utf-8")
    except ValueError:
        # Bad padding and invalid UTF-8 both mean the key did not match
        logger.debug("Decryption produced no valid plaintext, possible key mismatch")
        return ""

    return decrypted


def get_user_encryption_key(user_id: int, user_email: str, app_secret: Optional[str] = None) -> str:
    """
    Build the per-user encryption seed.

    Args:
        user_id: The identity's numeric id.
        user_email: The identity's email.
        app_secret: Application secret (defaults to APP_SECRET_KEY).

    Returns:
        "pwd-manager-{id}-{email}-{appSecret}"
    """
    if app_secret is None:
        app_secret = _default_app_secret()
    return f"pwd-manager-{user_id}-{user_email}-{app_secret}"


def get_temp_encryption_key(user_email: str, app_secret: Optional[str] = None) -> str:
    """
    Build the registration-time seed used before an identity id exists.

    Returns:
        "pwd-manager-temp-{email}-{appSecret}"
    """
    if app_secret is None:
        app_secret = _default_app_secret()
    return f"pwd-manager-temp-{user_email}-{app_secret}"

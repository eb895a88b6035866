"""
Unit Tests for the crypto_utils Module

This module tests:
- PBKDF2 key strengthening (determinism, format, known vector)
- encrypt/decrypt round trip in the OpenSSL salted format
- Empty-input and wrong-key behaviour (empty string, never an exception)
- Per-user and temporary key composition

Usage:
    pytest tests/test_crypto_utils.py -v
"""

import base64
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import core.config as config_module
import core.crypto_utils as crypto_utils
from core.config import SecuritySettings
from core.crypto_utils import (
    decrypt,
    encrypt,
    get_temp_encryption_key,
    get_user_encryption_key,
    strengthen_key,
)

SALT = "unit-test-salt"


# ============================================================
# Key Strengthening
# ============================================================

class TestStrengthenKey:
    """Tests for strengthen_key."""

    def test_deterministic(self):
        assert strengthen_key("seed", SALT) == strengthen_key("seed", SALT)

    def test_hex_256_bit_output(self):
        key = strengthen_key("seed", SALT)
        assert len(key) == 64
        assert key == key.lower()
        int(key, 16)  # valid hex

    def test_salt_changes_key(self):
        assert strengthen_key("seed", SALT) != strengthen_key("seed", "other-salt")

    def test_seed_changes_key(self):
        assert strengthen_key("seed-a", SALT) != strengthen_key("seed-b", SALT)

    def test_known_pbkdf2_sha256_vector(self, monkeypatch):
        """PBKDF2-HMAC-SHA256("password", "salt", 4096, 32) reference value."""
        monkeypatch.setattr(crypto_utils, "PBKDF2_ITERATIONS", 4096)
        assert strengthen_key("password", "salt") == (
            "c5e478d59288c841aa530db6845c4c8d962893a001ce4e11a4963873aa98134a"
        )

    def test_uses_process_salt_by_default(self, monkeypatch):
        settings = SecuritySettings(
            jwt_secret="jwt", app_secret_key="app", encryption_salt=SALT
        )
        monkeypatch.setattr(config_module, "_security_instance", settings)
        assert strengthen_key("seed") == strengthen_key("seed", SALT)


# ============================================================
# Encrypt / Decrypt
# ============================================================

class TestEncryptDecrypt:
    """Tests for encrypt and decrypt."""

    @pytest.mark.parametrize("plaintext", [
        "a",
        "hello world",
        "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk",
        "unicode: café ☃",
        "x" * 1000,
    ])
    def test_round_trip(self, plaintext):
        token = encrypt(plaintext, "my-key", SALT)
        assert decrypt(token, "my-key", SALT) == plaintext

    def test_decrypts_openssl_ciphertext(self):
        """Ciphertext from `openssl enc -aes-256-cbc -md md5 -a` with passphrase strengthen_key("seed", "test-salt")."""
        token = "U2FsdGVkX18IaSw/0bYk5v+88+IqngzLSAvxMNZ9NsM="
        assert decrypt(token, "seed", "test-salt") == "aGVsbG8="

    def test_openssl_salted_format(self):
        raw = base64.b64decode(encrypt("secret", "k", SALT))
        assert raw.startswith(b"Salted__")
        # 8-byte magic + 8-byte salt + whole AES blocks
        assert (len(raw) - 16) % 16 == 0
        assert len(raw) > 16

    def test_ciphertext_is_randomized(self):
        assert encrypt("secret", "k", SALT) != encrypt("secret", "k", SALT)

    def test_empty_input_encrypt(self):
        assert encrypt("", "k", SALT) == ""

    def test_empty_input_decrypt(self):
        assert decrypt("", "k", SALT) == ""

    def test_wrong_key_returns_empty(self):
        token = encrypt("secret", "k1", SALT)
        assert decrypt(token, "k2", SALT) == ""

    def test_wrong_salt_returns_empty(self):
        token = encrypt("secret", "k1", SALT)
        assert decrypt(token, "k1", "another-salt") == ""

    @pytest.mark.parametrize("garbage", [
        "not base64 at all!!!",
        base64.b64encode(b"no openssl header here").decode(),
        base64.b64encode(b"Salted__12345678").decode(),
        base64.b64encode(b"Salted__12345678" + b"\x00" * 15).decode(),
    ])
    def test_malformed_ciphertext_returns_empty(self, garbage):
        assert decrypt(garbage, "k", SALT) == ""


# ============================================================
# Key Composition
# ============================================================

class TestKeyComposition:
    """Tests for per-user and temporary key builders."""

    def test_user_key_format(self):
        assert get_user_encryption_key(7, "a@x.com", "s3cret") == "pwd-manager-7-a@x.com-s3cret"

    def test_temp_key_format(self):
        assert get_temp_encryption_key("a@x.com", "s3cret") == "pwd-manager-temp-a@x.com-s3cret"

    def test_user_key_deterministic(self):
        assert get_user_encryption_key(1, "a@x.com", "s") == get_user_encryption_key(1, "a@x.com", "s")

    def test_user_and_temp_keys_differ(self):
        assert get_user_encryption_key(1, "a@x.com", "s") != get_temp_encryption_key("a@x.com", "s")

    def test_round_trip_with_user_key(self):
        key = get_user_encryption_key(3, "b@x.com", "s")
        assert decrypt(encrypt("payload", key, SALT), key, SALT) == "payload"

"""
Unit Tests for the selfie_decryption Module

This module tests:
- UploadPayload tagging
- Envelope parsing (JSON, raw ciphertext, malformed input)
- Candidate key ordering for registration and authentication
- decrypt_envelope success, fallback and aggregated failure

Usage:
    pytest tests/test_selfie_decryption.py -v
"""

import base64
import json
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from core.crypto_utils import encrypt
from core.errors import DecryptionFailed
from core.selfie_decryption import (
    UploadKind,
    UploadPayload,
    authentication_keys,
    decrypt_envelope,
    parse_envelope,
    registration_keys,
    unwrap_upload,
)

SALT = "unit-test-salt"
APP_SECRET = "unit-test-app-secret"
IMAGE_BYTES = b"\x89PNG\r\n\x1a\nfake-image-payload"


def make_envelope(image: bytes, key: str, as_json: bool = True) -> bytes:
    """Encrypt image bytes the way the browser client does."""
    ciphertext = encrypt(base64.b64encode(image).decode("ascii"), key, SALT)
    if as_json:
        return json.dumps({"data": ciphertext}).encode("utf-8")
    return ciphertext.encode("utf-8")


# ============================================================
# UploadPayload
# ============================================================

class TestUploadPayload:
    """Tests for the UploadPayload tagged value."""

    def test_plain(self):
        payload = UploadPayload.plain(b"abc", "selfie.jpg")
        assert payload.kind == UploadKind.PLAIN
        assert not payload.is_encrypted
        assert len(payload) == 3

    def test_encrypted(self):
        payload = UploadPayload.encrypted(b"{}")
        assert payload.kind == UploadKind.ENCRYPTED
        assert payload.is_encrypted

    def test_plain_upload_passes_through(self):
        payload = UploadPayload.plain(IMAGE_BYTES)
        assert unwrap_upload(payload, registration_keys("a@x.com", APP_SECRET), SALT) == IMAGE_BYTES


# ============================================================
# Envelope Parsing
# ============================================================

class TestParseEnvelope:
    """Tests for parse_envelope."""

    def test_json_envelope(self):
        assert parse_envelope(b'{"data": "U2FsdGVkX1abc"}') == "U2FsdGVkX1abc"

    def test_raw_ciphertext(self):
        assert parse_envelope(b"U2FsdGVkX1abc\n") == "U2FsdGVkX1abc"

    def test_json_without_data_field_is_treated_as_text(self):
        raw = b'{"contentType": "image/jpeg"}'
        assert parse_envelope(raw) == raw.decode()

    def test_non_utf8_raises(self):
        with pytest.raises(DecryptionFailed):
            parse_envelope(b"\xff\xfe\x00binary")


# ============================================================
# Candidate Keys
# ============================================================

class TestCandidateKeys:
    """Tests for key ordering."""

    def test_registration_uses_temporary_key_only(self):
        keys = registration_keys("a@x.com", APP_SECRET)
        assert keys == [("temporary", f"pwd-manager-temp-a@x.com-{APP_SECRET}")]

    def test_authentication_tries_identity_key_first(self):
        keys = authentication_keys(5, "a@x.com", APP_SECRET)
        assert [label for label, _ in keys] == ["identity", "temporary"]
        assert keys[0][1] == f"pwd-manager-5-a@x.com-{APP_SECRET}"
        assert keys[1][1] == f"pwd-manager-temp-a@x.com-{APP_SECRET}"


# ============================================================
# decrypt_envelope
# ============================================================

class TestDecryptEnvelope:
    """Tests for decrypt_envelope."""

    def test_registration_envelope(self):
        keys = registration_keys("a@x.com", APP_SECRET)
        envelope = make_envelope(IMAGE_BYTES, keys[0][1])
        assert decrypt_envelope(envelope, keys, SALT) == IMAGE_BYTES

    def test_raw_ciphertext_envelope(self):
        keys = registration_keys("a@x.com", APP_SECRET)
        envelope = make_envelope(IMAGE_BYTES, keys[0][1], as_json=False)
        assert decrypt_envelope(envelope, keys, SALT) == IMAGE_BYTES

    def test_identity_key(self):
        keys = authentication_keys(5, "a@x.com", APP_SECRET)
        envelope = make_envelope(IMAGE_BYTES, keys[0][1])
        assert decrypt_envelope(envelope, keys, SALT) == IMAGE_BYTES

    def test_falls_back_to_temporary_key(self):
        keys = authentication_keys(5, "a@x.com", APP_SECRET)
        envelope = make_envelope(IMAGE_BYTES, keys[1][1])
        assert decrypt_envelope(envelope, keys, SALT) == IMAGE_BYTES

    def test_data_url_plaintext(self):
        key = registration_keys("a@x.com", APP_SECRET)[0][1]
        data_url = "data:image/png;base64," + base64.b64encode(IMAGE_BYTES).decode()
        envelope = json.dumps({"data": encrypt(data_url, key, SALT)}).encode()
        assert decrypt_envelope(envelope, [("temporary", key)], SALT) == IMAGE_BYTES

    def test_all_keys_fail_records_every_attempt(self):
        keys = authentication_keys(5, "a@x.com", APP_SECRET)
        envelope = make_envelope(IMAGE_BYTES, "some-unrelated-key")

        with pytest.raises(DecryptionFailed) as exc_info:
            decrypt_envelope(envelope, keys, SALT)

        attempts = exc_info.value.attempts
        assert [a["key"] for a in attempts] == ["identity", "temporary"]

    def test_empty_payload(self):
        with pytest.raises(DecryptionFailed):
            decrypt_envelope(b"", registration_keys("a@x.com", APP_SECRET), SALT)

    def test_plaintext_not_base64(self):
        key = registration_keys("a@x.com", APP_SECRET)[0][1]
        envelope = json.dumps({"data": encrypt("%%% not base64 %%%", key, SALT)}).encode()
        with pytest.raises(DecryptionFailed, match="image buffer"):
            decrypt_envelope(envelope, [("temporary", key)], SALT)

    def test_garbage_envelope(self):
        with pytest.raises(DecryptionFailed):
            decrypt_envelope(b"garbage", registration_keys("a@x.com", APP_SECRET), SALT)

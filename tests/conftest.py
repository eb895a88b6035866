"""
Shared fixtures: a model-free embedder, a temporary identity store and a
FaceAuthService wired to both.
"""

import os
import sys

import cv2
import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import SecuritySettings
from core.face_auth_service import FaceAuthService
from core.face_embedder import FaceEmbedder
from core.identity_store import IdentityStore


class FakeEmbedder(FaceEmbedder):
    """
    FaceEmbedder without models.

    Uniform images have no face. Any other image yields `next_embedding`,
    which tests set to steer the match distance.
    """

    def __init__(self, fail_load=False):
        super().__init__({"backend": "dlib", "embedding_dim": 128})
        self.fail_load = fail_load
        self.next_embedding = np.zeros(128)

    def _load_backend(self):
        if self.fail_load:
            raise FileNotFoundError("Missing model file(s): shape_predictor_68_face_landmarks.dat")

    def _extract(self, image):
        if image.std() == 0:
            return None
        return np.array(self.next_embedding, dtype=np.float64)


def encode_png(image):
    ok, buf = cv2.imencode(".png", image)
    assert ok
    return buf.tobytes()


@pytest.fixture
def face_png():
    """A noisy image the fake embedder treats as containing a face."""
    rng = np.random.default_rng(42)
    return encode_png(rng.integers(0, 255, (240, 200, 3), dtype=np.uint8))


@pytest.fixture
def blank_png():
    """A solid-colour image with no face."""
    return encode_png(np.full((240, 200, 3), 90, dtype=np.uint8))


@pytest.fixture
def settings():
    return SecuritySettings(
        jwt_secret="test-jwt-secret",
        app_secret_key="test-app-secret",
        encryption_salt="test-salt",
    )


@pytest.fixture
def store(tmp_path):
    s = IdentityStore(db_path=str(tmp_path / "test.sqlite"))
    yield s
    s.close()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def service(store, embedder, settings):
    return FaceAuthService(store=store, embedder=embedder, settings=settings)

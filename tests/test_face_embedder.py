"""
Unit Tests for the face_embedder Module

This module tests the FaceEmbedder without real model files:
- Configuration handling and required model files
- At-most-once model loading under concurrent first use
- Shared failure when loading fails
- No-face and dimension handling of extract_embedding

Model inference itself is replaced by a small in-test subclass.

Usage:
    pytest tests/test_face_embedder.py -v
"""

import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import numpy as np
import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from core.errors import ModelLoadError
from core.face_embedder import (
    DLIB_CNN_DETECTOR,
    DLIB_FACE_RECOGNITION,
    DLIB_SHAPE_PREDICTOR,
    FaceEmbedder,
)


class CountingEmbedder(FaceEmbedder):
    """FaceEmbedder whose backend is a slow counter instead of real models."""

    def __init__(self, config=None, fail=False, delay=0.05):
        super().__init__(config)
        self.fail = fail
        self.delay = delay
        self.backend_loads = 0

    def _load_backend(self):
        self.backend_loads += 1
        time.sleep(self.delay)
        if self.fail:
            raise FileNotFoundError("shape_predictor_68_face_landmarks.dat not found")

    def _extract(self, image):
        # Uniform images have no face
        if image.std() == 0:
            return None
        return np.full(self.embedding_dim, image.mean() / 255.0)


def noise_image(seed=0):
    rng = np.random.default_rng(seed)
    return rng.integers(0, 255, (120, 100, 3), dtype=np.uint8)


# ============================================================
# Configuration
# ============================================================

class TestFaceEmbedderConfig:
    """Tests for FaceEmbedder construction."""

    def test_defaults(self):
        embedder = FaceEmbedder()
        assert embedder.backend == "dlib"
        assert embedder.embedding_dim == 128
        assert embedder.upsample == 0
        assert not embedder.is_loaded

    def test_insightface_default_dim(self):
        embedder = FaceEmbedder({"backend": "insightface"})
        assert embedder.embedding_dim == 512

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            FaceEmbedder({"backend": "nonexistent"})

    def test_required_files_hog(self, tmp_path):
        embedder = FaceEmbedder({"model_dir": str(tmp_path)})
        names = [p.name for p in embedder.required_model_files()]
        assert names == [DLIB_SHAPE_PREDICTOR, DLIB_FACE_RECOGNITION]

    def test_required_files_cnn(self, tmp_path):
        embedder = FaceEmbedder({"model_dir": str(tmp_path), "detector": "cnn"})
        names = [p.name for p in embedder.required_model_files()]
        assert DLIB_CNN_DETECTOR in names

    def test_missing_model_files_fail_load(self, tmp_path):
        embedder = FaceEmbedder({"model_dir": str(tmp_path / "empty")})
        with pytest.raises(ModelLoadError, match="Missing model file"):
            embedder.load_model()
        assert not embedder.is_loaded


# ============================================================
# Single-flight Loading
# ============================================================

class TestModelLoading:
    """Tests for at-most-once model loading."""

    def test_load_is_idempotent(self):
        embedder = CountingEmbedder(delay=0)
        embedder.load_model()
        embedder.load_model()
        assert embedder.backend_loads == 1
        assert embedder.is_loaded

    def test_concurrent_first_use_loads_once(self):
        embedder = CountingEmbedder(delay=0.2)
        barrier = threading.Barrier(10)
        image = noise_image()

        def first_use(_):
            barrier.wait()
            return embedder.extract_embedding(image)

        with ThreadPoolExecutor(max_workers=10) as pool:
            results = list(pool.map(first_use, range(10)))

        assert embedder.backend_loads == 1
        assert embedder.load_count == 1
        assert all(r is not None for r in results)
        assert all(len(r) == 128 for r in results)

    def test_concurrent_failure_is_shared(self):
        embedder = CountingEmbedder(fail=True, delay=0.2)
        barrier = threading.Barrier(10)

        def first_use(_):
            barrier.wait()
            try:
                embedder.load_model()
            except ModelLoadError as e:
                return str(e)
            return None

        with ThreadPoolExecutor(max_workers=10) as pool:
            errors = list(pool.map(first_use, range(10)))

        assert embedder.backend_loads == 1
        assert all(e is not None for e in errors)
        assert len(set(errors)) == 1
        assert not embedder.is_loaded

    def test_failure_is_remembered(self):
        embedder = CountingEmbedder(fail=True, delay=0)
        for _ in range(3):
            with pytest.raises(ModelLoadError):
                embedder.load_model()
        assert embedder.backend_loads == 1


# ============================================================
# Extraction
# ============================================================

class TestExtractEmbedding:
    """Tests for extract_embedding."""

    def test_face_returns_fixed_length_vector(self):
        embedder = CountingEmbedder(delay=0)
        embedding = embedder.extract_embedding(noise_image())
        assert embedding.shape == (128,)

    def test_no_face_returns_none(self):
        embedder = CountingEmbedder(delay=0)
        solid = np.full((100, 100, 3), 127, dtype=np.uint8)
        assert embedder.extract_embedding(solid) is None

    def test_extract_triggers_lazy_load(self):
        embedder = CountingEmbedder(delay=0)
        embedder.extract_embedding(noise_image())
        assert embedder.is_loaded

    def test_dimension_mismatch_raises(self):
        embedder = CountingEmbedder({"embedding_dim": 64}, delay=0)
        embedder._extract = lambda image: np.zeros(128)
        with pytest.raises(ValueError, match="dimension mismatch"):
            embedder.extract_embedding(noise_image())

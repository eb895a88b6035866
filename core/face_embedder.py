"""
Face Embedding Extractor

Extracts a fixed-length identity embedding for the single most prominent face
in a normalized image. Embeddings are compared by Euclidean distance.

Supports two backends:
  - dlib (default): frontal face detector + 68-point landmark predictor +
    ResNet face descriptor. 128-dim embeddings; a distance of 0.6 is the
    conventional same-person boundary.
  - insightface: buffalo_l bundle with SCRFD + ArcFace. 512-dim
    L2-normalized embeddings. Not comparable with dlib embeddings.

The detector configuration (detector type, upsampling, input size,
confidence threshold) is fixed at construction and must be identical for
enrollment and verification.

Models are loaded at most once per process. Concurrent first callers wait
on the same load and either all proceed or all fail with the same error.

Usage:
    from core.face_embedder import get_embedder

    embedder = get_embedder()
    embedder.load_model()                        # optional, done lazily otherwise

    embedding = embedder.extract_embedding(bgr)  # (128,) or None if no face
"""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import cv2
import numpy as np

from core.errors import ModelLoadError

logger = logging.getLogger(__name__)

DLIB_SHAPE_PREDICTOR = "shape_predictor_68_face_landmarks.dat"
DLIB_FACE_RECOGNITION = "dlib_face_recognition_resnet_model_v1.dat"
DLIB_CNN_DETECTOR = "mmod_human_face_detector.dat"

BACKEND_EMBEDDING_DIMS = {"dlib": 128, "insightface": 512}


class FaceEmbedder:
    """
    Extract identity embeddings from images.

    Args:
        config: Dictionary with keys:
            - backend: "dlib" or "insightface" (default "dlib")
            - model_dir: Directory holding the model files
            - detector: dlib detector, "hog" or "cnn" (default "hog")
            - upsample: dlib detector upsampling passes (default 0)
            - num_jitters: dlib descriptor jitters (default 1)
            - model: insightface bundle name (default "buffalo_l")
            - det_size: insightface detector input size (default 640)
            - det_thresh: insightface detection threshold (default 0.5)
            - device: "cuda" or "cpu" for insightface (default "cpu")
            - embedding_dim: Expected embedding dimension

    Attributes:
        is_loaded: True once the models are in memory.
        load_count: Number of load attempts made by this instance.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        if config is None:
            config = {}

        self.backend = config.get("backend", "dlib")
        if self.backend not in BACKEND_EMBEDDING_DIMS:
            raise ValueError(f"Unknown backend: {self.backend}")

        self.model_dir = Path(config.get("model_dir", "storage/models"))
        self.detector_type = config.get("detector", "hog")
        self.upsample = int(config.get("upsample", 0))
        self.num_jitters = int(config.get("num_jitters", 1))
        self.model_name = config.get("model", "buffalo_l")
        self.det_size = int(config.get("det_size", 640))
        self.det_thresh = float(config.get("det_thresh", 0.5))
        self.device = config.get("device", "cpu")
        self.embedding_dim = int(
            config.get("embedding_dim", BACKEND_EMBEDDING_DIMS[self.backend])
        )

        self._detector = None
        self._shape_predictor = None
        self._model = None

        self._load_lock = threading.Lock()
        self._load_error: Optional[BaseException] = None
        self.is_loaded = False
        self.load_count = 0

    def load_model(self) -> None:
        """
        Load the models if they are not loaded yet.

        Safe to call from many threads at once: only the first caller loads,
        the others block until it finishes. A failed load is remembered and
        re-raised to every later caller.

        Raises:
            ModelLoadError: If the backend or its model files are unavailable.
        """
        if self.is_loaded:
            return

        with self._load_lock:
            if self.is_loaded:
                return
            if self._load_error is not None:
                raise ModelLoadError(
                    f"Face models failed to load: {self._load_error}"
                ) from self._load_error

            self.load_count += 1
            try:
                self._load_backend()
            except Exception as e:
                self._load_error = e
                logger.error(f"Failed to load face models (backend={self.backend}): {e}")
                raise ModelLoadError(f"Face models failed to load: {e}") from e

            self.is_loaded = True

        logger.info(f"FaceEmbedder loaded (backend={self.backend}, dim={self.embedding_dim})")

    def _load_backend(self) -> None:
        if self.backend == "dlib":
            self._load_dlib()
        else:
            self._load_insightface()

    def required_model_files(self) -> List[Path]:
        """Model files that must exist before the dlib backend can load."""
        if self.backend != "dlib":
            return []
        files = [DLIB_SHAPE_PREDICTOR, DLIB_FACE_RECOGNITION]
        if self.detector_type == "cnn":
            files.append(DLIB_CNN_DETECTOR)
        return [self.model_dir / name for name in files]

    def _load_dlib(self) -> None:
        """Load the dlib detector, landmark predictor and descriptor network."""
        missing = [str(p) for p in self.required_model_files() if not p.exists()]
        if missing:
            raise FileNotFoundError(
                f"Missing model file(s): {', '.join(missing)}. "
                f"Run: python scripts/download_models.py"
            )

        import dlib

        if self.detector_type == "cnn":
            self._detector = dlib.cnn_face_detection_model_v1(
                str(self.model_dir / DLIB_CNN_DETECTOR)
            )
        elif self.detector_type == "hog":
            self._detector = dlib.get_frontal_face_detector()
        else:
            raise ValueError(f"Unknown dlib detector: {self.detector_type}")

        self._shape_predictor = dlib.shape_predictor(str(self.model_dir / DLIB_SHAPE_PREDICTOR))
        self._model = dlib.face_recognition_model_v1(str(self.model_dir / DLIB_FACE_RECOGNITION))

    def _load_insightface(self) -> None:
        """Load insightface model bundle."""
        from insightface.app import FaceAnalysis

        if self.device == "cuda":
            providers = ["CUDAExecutionProvider", "CPUExecutionProvider"]
        else:
            providers = ["CPUExecutionProvider"]

        self._model = FaceAnalysis(
            name=self.model_name,
            root=str(self.model_dir),
            providers=providers,
        )
        self._model.prepare(
            ctx_id=0 if self.device == "cuda" else -1,
            det_size=(self.det_size, self.det_size),
            det_thresh=self.det_thresh,
        )

    def extract_embedding(self, image: np.ndarray) -> Optional[np.ndarray]:
        """
        Extract the embedding of the most prominent face.

        Args:
            image: Normalized image in BGR format (H, W, 3), uint8.

        Returns:
            1-D float array of length embedding_dim, or None if no face
            is detected.

        Raises:
            ModelLoadError: If the models cannot be loaded.
        """
        self.load_model()

        embedding = self._extract(image)
        if embedding is None:
            return None

        embedding = np.asarray(embedding).ravel()
        if embedding.shape[0] != self.embedding_dim:
            raise ValueError(
                f"Embedding dimension mismatch: expected {self.embedding_dim}, "
                f"got {embedding.shape[0]}"
            )
        return embedding

    def _extract(self, image: np.ndarray) -> Optional[np.ndarray]:
        if self.backend == "dlib":
            return self._extract_dlib(image)
        return self._extract_insightface(image)

    def _extract_dlib(self, image: np.ndarray) -> Optional[np.ndarray]:
        """Extract embedding using dlib."""
        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)

        detections = self._detector(rgb, self.upsample)
        if self.detector_type == "cnn":
            rects = [d.rect for d in detections]
        else:
            rects = list(detections)

        if not rects:
            logger.info("dlib detected no face")
            return None

        # Most prominent face = largest box
        rect = max(rects, key=lambda r: r.width() * r.height())
        shape = self._shape_predictor(rgb, rect)
        descriptor = self._model.compute_face_descriptor(rgb, shape, self.num_jitters)
        return np.array(descriptor, dtype=np.float64)

    def _extract_insightface(self, image: np.ndarray) -> Optional[np.ndarray]:
        """Extract embedding using insightface."""
        faces = self._model.get(image)
        if not faces:
            logger.info("insightface detected no face")
            return None

        best_face = max(faces, key=lambda f: f.det_score)
        return best_face.normed_embedding.astype(np.float32)


_embedder_instance: Optional[FaceEmbedder] = None
_embedder_lock = threading.Lock()


def get_embedder(config: Optional[Dict[str, Any]] = None) -> FaceEmbedder:
    """
    Get or create the singleton FaceEmbedder.

    Args:
        config: Optional configuration (only used on first call).
                If not provided, loads from config.yaml.
    """
    global _embedder_instance

    with _embedder_lock:
        if _embedder_instance is None:
            if config is None:
                from core.config import get_face_embedding_config, resolve_path

                config = dict(get_face_embedding_config())
                config["model_dir"] = str(resolve_path(config.get("model_dir", "storage/models")))
            _embedder_instance = FaceEmbedder(config)

    return _embedder_instance

#!/usr/bin/env python3
"""
Download the dlib model files used by the face embedder.

Files are fetched from dlib.net as .bz2 archives and decompressed into the
configured face_embedding.model_dir.

Usage:
    python scripts/download_models.py
    python scripts/download_models.py --cnn          # also fetch the CNN detector
    python scripts/download_models.py --model-dir /srv/models
"""

import argparse
import bz2
import logging
import sys
import urllib.request
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from core.config import get_face_embedding_config, resolve_path
from core.face_embedder import (
    DLIB_CNN_DETECTOR,
    DLIB_FACE_RECOGNITION,
    DLIB_SHAPE_PREDICTOR,
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

DLIB_MODEL_BASE_URL = "http://dlib.net/files"


def download_model(filename: str, model_dir: Path, force: bool = False) -> Path:
    """
    Download and decompress one model file.

    Returns:
        Path to the decompressed model file.
    """
    target = model_dir / filename
    if target.exists() and not force:
        logger.info(f"{filename} already present, skipping")
        return target

    url = f"{DLIB_MODEL_BASE_URL}/{filename}.bz2"
    archive = model_dir / f"{filename}.bz2"

    logger.info(f"Downloading {url}")
    urllib.request.urlretrieve(url, str(archive))

    logger.info(f"Decompressing to {target}")
    with bz2.open(archive, "rb") as src, open(target, "wb") as dst:
        while True:
            chunk = src.read(1 << 20)
            if not chunk:
                break
            dst.write(chunk)
    archive.unlink()

    return target


def main() -> int:
    config = get_face_embedding_config()

    parser = argparse.ArgumentParser(description="Download dlib face models")
    parser.add_argument(
        "--model-dir",
        default=str(resolve_path(config.get("model_dir", "storage/models"))),
        help="Destination directory (default: face_embedding.model_dir)",
    )
    parser.add_argument(
        "--cnn",
        action="store_true",
        default=config.get("detector") == "cnn",
        help="Also download the CNN face detector",
    )
    parser.add_argument("--force", action="store_true", help="Re-download existing files")
    args = parser.parse_args()

    model_dir = Path(args.model_dir)
    model_dir.mkdir(parents=True, exist_ok=True)

    files = [DLIB_SHAPE_PREDICTOR, DLIB_FACE_RECOGNITION]
    if args.cnn:
        files.append(DLIB_CNN_DETECTOR)

    for filename in files:
        try:
            download_model(filename, model_dir, force=args.force)
        except OSError as e:
            logger.error(f"Failed to download {filename}: {e}")
            return 1

    logger.info(f"All models available in {model_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""
Face Embedding Service using DeepFace

This module provides the face capability consumed by enrollment and the
voting booth:
- Image decoding and resizing
- Face detection
- Embedding generation (Facenet, 128-d)

DeepFace pulls in a deep learning backend, so it is imported on first use.
"""
import logging
from io import BytesIO
from typing import Optional

import numpy as np
from PIL import Image

from voter_gate.config import (
    FACE_RECOGNITION_MODEL,
    FACE_DETECTOR_BACKEND,
    MAX_IMAGE_SIZE,
    EMBEDDING_DIM
)

logger = logging.getLogger(__name__)


def load_image(image_bytes: bytes) -> np.ndarray:
    """
    Decode image bytes into an RGB numpy array.

    Steps:
    1. Load image from bytes
    2. Convert to RGB
    3. Resize if too large (preserving aspect ratio)

    Raises:
        ValueError: If the bytes are not a readable image
    """
    try:
        image = Image.open(BytesIO(image_bytes))

        # Handles PNG with alpha, grayscale, etc.
        if image.mode != "RGB":
            image = image.convert("RGB")

        if image.size[0] > MAX_IMAGE_SIZE[0] or image.size[1] > MAX_IMAGE_SIZE[1]:
            image.thumbnail(MAX_IMAGE_SIZE, Image.Resampling.LANCZOS)
            logger.debug(f"Image resized to {image.size}")

        return np.array(image)

    except Exception as e:
        logger.error(f"Image decoding failed: {e}")
        raise ValueError(f"Failed to process image: {str(e)}")


class FaceEmbeddingService:
    """
    Face detection and descriptor generation.

    Returns None when no face is detected; callers decide how to report that.
    """

    def __init__(
        self,
        model_name: str = FACE_RECOGNITION_MODEL,
        detector_backend: str = FACE_DETECTOR_BACKEND
    ):
        self.model_name = model_name
        self.detector_backend = detector_backend
        self._model_loaded = False

    @property
    def model_loaded(self) -> bool:
        return self._model_loaded

    def _ensure_model_loaded(self):
        """Lazy load the model on first use."""
        if self._model_loaded:
            return
        from deepface import DeepFace

        logger.info(f"Loading {self.model_name} model...")
        # Warm up the model by running a dummy inference
        try:
            dummy_img = np.zeros((160, 160, 3), dtype=np.uint8)
            DeepFace.represent(
                img_path=dummy_img,
                model_name=self.model_name,
                detector_backend="skip",
                enforce_detection=False
            )
            logger.info(f"{self.model_name} model loaded successfully")
        except Exception as e:
            logger.warning(f"Model warmup warning: {e}")
        self._model_loaded = True

    def generate_embedding(self, img_array: np.ndarray) -> Optional[np.ndarray]:
        """
        Generate a face embedding from an image.

        Pipeline:
        1. Face detection
        2. Face extraction & alignment
        3. Embedding generation

        Returns:
            L2-normalized embedding vector, or None if no face was detected
        """
        self._ensure_model_loaded()
        from deepface import DeepFace

        try:
            embeddings = DeepFace.represent(
                img_path=img_array,
                model_name=self.model_name,
                detector_backend=self.detector_backend,
                enforce_detection=True,
                align=True
            )
        except ValueError as e:
            # DeepFace raises ValueError when enforce_detection finds no face
            logger.info(f"No face detected: {e}")
            return None

        if not embeddings:
            return None

        embedding = embeddings[0].get("embedding")
        if embedding is None:
            return None

        embedding_array = np.array(embedding, dtype=np.float32)
        if embedding_array.size != EMBEDDING_DIM:
            logger.warning(
                f"{self.model_name} produced {embedding_array.size}-d embedding, "
                f"registry expects {EMBEDDING_DIM}"
            )

        # Normalize so Euclidean distances live on a comparable scale
        norm = np.linalg.norm(embedding_array)
        if norm > 0:
            embedding_array = embedding_array / norm

        return embedding_array

    def detect_face(self, image_bytes: bytes) -> Optional[np.ndarray]:
        """
        Complete pipeline: bytes -> embedding.

        Args:
            image_bytes: Raw image bytes

        Returns:
            Embedding, or None if the image holds no detectable face

        Raises:
            ValueError: If the bytes cannot be decoded as an image
        """
        img_array = load_image(image_bytes)
        return self.generate_embedding(img_array)

    __call__ = detect_face


# Singleton instance
face_service = FaceEmbeddingService()

"""
Embedding collaborators shared by the semantic cache and the threat
classifier's semantic stage.

- HashingEmbedder: deterministic feature hashing of words and character
  trigrams into a fixed-size vector. No model download, stable across runs.
- SentenceTransformerEmbedder: sentence-transformers model, loaded on first use
  (install the ``embeddings`` extra).
"""

import hashlib
import logging
import re
import threading
from typing import Any, Protocol, runtime_checkable

import numpy as np

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"\w+", re.UNICODE)


@runtime_checkable
class Embedder(Protocol):
    """Anything that maps text to a 1-D float vector."""

    def embed(self, text: str) -> np.ndarray: ...


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity of two vectors; 0.0 when either has zero norm."""
    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(a, b) / (norm_a * norm_b))


def cosine_similarities(matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
    """Row-wise cosine similarity of ``matrix`` against ``vector``."""
    if matrix.size == 0:
        return np.zeros(0, dtype=np.float32)
    row_norms = np.linalg.norm(matrix, axis=1)
    row_norms = np.where(row_norms == 0, 1, row_norms)
    vector_norm = float(np.linalg.norm(vector)) or 1.0
    return (matrix @ vector) / (row_norms * vector_norm)


class HashingEmbedder:
    """Signed feature hashing over word unigrams and character trigrams."""

    def __init__(self, dim: int = 256) -> None:
        self.dim = dim

    def _features(self, text: str) -> list[str]:
        words = _WORD_RE.findall(text.lower())
        features = [f"w:{w}" for w in words]
        for w in words:
            padded = f"#{w}#"
            features.extend(f"c:{padded[i:i + 3]}" for i in range(len(padded) - 2))
        return features

    def embed(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dim, dtype=np.float32)
        for feature in self._features(text):
            digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
            value = int.from_bytes(digest, "little")
            index = value % self.dim
            sign = 1.0 if (value >> 63) & 1 else -1.0
            vector[index] += sign
        norm = float(np.linalg.norm(vector))
        if norm > 0:
            vector /= norm
        return vector


class SentenceTransformerEmbedder:
    """sentence-transformers model wrapper with lazy, thread-safe loading."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2") -> None:
        self.model_name = model_name
        self._model: Any | None = None
        self._lock = threading.Lock()

    def _get_model(self) -> Any:
        if self._model is None:
            with self._lock:
                if self._model is None:
                    from sentence_transformers import SentenceTransformer

                    logger.info("Loading embeddings model %s...", self.model_name)
                    self._model = SentenceTransformer(self.model_name)
                    logger.info("Embeddings model loaded")
        return self._model

    def embed(self, text: str) -> np.ndarray:
        return np.asarray(self._get_model().encode([text])[0], dtype=np.float32)


def create_embedder(kind: str, dim: int = 256, model_name: str = "all-MiniLM-L6-v2") -> Embedder:
    """Return the embedder named in configuration."""
    if kind == "sentence-transformers":
        return SentenceTransformerEmbedder(model_name)
    if kind == "hashing":
        return HashingEmbedder(dim)
    raise ValueError(f"Unknown embedder: {kind}")

"""Semantic response cache and the embedders it relies on."""

from .embeddings import Embedder, HashingEmbedder, SentenceTransformerEmbedder, create_embedder
from .semantic_cache import CacheEntry, SemanticCache

__all__ = [
    "CacheEntry",
    "Embedder",
    "HashingEmbedder",
    "SemanticCache",
    "SentenceTransformerEmbedder",
    "create_embedder",
]

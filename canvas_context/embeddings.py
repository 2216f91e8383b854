"""
Embeddings Module

Text chunking, vector similarity and the embedding providers used to index
course content.

The default provider runs a sentence-transformers model locally
(all-MiniLM-L6-v2, 384 dimensions). sentence-transformers is an optional
dependency; install it with ``pip install canvas-context[embeddings]``.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import numpy as np

from .config import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE, DEFAULT_EMBEDDING_MODEL, Settings
from .exceptions import ConfigurationError, ValidationError

logger = logging.getLogger("canvas_context.embeddings")

# Known output sizes; anything else is read from the loaded model
MODEL_DIMENSIONS = {
    "all-MiniLM-L6-v2": 384,
    "all-MiniLM-L12-v2": 384,
    "all-mpnet-base-v2": 768,
    "multi-qa-MiniLM-L6-cos-v1": 384,
}


def split_into_chunks(
    text: Optional[str],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP
) -> List[str]:
    """
    Split text into fixed-size character windows that overlap.

    Windows start every ``chunk_size - overlap`` characters. The last window
    is the first one that reaches the end of the text.

    Args:
        text: Text to split (None or empty yields no chunks)
        chunk_size: Characters per chunk
        overlap: Characters shared by consecutive chunks

    Returns:
        List of chunk strings

    Raises:
        ValidationError: If chunk_size is not positive or overlap is not smaller than chunk_size

    Examples:
        >>> [len(c) for c in split_into_chunks("x" * 1000)]
        [512, 512, 232]
    """
    if chunk_size <= 0:
        raise ValidationError(f"chunk_size must be positive, got {chunk_size}")
    if overlap < 0 or overlap >= chunk_size:
        raise ValidationError(f"overlap must be between 0 and chunk_size - 1, got {overlap}")

    if not text:
        return []

    step = chunk_size - overlap
    chunks = []
    start = 0
    while start < len(text):
        chunks.append(text[start:start + chunk_size])
        if start + chunk_size >= len(text):
            break
        start += step
    return chunks


def cosine_similarities(matrix: Sequence[Sequence[float]], query: Sequence[float]) -> np.ndarray:
    """
    Cosine similarity of each row of a matrix to a query vector.

    Rows or queries with zero norm score 0.0.
    """
    rows = np.asarray(matrix, dtype=float)
    vec = np.asarray(query, dtype=float)
    norms = np.linalg.norm(rows, axis=1) * np.linalg.norm(vec)
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.where(norms > 0, rows @ vec / norms, 0.0)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 for mismatched lengths or zero vectors."""
    if len(a) != len(b):
        return 0.0
    return float(cosine_similarities([a], b)[0])


class EmbeddingProvider(ABC):
    """
    Interface for anything that turns text into a fixed-size vector.

    embed_batch defaults to one embed_text call per text.
    """

    @property
    @abstractmethod
    def model_name(self) -> str:
        pass

    @property
    @abstractmethod
    def dimensions(self) -> int:
        pass

    @abstractmethod
    def embed_text(self, text: str) -> List[float]:
        """
        Embed a single text string.

        Args:
            text: Text to embed

        Returns:
            Embedding vector as list of floats
        """
        pass

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        return [self.embed_text(t) for t in texts]


class SentenceTransformerEmbedder(EmbeddingProvider):
    """
    Local embeddings via sentence-transformers.

    The model is loaded on first use so that importing this module (and
    starting the MCP server) stays fast.

    Example:
        >>> embedder = SentenceTransformerEmbedder()
        >>> len(embedder.embed_text("Week 3 reading list"))
        384
    """

    def __init__(self, model_name: str = DEFAULT_EMBEDDING_MODEL, device: Optional[str] = None):
        self._model_name = model_name
        self._device = device
        self._dimensions = MODEL_DIMENSIONS.get(model_name)
        self._model = None

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimensions(self) -> int:
        if self._dimensions is None:
            self._dimensions = self.model.get_sentence_embedding_dimension()
        return self._dimensions

    @property
    def model(self):
        """Lazy load and return the sentence transformer model."""
        if self._model is None:
            self._load_model()
        return self._model

    def _load_model(self) -> None:
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise ConfigurationError(
                "sentence-transformers is required for embeddings.\n"
                "Install with: pip install canvas-context[embeddings]"
            )

        logger.info(f"Loading embedding model: {self._model_name}")
        self._model = SentenceTransformer(self._model_name, device=self._device)
        self._dimensions = self._model.get_sentence_embedding_dimension()
        logger.info(f"Embedding model loaded: {self._model_name} (dims={self._dimensions})")

    def embed_text(self, text: str) -> List[float]:
        embedding = self.model.encode(
            text,
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return embedding.tolist()

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        embeddings = self.model.encode(
            list(texts),
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return [e.tolist() for e in embeddings]


_embedder_cache = {}


def get_embedder(settings: Optional[Settings] = None) -> EmbeddingProvider:
    """
    Get the shared embedding provider for the configured model.

    Args:
        settings: Loaded settings (default model if None)

    Returns:
        EmbeddingProvider instance, cached per model name
    """
    model_name = settings.embedding_model if settings else DEFAULT_EMBEDDING_MODEL
    if model_name not in _embedder_cache:
        _embedder_cache[model_name] = SentenceTransformerEmbedder(model_name)
    return _embedder_cache[model_name]

"""
Embedding providers and the caching gateway in front of them.

Providers wrap an embedding model; EmbeddingGateway is what the rest of the
core talks to. It caches vectors by content hash and turns provider failures
into EmbeddingError. It never retries.
"""

from abc import ABC, abstractmethod
from collections import OrderedDict
import hashlib
import threading
from typing import Dict

import numpy as np

from ..core.errors import EmbeddingError
from ..util.logging import logger


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    query_prefix: str = ""

    @abstractmethod
    def embed_text(self, text: str) -> np.ndarray:
        """Generate embedding vector for given text."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass

    def embed_query(self, text: str) -> np.ndarray:
        """Embed a search query, applying the model's retrieval prefix."""
        return self.embed_text(f"{self.query_prefix}{text}")


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic hash-based embedding provider for testing purposes.

    Seeds a random generator from a SHA-256 of the text, so identical text
    always yields an identical vector without loading a model. Carries no
    semantic meaning.
    """

    def __init__(self, dimension: int = 1024):
        self.dimension = dimension

    def embed_text(self, text: str) -> np.ndarray:
        """Generate deterministic embedding vector using hash function."""
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        rng = np.random.default_rng(int.from_bytes(digest[:8], "big"))
        return rng.standard_normal(self.dimension).astype(np.float32)

    def get_dimension(self) -> int:
        return self.dimension


class SentenceTransformerEmbedding(IEmbeddingProvider):
    """Sentence transformers embedding provider using pre-trained models.

    Defaults to mxbai-embed-large-v1 (1024 dimensions), which expects a
    retrieval instruction in front of search queries but not documents.
    """

    def __init__(self, model_name: str = "mixedbread-ai/mxbai-embed-large-v1", query_prefix: str = ""):
        self.model_name = model_name
        self.query_prefix = query_prefix
        self._model = None
        self._load_lock = threading.Lock()

    @property
    def model(self):
        if self._model is None:
            with self._load_lock:
                if self._model is None:
                    from sentence_transformers import SentenceTransformer
                    logger.info(f"Loading embedding model {self.model_name}")
                    self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed_text(self, text: str) -> np.ndarray:
        """Generate embedding vector using sentence transformers."""
        embedding = self.model.encode(text, convert_to_numpy=True)
        return np.asarray(embedding, dtype=np.float32)

    def get_dimension(self) -> int:
        return self.model.get_sentence_embedding_dimension()


class EmbeddingGateway:
    """Caching front for an embedding provider.

    The cache is an LRU keyed by SHA-256 of the (kind, text) pair so memory is
    bounded by capacity, not by text length. Capacity 0 disables caching.
    Cached vectors are read-only arrays shared between callers.
    """

    DOCUMENT = "doc"
    QUERY = "query"

    def __init__(self, provider: IEmbeddingProvider, cache_size: int = 2048):
        if cache_size < 0:
            raise ValueError(f"cache_size must be >= 0, got {cache_size}")
        self.provider = provider
        self.capacity = cache_size
        self._cache: "OrderedDict[str, np.ndarray]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @property
    def dimension(self) -> int:
        try:
            return self.provider.get_dimension()
        except Exception as e:
            raise EmbeddingError(EmbeddingError.MODEL_UNAVAILABLE, str(e)) from e

    def embed(self, text: str) -> np.ndarray:
        """Embed item text (name and description)."""
        return self._embed(self.DOCUMENT, text)

    def embed_query(self, text: str) -> np.ndarray:
        """Embed a search query."""
        return self._embed(self.QUERY, text)

    def cache_info(self) -> Dict[str, int]:
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "size": len(self._cache),
                "capacity": self.capacity,
            }

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    @staticmethod
    def _key(kind: str, text: str) -> str:
        return hashlib.sha256(f"{kind}\x00{text}".encode("utf-8")).hexdigest()

    def _embed(self, kind: str, text: str) -> np.ndarray:
        if not isinstance(text, str) or not text.strip():
            raise EmbeddingError(EmbeddingError.INVALID_INPUT, "text must be a non-empty string")

        key = self._key(kind, text)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                self._cache.move_to_end(key)
                self._hits += 1
                return cached
            self._misses += 1

        # Model call happens outside the lock
        vector = self._call_provider(kind, text)

        if self.capacity:
            with self._lock:
                self._cache[key] = vector
                self._cache.move_to_end(key)
                while len(self._cache) > self.capacity:
                    self._cache.popitem(last=False)
        return vector

    def _call_provider(self, kind: str, text: str) -> np.ndarray:
        try:
            if kind == self.QUERY:
                raw = self.provider.embed_query(text)
            else:
                raw = self.provider.embed_text(text)
        except EmbeddingError:
            raise
        except TimeoutError as e:
            raise EmbeddingError(EmbeddingError.TIMEOUT, str(e)) from e
        except (ValueError, TypeError) as e:
            raise EmbeddingError(EmbeddingError.INVALID_INPUT, str(e)) from e
        except Exception as e:
            raise EmbeddingError(EmbeddingError.MODEL_UNAVAILABLE, str(e)) from e

        vector = np.array(raw, dtype=np.float32).reshape(-1)
        expected = self.dimension
        if vector.shape[0] != expected:
            raise EmbeddingError(
                EmbeddingError.INVALID_INPUT,
                f"model returned {vector.shape[0]} dimensions, expected {expected}",
            )
        vector.setflags(write=False)
        return vector

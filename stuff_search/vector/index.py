"""
Vector index contract and the default exact (brute-force) strategy.

Vectors are L2-normalized on the way in so search is a dot product.
Ranking: descending cosine score, ties broken by ascending id.
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import numpy as np

from ..core.errors import DimensionMismatch, DuplicateId, InvalidK, InvalidVector, VectorNotFound
from .types import QueryResult


def normalize(vector, dimension: int) -> np.ndarray:
    """Validate a raw vector against `dimension` and return it L2-normalized as float32.

    Raises:
        DimensionMismatch: wrong length
        InvalidVector: non-finite values or zero norm
    """
    array = np.asarray(vector, dtype=np.float32).reshape(-1)
    if array.shape[0] != dimension:
        raise DimensionMismatch(dimension, array.shape[0])
    if not np.all(np.isfinite(array)):
        raise InvalidVector("Vector contains non-finite values")

    norm = np.linalg.norm(array)
    if norm == 0:
        raise InvalidVector("Zero vector cannot be normalized")
    return (array / norm).astype(np.float32)


def rank(ids: np.ndarray, scores: np.ndarray, k: int) -> List[QueryResult]:
    """Order hits by descending score then ascending id and keep the first k."""
    order = np.lexsort((ids, -scores))[:k]
    return [QueryResult(id=int(ids[i]), score=float(scores[i])) for i in order]


class IVectorIndex(ABC):
    """Abstract interface for vector index strategies."""

    dimension: int

    @abstractmethod
    def insert(self, record_id: int, vector) -> None:
        """Add a new entry. Raises DimensionMismatch or DuplicateId."""
        pass

    @abstractmethod
    def update(self, record_id: int, vector) -> None:
        """Replace the vector of an existing entry. Raises VectorNotFound."""
        pass

    @abstractmethod
    def remove(self, record_id: int) -> None:
        """Delete an entry. Raises VectorNotFound."""
        pass

    @abstractmethod
    def search(self, query_vector, k: int) -> List[QueryResult]:
        """Return up to k hits ranked by cosine similarity."""
        pass

    @abstractmethod
    def contains(self, record_id: int) -> bool:
        pass

    @abstractmethod
    def get(self, record_id: int) -> Optional[np.ndarray]:
        """Return the normalized vector stored for an entry, or None."""
        pass

    @abstractmethod
    def ids(self) -> List[int]:
        pass

    @abstractmethod
    def clear(self) -> None:
        """Clear all entries from the index."""
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass

    def check_vector(self, vector) -> np.ndarray:
        """Validate a vector without touching the index."""
        return normalize(vector, self.dimension)

    def _check_k(self, k) -> None:
        if isinstance(k, bool) or not isinstance(k, (int, np.integer)) or k <= 0:
            raise InvalidK(k)


class BruteForceVectorIndex(IVectorIndex):
    """Exact top-K over an in-memory id -> vector map.

    A dense matrix of all vectors is cached for search and rebuilt lazily
    after any mutation. At household scale (thousands of items) a full scan
    is a few milliseconds.
    """

    def __init__(self, dimension: int):
        if dimension < 1:
            raise ValueError(f"dimension must be >= 1, got {dimension}")
        self.dimension = dimension
        self._lock = threading.RLock()
        self._vectors: Dict[int, np.ndarray] = {}
        self._matrix: Optional[np.ndarray] = None
        self._matrix_ids: Optional[np.ndarray] = None

    def insert(self, record_id: int, vector) -> None:
        normalized = self.check_vector(vector)
        with self._lock:
            if record_id in self._vectors:
                raise DuplicateId(record_id)
            self._vectors[record_id] = normalized
            self._matrix = None

    def update(self, record_id: int, vector) -> None:
        normalized = self.check_vector(vector)
        with self._lock:
            if record_id not in self._vectors:
                raise VectorNotFound(record_id)
            self._vectors[record_id] = normalized
            self._matrix = None

    def remove(self, record_id: int) -> None:
        with self._lock:
            if record_id not in self._vectors:
                raise VectorNotFound(record_id)
            del self._vectors[record_id]
            self._matrix = None

    def search(self, query_vector, k: int) -> List[QueryResult]:
        self._check_k(k)

        query = np.asarray(query_vector, dtype=np.float64).reshape(-1)
        if query.shape[0] != self.dimension:
            raise DimensionMismatch(self.dimension, query.shape[0])
        norm = np.linalg.norm(query)
        if norm == 0:
            return []
        query = query / norm

        with self._lock:
            if not self._vectors:
                return []
            if self._matrix is None:
                self._matrix_ids = np.fromiter(self._vectors.keys(), dtype=np.int64, count=len(self._vectors))
                self._matrix = np.vstack(list(self._vectors.values())).astype(np.float64)
            matrix, ids = self._matrix, self._matrix_ids

        scores = matrix @ query
        return rank(ids, scores, k)

    def contains(self, record_id: int) -> bool:
        with self._lock:
            return record_id in self._vectors

    def get(self, record_id: int) -> Optional[np.ndarray]:
        with self._lock:
            vector = self._vectors.get(record_id)
        return None if vector is None else vector.copy()

    def ids(self) -> List[int]:
        with self._lock:
            return sorted(self._vectors)

    def clear(self) -> None:
        with self._lock:
            self._vectors.clear()
            self._matrix = None
            self._matrix_ids = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._vectors)

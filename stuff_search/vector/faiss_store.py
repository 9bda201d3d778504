"""
FAISS-backed vector index strategy.

Same contract as BruteForceVectorIndex: normalized vectors, inner-product
scoring, descending score with ascending-id tie break.
"""

import threading
from typing import Dict, List, Optional

import numpy as np

from ..core.errors import DimensionMismatch, DuplicateId, VectorNotFound
from .index import IVectorIndex, rank
from .types import QueryResult


class FaissVectorIndex(IVectorIndex):
    """FAISS-backed implementation of IVectorIndex."""

    def __init__(self, dimension: int = 1024):
        """
        Initialize FAISS vector index.

        Args:
            dimension: Dimension of the vectors (default: 1024 for mxbai-embed-large)
        """
        try:
            import faiss
        except ImportError:
            raise ImportError("FAISS not installed. Please install faiss-cpu package.")

        self.faiss = faiss
        self.dimension = dimension
        self._lock = threading.RLock()

        # Flat inner-product index wrapped in an id map so entries can be removed by id
        self.index = faiss.IndexIDMap2(faiss.IndexFlatIP(dimension))

        # Normalized copies for get() and drift audits
        self._vectors: Dict[int, np.ndarray] = {}

    def _add(self, record_id: int, normalized: np.ndarray) -> None:
        self.index.add_with_ids(normalized.reshape(1, -1), np.array([record_id], dtype=np.int64))
        self._vectors[record_id] = normalized

    def _delete(self, record_id: int) -> None:
        self.index.remove_ids(np.array([record_id], dtype=np.int64))
        del self._vectors[record_id]

    def insert(self, record_id: int, vector) -> None:
        normalized = self.check_vector(vector)
        with self._lock:
            if record_id in self._vectors:
                raise DuplicateId(record_id)
            self._add(record_id, normalized)

    def update(self, record_id: int, vector) -> None:
        normalized = self.check_vector(vector)
        with self._lock:
            if record_id not in self._vectors:
                raise VectorNotFound(record_id)
            self._delete(record_id)
            self._add(record_id, normalized)

    def remove(self, record_id: int) -> None:
        with self._lock:
            if record_id not in self._vectors:
                raise VectorNotFound(record_id)
            self._delete(record_id)

    def search(self, query_vector, k: int) -> List[QueryResult]:
        self._check_k(k)

        query = np.asarray(query_vector, dtype=np.float32).reshape(-1)
        if query.shape[0] != self.dimension:
            raise DimensionMismatch(self.dimension, query.shape[0])
        norm = np.linalg.norm(query)
        if norm == 0:
            return []
        query = (query / norm).reshape(1, -1)

        with self._lock:
            total = self.index.ntotal
            if not total:
                return []

            # FAISS cuts ties at the k boundary arbitrarily; widen the window
            # until the last fetched score is strictly below the k-th score.
            fetch = min(k + 1, total)
            while True:
                scores, labels = self.index.search(query, fetch)
                scores, labels = scores[0], labels[0]
                if fetch >= total or scores[fetch - 1] < scores[k - 1]:
                    break
                fetch = min(total, fetch * 2)

        valid = labels >= 0
        return rank(labels[valid], scores[valid].astype(np.float64), k)

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
        """Clear all entries from the FAISS index."""
        with self._lock:
            self.index = self.faiss.IndexIDMap2(self.faiss.IndexFlatIP(self.dimension))
            self._vectors.clear()

    def __len__(self) -> int:
        with self._lock:
            return self.index.ntotal

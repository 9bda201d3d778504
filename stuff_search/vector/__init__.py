"""
Vector layer - embeddings and the id -> vector index over the SQLite inventory.
"""

# Package initialization for vector module
from .index import IVectorIndex, BruteForceVectorIndex
from .faiss_store import FaissVectorIndex
from .types import QueryResult
from .embeddings import (
    IEmbeddingProvider,
    DeterministicHashEmbedding,
    SentenceTransformerEmbedding,
    EmbeddingGateway,
)

__all__ = [
    'IVectorIndex',
    'BruteForceVectorIndex',
    'FaissVectorIndex',
    'QueryResult',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'SentenceTransformerEmbedding',
    'EmbeddingGateway',
]

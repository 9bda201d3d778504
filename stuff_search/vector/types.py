"""
Vector index record types.
"""

from dataclasses import dataclass


@dataclass
class QueryResult:
    """A ranked hit from a vector index search."""

    id: int
    """Identifier of the matching entry"""

    score: float
    """Cosine similarity to the query, in [-1, 1]"""

    def __iter__(self):
        # Allows `for record_id, score in index.search(...)`
        return iter((self.id, self.score))

"""
Semantic search over the inventory.

The vector index answers "which ids are closest"; SQLite stays canonical for
what those ids mean. Results whose item vanished between the index search
and hydration are dropped, never reported.
"""

from typing import Dict, List, Optional

from ..util.logging import logger
from .config import SEARCH_MIN_SCORE
from .errors import ContainerNotFound, InvalidK, InvalidQuery
from .schema import SearchResult


class RetrievalEngine:
    """Query embedding, top-K search, hydration and container path resolution."""

    def __init__(self, store, gateway, min_score: Optional[float] = None):
        self.store = store
        self.gateway = gateway
        self.min_score = SEARCH_MIN_SCORE if min_score is None else min_score

    @property
    def index(self):
        return self.store.index

    def search(self, query_text: str, k: int = 5) -> List[SearchResult]:
        """
        Rank stored items by similarity to `query_text`.

        Args:
            query_text: Free-text description of what the user is looking for
            k: Maximum number of results

        Returns:
            Up to k SearchResults ordered by descending score, ties by ascending id

        Raises:
            InvalidQuery: empty or whitespace query (checked before embedding)
            InvalidK: k is not a positive integer
            EmbeddingError: the query could not be embedded
            CorruptContainerGraph: an item's container chain loops
        """
        if not isinstance(query_text, str) or not query_text.strip():
            raise InvalidQuery("Query text cannot be empty")
        if isinstance(k, bool) or not isinstance(k, int) or k <= 0:
            raise InvalidK(k)

        query_vector = self.gateway.embed_query(query_text.strip())
        hits = self.index.search(query_vector, k)
        if self.min_score is not None:
            hits = [hit for hit in hits if hit.score >= self.min_score]

        scores = {hit.id: hit.score for hit in hits}
        summaries = self.store.hydrate([hit.id for hit in hits])

        paths: Dict[int, List[str]] = {}
        results = []
        for summary in summaries:
            if summary.container_id not in paths:
                try:
                    paths[summary.container_id] = self.store.container_path(summary.container_id)
                except ContainerNotFound:
                    # Item was moved and its old container removed after hydration
                    continue
            results.append(SearchResult(
                item=summary,
                container_path=list(paths[summary.container_id]),
                score=scores[summary.id],
            ))

        logger.log_search(query_text, k, len(results), dropped=len(hits) - len(results))
        return results

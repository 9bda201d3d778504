"""
InventoryService - wires the store, index, gateway and coordinators together
and exposes the operations the HTTP layer calls.
"""

import threading
from typing import Dict, List, Optional, Sequence

from ..util.logging import logger
from . import config
from .drift_rules import detect_drift
from .errors import ItemNotFound
from .import_queue import ImportQueue, ImportRequest
from .ingestion import ImageInput, IngestionCoordinator, item_text
from .inventory import InventoryStore
from .reorganize import ReorganizationCoordinator
from .schema import BatchReport, Container, ImportRecord, Item, SearchResult
from .search_service import RetrievalEngine


class InventoryService:
    """Facade over the inventory core."""

    def __init__(self, store: InventoryStore, gateway, captioner, assets=None,
                 workers: Optional[int] = None, min_score: Optional[float] = None):
        self.store = store
        self.gateway = gateway
        self.captioner = captioner
        self.assets = assets
        self.ingestion = IngestionCoordinator(store, gateway, captioner, assets, workers=workers)
        self.retrieval = RetrievalEngine(store, gateway, min_score=min_score)
        self.reorganization = ReorganizationCoordinator(store)
        self._queue: Optional[ImportQueue] = None
        self._queue_lock = threading.Lock()

    @classmethod
    def from_config(cls, db_path: Optional[str] = None) -> "InventoryService":
        """Build a service from environment configuration and load persisted vectors."""
        gateway = config.get_embedding_gateway()
        index = config.get_vector_index(gateway.dimension)
        store = InventoryStore(db_path or config.DB_PATH, index=index)
        store.load_index()
        return cls(
            store,
            gateway,
            config.get_captioner(),
            assets=config.get_asset_store(),
            workers=config.INGEST_WORKERS,
            min_score=config.SEARCH_MIN_SCORE,
        )

    @property
    def import_queue(self) -> ImportQueue:
        with self._queue_lock:
            if self._queue is None:
                self._queue = ImportQueue(self.store, self.ingestion)
            return self._queue

    def close(self) -> None:
        with self._queue_lock:
            queue, self._queue = self._queue, None
        if queue is not None:
            queue.shutdown()

    # Containers

    def create_container(self, name: str, parent_id: Optional[int] = None, location: Optional[str] = None) -> int:
        return self.store.create_container(name, parent_id=parent_id, location=location)

    def get_container(self, container_id: int) -> Optional[Container]:
        return self.store.get_container(container_id)

    def list_containers(self, **filters) -> List[Container]:
        return self.store.list_containers(**filters)

    def container_path(self, container_id: int) -> List[str]:
        return self.store.container_path(container_id)

    def move_container(self, container_id: int, new_parent_id: Optional[int]) -> None:
        self.reorganization.move_container(container_id, new_parent_id)

    def delete_container(self, container_id: int) -> None:
        self.store.delete_container(container_id)

    # Items

    def ingest_batch(self, container_id: int, images: Sequence[ImageInput],
                     cancel_event: Optional[threading.Event] = None) -> BatchReport:
        return self.ingestion.ingest_batch(container_id, images, cancel_event=cancel_event)

    def move_item(self, item_id: int, new_container_id: int) -> None:
        self.reorganization.move_item(item_id, new_container_id)

    def edit_item_description(self, item_id: int, new_description: str, name: Optional[str] = None) -> Item:
        """Replace an item's description and re-embed it.

        The new vector is computed before anything is written, so an
        EmbeddingError leaves the item exactly as it was.
        """
        item = self.store.get_item(item_id)
        if item is None:
            raise ItemNotFound(item_id)

        vector = self.gateway.embed(item_text(name or item.name, new_description))
        self.store.update_item_description(item_id, new_description, vector, name=name)
        return self.store.get_item(item_id)

    def delete_item(self, item_id: int) -> None:
        self.store.delete_item(item_id)

    def get_item(self, item_id: int) -> Optional[Item]:
        return self.store.get_item(item_id)

    def list_items(self, container_id: Optional[int] = None) -> List[Item]:
        return self.store.list_items(container_id)

    # Search

    def search(self, query_text: str, k: Optional[int] = None) -> List[SearchResult]:
        return self.retrieval.search(query_text, config.SEARCH_DEFAULT_K if k is None else k)

    # Imports

    def submit_import(self, source: str, payload: bytes, container_id: int) -> int:
        return self.import_queue.submit(ImportRequest(source=source, payload=payload, container_id=container_id))

    def get_import(self, import_id: int) -> Optional[ImportRecord]:
        return self.store.get_import(import_id)

    def list_imports(self, limit: int = 50) -> List[ImportRecord]:
        return self.store.list_imports(limit)

    # Health

    def health(self) -> Dict:
        findings = detect_drift(self.store)
        drift: Dict[str, int] = {}
        for finding in findings:
            drift[finding.type] = drift.get(finding.type, 0) + 1

        status = {
            "counts": self.store.counts(),
            "drift": drift,
            "embedding_cache": self.gateway.cache_info(),
        }
        if drift:
            logger.warning(f"Health check found drift: {drift}")
        return status

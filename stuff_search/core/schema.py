"""
Typed records passed between the store, the coordinators and the API layer.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class Container:
    id: int
    name: str
    parent_id: Optional[int]
    location: Optional[str]
    created_at: datetime


@dataclass
class Item:
    id: int
    container_id: int
    name: str
    description: str
    image_ref: Optional[str]
    embedding_id: Optional[int]  # None when the vector is missing
    created_at: datetime
    updated_at: datetime
    thumbnail_ref: Optional[str] = None


@dataclass
class ItemSummary:
    """Item metadata as returned by hydration."""
    id: int
    container_id: int
    name: str
    description: str
    image_ref: Optional[str]
    thumbnail_ref: Optional[str] = None


@dataclass
class SearchResult:
    item: ItemSummary
    container_path: List[str]
    score: float


@dataclass
class ImportRecord:
    id: int
    source: str
    status: str  # queued, running, complete, cancelled, failed
    message: Optional[str]
    container_id: int
    succeeded: int
    failed: int
    created_at: datetime
    updated_at: datetime


SUCCEEDED = "succeeded"
FAILED = "failed"


@dataclass
class IngestOutcome:
    """Result of ingesting a single image."""
    index: int
    source: str
    status: str
    item_id: Optional[int] = None
    reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED


@dataclass
class BatchReport:
    container_id: int
    outcomes: List[IngestOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.succeeded)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.succeeded)

    @property
    def item_ids(self) -> List[int]:
        return [o.item_id for o in self.outcomes if o.succeeded]

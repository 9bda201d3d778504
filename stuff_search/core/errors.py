"""
Error taxonomy for the inventory core.

Four families, each mapped to one caller-facing behavior:
    ValidationError       bad input, rejected before any state change
    NotFoundError         referenced id absent, surfaced without retry
    ConsistencyError      paired-write failure or corrupt graph, logged as a defect
    ExternalServiceError  captioning/embedding/asset storage failure, isolated per image on ingest
"""

from typing import Optional


class StuffSearchError(Exception):
    """Base class for all errors raised by the core."""


class ValidationError(StuffSearchError):
    """Input rejected before any mutation."""


class NotFoundError(StuffSearchError):
    """A referenced id does not exist."""


class ConsistencyError(StuffSearchError):
    """An invariant was violated or a paired write could not complete."""


class ExternalServiceError(StuffSearchError):
    """An external capability (captioner, embedding model) failed."""


class VectorIndexError(StuffSearchError):
    """Mixin base for errors raised by a vector index."""


# Validation

class InvalidQuery(ValidationError):
    pass


class InvalidImage(ValidationError):
    """Bytes that do not decode as a picture."""

    def __init__(self, source: Optional[str] = None):
        super().__init__("file not an image" if source is None else f"{source}: file not an image")
        self.source = source


class InvalidK(ValidationError, VectorIndexError):
    def __init__(self, k):
        super().__init__(f"k must be a positive integer, got {k!r}")
        self.k = k


class CycleDetected(ValidationError):
    def __init__(self, container_id: int, parent_id: int):
        super().__init__(
            f"Setting parent of container {container_id} to {parent_id} would create a cycle"
        )
        self.container_id = container_id
        self.parent_id = parent_id


class NotEmpty(ValidationError):
    def __init__(self, container_id: int, items: int, children: int):
        super().__init__(
            f"Container {container_id} still holds {items} item(s) and {children} container(s)"
        )
        self.container_id = container_id
        self.items = items
        self.children = children


class DimensionMismatch(ValidationError, VectorIndexError):
    def __init__(self, expected: int, actual: int):
        super().__init__(f"Vector dimension {actual} does not match expected dimension {expected}")
        self.expected = expected
        self.actual = actual


class InvalidVector(ValidationError, VectorIndexError):
    pass


class DuplicateId(VectorIndexError):
    def __init__(self, record_id: int):
        super().__init__(f"Vector entry {record_id} already exists")
        self.record_id = record_id


# Not found

class ContainerNotFound(NotFoundError):
    def __init__(self, container_id):
        super().__init__(f"Container {container_id} not found")
        self.container_id = container_id


class ItemNotFound(NotFoundError):
    def __init__(self, item_id):
        super().__init__(f"Item {item_id} not found")
        self.item_id = item_id


class ImportNotFound(NotFoundError):
    def __init__(self, import_id):
        super().__init__(f"Import {import_id} not found")
        self.import_id = import_id


class AssetNotFound(NotFoundError):
    def __init__(self, ref):
        super().__init__(f"Asset {ref} not found")
        self.ref = ref


class VectorNotFound(NotFoundError, VectorIndexError):
    def __init__(self, record_id):
        super().__init__(f"Vector entry {record_id} not found")
        self.record_id = record_id


# Consistency

class CorruptContainerGraph(ConsistencyError):
    def __init__(self, container_id: int, path: Optional[list] = None):
        super().__init__(f"Container graph loops back through container {container_id}")
        self.container_id = container_id
        self.path = path or []


class PairedWriteError(ConsistencyError):
    """Item row and vector entry could not be committed together."""


# External services

class CaptioningError(ExternalServiceError):
    """Captioner failed: quota, timeout or malformed response."""


class AssetStoreError(ExternalServiceError):
    """Photo storage could not persist or read an asset."""


class EmbeddingError(ExternalServiceError):
    """Embedding model failed.

    Attributes:
        kind: one of EmbeddingError.TIMEOUT, MODEL_UNAVAILABLE, INVALID_INPUT
    """

    TIMEOUT = "timeout"
    MODEL_UNAVAILABLE = "model_unavailable"
    INVALID_INPUT = "invalid_input"

    def __init__(self, kind: str, message: str = ""):
        super().__init__(f"{kind}: {message}" if message else kind)
        self.kind = kind

"""
Shared fixtures: a temporary SQLite inventory, an exact vector index and a
small keyword embedding whose geometry is easy to reason about in tests.
"""

import io
import re

import numpy as np
import pytest
from PIL import Image

from stuff_search.core.inventory import InventoryStore
from stuff_search.core.service import InventoryService
from stuff_search.vector import BruteForceVectorIndex, EmbeddingGateway, IEmbeddingProvider
from stuff_search.vision import MemoryAssetStore, MockCaptioner

DIM = 8

# Each concept is one axis; the last axis is a constant bias so no text embeds to zero.
CONCEPTS = [
    {"thread", "threads", "tap", "taps", "threading"},
    {"tool", "tools", "drill", "metal", "cutting"},
    {"paper", "paperclip", "paperclips", "clip", "clips", "office"},
    {"box", "bin", "crate"},
    {"hole", "holes", "internal"},
    {"cable", "cables", "usb", "charger"},
    {"battery", "batteries", "aa"},
]


class KeywordEmbedding(IEmbeddingProvider):
    """Bag-of-concepts embedding: deterministic, and similar texts share axes."""

    def __init__(self, dimension: int = DIM):
        self.dimension = dimension

    def embed_text(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype=np.float32)
        for word in re.findall(r"[a-z]+", text.lower()):
            for axis, words in enumerate(CONCEPTS):
                if word in words:
                    vector[axis] += 1.0
        vector[-1] = 0.1
        return vector

    def get_dimension(self) -> int:
        return self.dimension


def make_photo(seed: int, size=(24, 16), fmt: str = "PNG") -> bytes:
    """A small real picture. Different seeds give different bytes."""
    color = ((seed * 67) % 256, (seed * 131) % 256, (seed * 29) % 256)
    image = Image.new("RGB", (size[0] + seed, size[1]), color)
    buffer = io.BytesIO()
    image.save(buffer, fmt)
    return buffer.getvalue()


def axis(i: int, dim: int = DIM) -> np.ndarray:
    """Unit vector along axis i."""
    v = np.zeros(dim, dtype=np.float32)
    v[i] = 1.0
    return v


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "inventory.db")


@pytest.fixture
def index():
    return BruteForceVectorIndex(DIM)


@pytest.fixture
def store(db_path, index):
    return InventoryStore(db_path, index=index)


@pytest.fixture
def gateway():
    return EmbeddingGateway(KeywordEmbedding(), cache_size=64)


@pytest.fixture
def captioner():
    return MockCaptioner()


@pytest.fixture
def assets():
    return MemoryAssetStore()


@pytest.fixture
def service(store, gateway, captioner, assets):
    svc = InventoryService(store, gateway, captioner, assets=assets, workers=2)
    yield svc
    svc.close()


def assert_paired(store):
    """Every item has exactly one vector row and one index entry, and vice versa."""
    item_ids = set(store.item_ids())
    vector_ids = {record_id for record_id, _, _ in store.iter_vectors()}
    assert item_ids == vector_ids
    assert item_ids == set(store.index.ids())

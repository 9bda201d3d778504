"""
Photo storage. The core only keeps the opaque reference returned by store().
"""

from abc import ABC, abstractmethod
import hashlib
import re
import threading
from pathlib import Path
from typing import Dict

from ..core.errors import AssetNotFound, AssetStoreError, ValidationError

_REF_PATTERN = re.compile(r"^[0-9a-f]{64}$")


class IAssetStore(ABC):
    """Abstract interface for photo storage."""

    @abstractmethod
    def store(self, data: bytes) -> str:
        """Persist photo bytes and return a reference."""
        pass

    @abstractmethod
    def retrieve(self, ref: str) -> bytes:
        """Return the bytes behind a reference. Raises AssetNotFound."""
        pass


def content_ref(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FileAssetStore(IAssetStore):
    """Content-addressed files under `root`, fanned out by the first two hex digits."""

    def __init__(self, root: str):
        self.root = Path(root)

    def _path(self, ref: str) -> Path:
        if not _REF_PATTERN.match(ref or ""):
            raise ValidationError(f"Invalid asset reference: {ref!r}")
        return self.root / ref[:2] / ref

    def store(self, data: bytes) -> str:
        ref = content_ref(data)
        path = self._path(ref)
        if path.exists():
            return ref

        tmp = path.parent / f"{ref}.{threading.get_ident()}.tmp"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(data)
            tmp.replace(path)
        except OSError as e:
            raise AssetStoreError(f"Could not store asset {ref}: {e}") from e
        return ref

    def retrieve(self, ref: str) -> bytes:
        path = self._path(ref)
        if not path.exists():
            raise AssetNotFound(ref)
        try:
            return path.read_bytes()
        except OSError as e:
            raise AssetStoreError(f"Could not read asset {ref}: {e}") from e


class MemoryAssetStore(IAssetStore):
    """In-process asset store for tests."""

    def __init__(self):
        self._data: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def store(self, data: bytes) -> str:
        ref = content_ref(data)
        with self._lock:
            self._data[ref] = bytes(data)
        return ref

    def retrieve(self, ref: str) -> bytes:
        with self._lock:
            if ref not in self._data:
                raise AssetNotFound(ref)
            return self._data[ref]

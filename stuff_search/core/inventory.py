"""
InventoryStore - durable containers and items with their paired vector entries.

SQLite is the canonical record. Every item row has exactly one row in
`vectors` and one entry in the in-memory vector index; all three change
inside one transaction under the store-wide write lock. The index entry is
published just before commit and withdrawn again if the commit fails.

Reads (hydrate, get_*, list_*) open their own connections and never take
the write lock.
"""

import sqlite3
import threading
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from ..util.logging import logger
from .config import DB_PATH, get_vector_index
from .db import get_db, init_db
from .errors import (
    ContainerNotFound,
    CorruptContainerGraph,
    CycleDetected,
    ImportNotFound,
    ItemNotFound,
    NotEmpty,
    PairedWriteError,
    ValidationError,
    VectorIndexError,
    VectorNotFound,
)
from .schema import Container, ImportRecord, Item, ItemSummary

IMPORT_QUEUED = "queued"
IMPORT_RUNNING = "running"
IMPORT_COMPLETE = "complete"
IMPORT_CANCELLED = "cancelled"
IMPORT_FAILED = "failed"

HYDRATE_CHUNK_SIZE = 500

_UNSET = object()


def _ts(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _required_text(value, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} cannot be empty")
    return value.strip()


def _to_blob(vector: np.ndarray) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def _from_blob(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32).copy()


class InventoryStore:
    """Durable CRUD for containers and items, linked to a vector index."""

    def __init__(self, db_path: str = None, index=None):
        self.db_path = db_path or DB_PATH
        self.index = index if index is not None else get_vector_index()
        self._write_lock = threading.RLock()
        init_db(self.db_path)

    def _connect(self):
        return get_db(self.db_path)

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def create_container(self, name: str, parent_id: Optional[int] = None, location: Optional[str] = None) -> int:
        """Create a container, optionally nested inside `parent_id`."""
        name = _required_text(name, "name")

        with self._write_lock, self._connect() as conn:
            cursor = conn.cursor()
            if parent_id is not None and not self._container_exists(cursor, parent_id):
                raise ContainerNotFound(parent_id)

            cursor.execute(
                "INSERT INTO containers (name, location, parent_id) VALUES (?, ?, ?)",
                (name, location, parent_id)
            )
            container_id = cursor.lastrowid
            conn.commit()

        logger.log_container_operation("created", container_id, {"name": name, "parent_id": parent_id})
        return container_id

    def rename_container(self, container_id: int, name: Optional[str] = None, location=_UNSET) -> None:
        """Rename a container or change its location note."""
        if name is not None:
            name = _required_text(name, "name")

        with self._write_lock, self._connect() as conn:
            cursor = conn.cursor()
            if not self._container_exists(cursor, container_id):
                raise ContainerNotFound(container_id)
            if name is not None:
                cursor.execute("UPDATE containers SET name = ? WHERE id = ?", (name, container_id))
            if location is not _UNSET:
                cursor.execute("UPDATE containers SET location = ? WHERE id = ?", (location, container_id))
            conn.commit()

        logger.log_container_operation("updated", container_id)

    def set_container_parent(self, container_id: int, parent_id: Optional[int]) -> None:
        """Move a container under another one (or to the root with None).

        Raises:
            ContainerNotFound: either id is unknown
            CycleDetected: parent_id is the container itself or one of its descendants
        """
        with self._write_lock, self._connect() as conn:
            cursor = conn.cursor()
            if not self._container_exists(cursor, container_id):
                raise ContainerNotFound(container_id)

            if parent_id is not None:
                if not self._container_exists(cursor, parent_id):
                    raise ContainerNotFound(parent_id)
                ancestors = [row[0] for row in self._ancestor_chain(cursor, parent_id)]
                if container_id in ancestors:
                    raise CycleDetected(container_id, parent_id)

            cursor.execute("UPDATE containers SET parent_id = ? WHERE id = ?", (parent_id, container_id))
            conn.commit()

        logger.log_container_operation("moved", container_id, {"parent_id": parent_id})

    def delete_container(self, container_id: int) -> None:
        """Delete an empty container. Raises NotEmpty if it holds items or containers."""
        with self._write_lock, self._connect() as conn:
            cursor = conn.cursor()
            if not self._container_exists(cursor, container_id):
                raise ContainerNotFound(container_id)

            cursor.execute("SELECT COUNT(*) FROM items WHERE container_id = ?", (container_id,))
            items = cursor.fetchone()[0]
            cursor.execute("SELECT COUNT(*) FROM containers WHERE parent_id = ?", (container_id,))
            children = cursor.fetchone()[0]
            if items or children:
                raise NotEmpty(container_id, items, children)

            cursor.execute("DELETE FROM containers WHERE id = ?", (container_id,))
            conn.commit()

        logger.log_container_operation("deleted", container_id)

    def get_container(self, container_id: int) -> Optional[Container]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT id, name, parent_id, location, created_at FROM containers WHERE id = ?",
                (container_id,)
            )
            row = cursor.fetchone()
        return self._container_from_row(row) if row else None

    def list_containers(self, parent_id=_UNSET) -> List[Container]:
        """List all containers, or only the direct children of `parent_id` (None for roots)."""
        query = "SELECT id, name, parent_id, location, created_at FROM containers"
        params: Tuple = ()
        if parent_id is None:
            query += " WHERE parent_id IS NULL"
        elif parent_id is not _UNSET:
            query += " WHERE parent_id = ?"
            params = (parent_id,)
        query += " ORDER BY id"

        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            rows = cursor.fetchall()
        return [self._container_from_row(row) for row in rows]

    def container_path(self, container_id: int) -> List[str]:
        """Container names from the root down to `container_id`.

        Raises:
            ContainerNotFound: unknown id
            CorruptContainerGraph: parent links loop
        """
        with self._connect() as conn:
            cursor = conn.cursor()
            if not self._container_exists(cursor, container_id):
                raise ContainerNotFound(container_id)
            chain = self._ancestor_chain(cursor, container_id)
        return [name for _, name, _ in reversed(chain)]

    @staticmethod
    def _container_exists(cursor, container_id) -> bool:
        cursor.execute("SELECT 1 FROM containers WHERE id = ?", (container_id,))
        return cursor.fetchone() is not None

    @staticmethod
    def _ancestor_chain(cursor, container_id: int) -> List[Tuple[int, str, Optional[int]]]:
        """Walk parent links upward from container_id, detecting loops."""
        chain = []
        seen = set()
        current = container_id
        while current is not None:
            if current in seen:
                raise CorruptContainerGraph(current, [c[0] for c in chain])
            seen.add(current)
            cursor.execute("SELECT id, name, parent_id FROM containers WHERE id = ?", (current,))
            row = cursor.fetchone()
            if row is None:
                # Dangling parent link; foreign keys should make this unreachable
                raise CorruptContainerGraph(current, [c[0] for c in chain])
            chain.append(row)
            current = row[2]
        return chain

    @staticmethod
    def _container_from_row(row) -> Container:
        return Container(id=row[0], name=row[1], parent_id=row[2], location=row[3], created_at=_ts(row[4]))

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def create_item(self, container_id: int, name: str, description: str, image_ref: Optional[str], vector,
                    thumbnail_ref: Optional[str] = None) -> int:
        """Create an item row and its vector entry as one unit.

        The vector is validated before anything is written. If the index
        insert or the commit fails, neither the row nor the vector survives.

        Raises:
            ValidationError: empty name, bad vector (DimensionMismatch, InvalidVector)
            ContainerNotFound: unknown container
            PairedWriteError: the pair could not be committed together
        """
        name = _required_text(name, "name")
        if not isinstance(description, str):
            raise ValidationError("description must be a string")
        normalized = self.index.check_vector(vector)

        with self._write_lock, self._connect() as conn:
            cursor = conn.cursor()
            if not self._container_exists(cursor, container_id):
                raise ContainerNotFound(container_id)

            try:
                cursor.execute(
                    "INSERT INTO items (container_id, name, description, image_ref, thumbnail_ref) VALUES (?, ?, ?, ?, ?)",
                    (container_id, name, description, image_ref, thumbnail_ref)
                )
                item_id = cursor.lastrowid
                cursor.execute(
                    "INSERT INTO vectors (item_id, dim, embedding) VALUES (?, ?, ?)",
                    (item_id, normalized.shape[0], _to_blob(normalized))
                )
            except sqlite3.Error as e:
                conn.rollback()
                logger.log_consistency_error("create_item", e, {"container_id": container_id})
                raise PairedWriteError(f"Could not write item row: {e}") from e

            try:
                self.index.insert(item_id, normalized)
            except VectorIndexError as e:
                conn.rollback()
                logger.log_consistency_error("create_item", e, {"item_id": item_id})
                raise PairedWriteError(f"Vector index rejected entry for item {item_id}: {e}") from e

            try:
                conn.commit()
            except sqlite3.Error as e:
                self.index.remove(item_id)
                conn.rollback()
                logger.log_consistency_error("create_item", e, {"item_id": item_id})
                raise PairedWriteError(f"Commit failed for item {item_id}: {e}") from e

        logger.log_item_operation("created", item_id, {"container_id": container_id, "name": name})
        return item_id

    def move_item(self, item_id: int, new_container_id: int) -> None:
        """Reassign an item to another container. The vector is not touched."""
        with self._write_lock, self._connect() as conn:
            cursor = conn.cursor()
            if not self._item_exists(cursor, item_id):
                raise ItemNotFound(item_id)
            if not self._container_exists(cursor, new_container_id):
                raise ContainerNotFound(new_container_id)

            cursor.execute(
                "UPDATE items SET container_id = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (new_container_id, item_id)
            )
            conn.commit()

        logger.log_item_operation("moved", item_id, {"container_id": new_container_id})

    def update_item_description(self, item_id: int, description: str, vector, name: Optional[str] = None) -> None:
        """Replace an item's description (and optionally name) together with its vector."""
        if not isinstance(description, str):
            raise ValidationError("description must be a string")
        if name is not None:
            name = _required_text(name, "name")
        normalized = self.index.check_vector(vector)

        with self._write_lock, self._connect() as conn:
            cursor = conn.cursor()
            if not self._item_exists(cursor, item_id):
                raise ItemNotFound(item_id)

            previous = self.index.get(item_id)
            try:
                if name is not None:
                    cursor.execute(
                        "UPDATE items SET name = ?, description = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                        (name, description, item_id)
                    )
                else:
                    cursor.execute(
                        "UPDATE items SET description = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                        (description, item_id)
                    )
                cursor.execute(
                    "INSERT OR REPLACE INTO vectors (item_id, dim, embedding) VALUES (?, ?, ?)",
                    (item_id, normalized.shape[0], _to_blob(normalized))
                )
            except sqlite3.Error:
                conn.rollback()
                raise

            if previous is None:
                # Missing entry is drift; the write restores the pair
                logger.log_consistency_error("update_item", VectorNotFound(item_id), {"item_id": item_id})
                self.index.insert(item_id, normalized)
            else:
                self.index.update(item_id, normalized)

            try:
                conn.commit()
            except sqlite3.Error as e:
                if previous is None:
                    self.index.remove(item_id)
                else:
                    self.index.update(item_id, previous)
                conn.rollback()
                logger.log_consistency_error("update_item", e, {"item_id": item_id})
                raise PairedWriteError(f"Commit failed for item {item_id}: {e}") from e

        logger.log_item_operation("re-embedded", item_id, {"dimension": normalized.shape[0]})

    def delete_item(self, item_id: int) -> None:
        """Delete an item row and its vector entry together."""
        with self._write_lock, self._connect() as conn:
            cursor = conn.cursor()
            if not self._item_exists(cursor, item_id):
                raise ItemNotFound(item_id)

            try:
                cursor.execute("DELETE FROM vectors WHERE item_id = ?", (item_id,))
                cursor.execute("DELETE FROM items WHERE id = ?", (item_id,))
            except sqlite3.Error:
                conn.rollback()
                raise

            previous = self.index.get(item_id)
            if previous is None:
                # Deleting the row still leaves the pair consistent
                logger.log_consistency_error("delete_item", VectorNotFound(item_id), {"item_id": item_id})
            else:
                self.index.remove(item_id)

            try:
                conn.commit()
            except sqlite3.Error as e:
                if previous is not None:
                    self.index.insert(item_id, previous)
                conn.rollback()
                logger.log_consistency_error("delete_item", e, {"item_id": item_id})
                raise PairedWriteError(f"Commit failed deleting item {item_id}: {e}") from e

        logger.log_item_operation("deleted", item_id)

    def get_item(self, item_id: int) -> Optional[Item]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """SELECT i.id, i.container_id, i.name, i.description, i.image_ref, v.item_id,
                          i.created_at, i.updated_at, i.thumbnail_ref
                   FROM items i LEFT JOIN vectors v ON v.item_id = i.id
                   WHERE i.id = ?""",
                (item_id,)
            )
            row = cursor.fetchone()
        return self._item_from_row(row) if row else None

    def list_items(self, container_id: Optional[int] = None) -> List[Item]:
        query = """SELECT i.id, i.container_id, i.name, i.description, i.image_ref, v.item_id,
                          i.created_at, i.updated_at, i.thumbnail_ref
                   FROM items i LEFT JOIN vectors v ON v.item_id = i.id"""
        params: Tuple = ()
        if container_id is not None:
            query += " WHERE i.container_id = ?"
            params = (container_id,)
        query += " ORDER BY i.id"

        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            rows = cursor.fetchall()
        return [self._item_from_row(row) for row in rows]

    def hydrate(self, ids: Sequence[int]) -> List[ItemSummary]:
        """Look up item metadata for `ids`, keeping their order.

        Unknown ids are skipped: an item deleted between a search and this
        call simply drops out of the result.
        """
        ids = list(ids)
        if not ids:
            return []

        rows = {}
        with self._connect() as conn:
            cursor = conn.cursor()
            # Chunked to stay under SQLite's bound-variable limit
            for start in range(0, len(ids), HYDRATE_CHUNK_SIZE):
                chunk = ids[start:start + HYDRATE_CHUNK_SIZE]
                placeholders = ",".join("?" for _ in chunk)
                cursor.execute(
                    "SELECT id, container_id, name, description, image_ref, thumbnail_ref "
                    f"FROM items WHERE id IN ({placeholders})",
                    chunk
                )
                rows.update((row[0], row) for row in cursor.fetchall())

        return [
            ItemSummary(id=row[0], container_id=row[1], name=row[2], description=row[3], image_ref=row[4],
                        thumbnail_ref=row[5])
            for row in (rows.get(i) for i in ids)
            if row is not None
        ]

    @staticmethod
    def _item_exists(cursor, item_id) -> bool:
        cursor.execute("SELECT 1 FROM items WHERE id = ?", (item_id,))
        return cursor.fetchone() is not None

    @staticmethod
    def _item_from_row(row) -> Item:
        return Item(
            id=row[0],
            container_id=row[1],
            name=row[2],
            description=row[3],
            image_ref=row[4],
            embedding_id=row[5],
            created_at=_ts(row[6]),
            updated_at=_ts(row[7]),
            thumbnail_ref=row[8],
        )

    # ------------------------------------------------------------------
    # Vector persistence
    # ------------------------------------------------------------------

    def iter_vectors(self) -> Iterator[Tuple[int, int, np.ndarray]]:
        """Yield (item_id, stored dim, vector) for every persisted vector row."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT item_id, dim, embedding FROM vectors ORDER BY item_id")
            rows = cursor.fetchall()
        for item_id, dim, blob in rows:
            yield item_id, dim, _from_blob(blob)

    def item_ids(self) -> List[int]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT id FROM items ORDER BY id")
            return [row[0] for row in cursor.fetchall()]

    def load_index(self) -> int:
        """Rebuild the in-memory index from persisted vectors.

        Rows whose dimension does not match the index are left out and
        reported by drift detection.
        """
        loaded = 0
        with self._write_lock:
            self.index.clear()
            for item_id, dim, vector in self.iter_vectors():
                if dim != self.index.dimension or vector.shape[0] != self.index.dimension:
                    logger.log_vector_operation(
                        "load_skipped", item_id,
                        {"dimension": vector.shape[0], "expected": self.index.dimension},
                        status="skipped"
                    )
                    continue
                try:
                    self.index.insert(item_id, vector)
                except VectorIndexError as e:
                    logger.log_vector_operation("load_skipped", item_id, {"error": str(e)}, status="skipped")
                    continue
                loaded += 1

        logger.log_operation("index.load", "success", {"loaded": loaded, "provider": self.index.__class__.__name__})
        return loaded

    def put_vector(self, item_id: int, vector) -> None:
        """Write (or replace) the vector of an existing item, row and index together."""
        normalized = self.index.check_vector(vector)

        with self._write_lock, self._connect() as conn:
            cursor = conn.cursor()
            if not self._item_exists(cursor, item_id):
                raise ItemNotFound(item_id)

            cursor.execute(
                "INSERT OR REPLACE INTO vectors (item_id, dim, embedding) VALUES (?, ?, ?)",
                (item_id, normalized.shape[0], _to_blob(normalized))
            )
            previous = self.index.get(item_id)
            if previous is None:
                self.index.insert(item_id, normalized)
            else:
                self.index.update(item_id, normalized)

            try:
                conn.commit()
            except sqlite3.Error as e:
                if previous is None:
                    self.index.remove(item_id)
                else:
                    self.index.update(item_id, previous)
                conn.rollback()
                raise PairedWriteError(f"Commit failed writing vector {item_id}: {e}") from e

        logger.log_vector_operation("written", item_id, {"dimension": normalized.shape[0]})

    def drop_vector(self, record_id: int) -> None:
        """Remove a vector row and index entry that have no owning item."""
        with self._write_lock, self._connect() as conn:
            cursor = conn.cursor()
            if self._item_exists(cursor, record_id):
                raise ValidationError(f"Vector {record_id} belongs to a live item")

            cursor.execute("DELETE FROM vectors WHERE item_id = ?", (record_id,))
            conn.commit()
            if self.index.contains(record_id):
                self.index.remove(record_id)

        logger.log_vector_operation("dropped", record_id, {"reason": "orphaned"})

    def counts(self) -> Dict[str, int]:
        with self._connect() as conn:
            cursor = conn.cursor()
            result = {}
            for table in ("containers", "items", "vectors"):
                cursor.execute(f"SELECT COUNT(*) FROM {table}")
                result[table] = cursor.fetchone()[0]
        result["indexed"] = len(self.index)
        return result

    # ------------------------------------------------------------------
    # Import log
    # ------------------------------------------------------------------

    def log_new_import(self, source: str, status: str, container_id: int) -> int:
        with self._write_lock, self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT INTO imports (source, status, container_id) VALUES (?, ?, ?)",
                (source, status, container_id)
            )
            import_id = cursor.lastrowid
            conn.commit()
        return import_id

    def update_import(self, import_id: int, status: str, message: Optional[str] = None,
                      succeeded: Optional[int] = None, failed: Optional[int] = None) -> None:
        with self._write_lock, self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """UPDATE imports
                   SET status = ?, message = COALESCE(?, message),
                       succeeded = COALESCE(?, succeeded), failed = COALESCE(?, failed),
                       updated_at = CURRENT_TIMESTAMP
                   WHERE id = ?""",
                (status, message, succeeded, failed, import_id)
            )
            if cursor.rowcount == 0:
                raise ImportNotFound(import_id)
            conn.commit()

        logger.log_operation("import.update", status, {"import_id": import_id, "message": message})

    def cancel_import(self, import_id: int, reason: Optional[str] = None) -> None:
        self.update_import(import_id, IMPORT_CANCELLED, message=reason)

    def get_import(self, import_id: int) -> Optional[ImportRecord]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """SELECT id, source, status, message, container_id, succeeded, failed, created_at, updated_at
                   FROM imports WHERE id = ?""",
                (import_id,)
            )
            row = cursor.fetchone()
        return self._import_from_row(row) if row else None

    def list_imports(self, limit: int = 50) -> List[ImportRecord]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """SELECT id, source, status, message, container_id, succeeded, failed, created_at, updated_at
                   FROM imports ORDER BY id DESC LIMIT ?""",
                (limit,)
            )
            rows = cursor.fetchall()
        return [self._import_from_row(row) for row in rows]

    @staticmethod
    def _import_from_row(row) -> ImportRecord:
        return ImportRecord(
            id=row[0],
            source=row[1],
            status=row[2],
            message=row[3],
            container_id=row[4],
            succeeded=row[5],
            failed=row[6],
            created_at=_ts(row[7]),
            updated_at=_ts(row[8]),
        )

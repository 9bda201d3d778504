"""
Tests for the background import queue and its import log.
"""

import io
import sqlite3
import zipfile
from unittest.mock import MagicMock

import pytest

from stuff_search.core.import_queue import ImportQueue, ImportRequest
from stuff_search.core.ingestion import IngestionCoordinator
from stuff_search.core.inventory import IMPORT_CANCELLED, IMPORT_COMPLETE, IMPORT_FAILED, IMPORT_RUNNING
from stuff_search.core.schema import SUCCEEDED, BatchReport, IngestOutcome
from stuff_search.vision import MockCaptioner

from conftest import make_photo

CABLE, BATTERIES = make_photo(1), make_photo(2)


def make_zip(entries):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in entries:
            archive.writestr(name, data)
    return buffer.getvalue()


@pytest.fixture
def queue(store, gateway):
    captioner = MockCaptioner({
        CABLE: ("usb cable", "a usb cable"),
        BATTERIES: ("batteries", "aa batteries"),
    })
    q = ImportQueue(store, IngestionCoordinator(store, gateway, captioner, workers=2))
    yield q
    q.shutdown(timeout=5)


def test_zip_import_completes(store, queue):
    shelf = store.create_container("Shelf")
    payload = make_zip([("cable.png", CABLE), ("notes.txt", b"not a photo"), ("batteries.png", BATTERIES)])

    import_id = queue.submit(ImportRequest(source="photos.zip", payload=payload, container_id=shelf))
    assert queue.wait(import_id, timeout=10)

    record = store.get_import(import_id)
    assert record.status == IMPORT_COMPLETE
    assert record.succeeded == 2
    assert record.failed == 0
    assert record.message == "2 of 2 images imported"
    assert sorted(i.name for i in store.list_items(shelf)) == ["batteries", "usb cable"]


def test_single_photo_import(store, queue):
    shelf = store.create_container("Shelf")

    import_id = queue.submit(ImportRequest(source="cable.png", payload=CABLE, container_id=shelf))
    assert queue.wait(import_id, timeout=10)

    assert store.get_import(import_id).status == IMPORT_COMPLETE
    assert [i.name for i in store.list_items(shelf)] == ["usb cable"]


def test_non_image_upload_is_cancelled(store, queue):
    shelf = store.create_container("Shelf")

    import_id = queue.submit(ImportRequest(source="notes.txt", payload=b"not a photo", container_id=shelf))
    assert queue.wait(import_id, timeout=10)

    record = store.get_import(import_id)
    assert record.status == IMPORT_CANCELLED
    assert record.message == "file not an image"
    assert store.item_ids() == []


def test_empty_archive_is_cancelled(store, queue):
    shelf = store.create_container("Shelf")

    import_id = queue.submit(ImportRequest(source="empty.zip", payload=make_zip([]), container_id=shelf))
    assert queue.wait(import_id, timeout=10)

    record = store.get_import(import_id)
    assert record.status == IMPORT_CANCELLED
    assert "no images" in record.message


def test_missing_container_is_cancelled(store, queue):
    import_id = queue.submit(ImportRequest(source="cable.png", payload=CABLE, container_id=404))
    assert queue.wait(import_id, timeout=10)

    record = store.get_import(import_id)
    assert record.status == IMPORT_CANCELLED
    assert "404" in record.message
    assert store.item_ids() == []


def test_imports_processed_in_order(store, queue):
    shelf = store.create_container("Shelf")

    first = queue.submit(ImportRequest(source="a.png", payload=CABLE, container_id=shelf))
    second = queue.submit(ImportRequest(source="b.png", payload=BATTERIES, container_id=shelf))
    assert queue.wait(second, timeout=10)
    assert queue.wait(first, timeout=0)

    items = store.list_items(shelf)
    assert [i.name for i in items] == ["usb cable", "batteries"]
    assert [r.id for r in store.list_imports()] == [second, first]


def test_unexpected_error_marks_import_failed(store):
    shelf = store.create_container("Shelf")
    coordinator = MagicMock()
    coordinator.ingest_batch.side_effect = RuntimeError("worker exploded")
    q = ImportQueue(store, coordinator)
    try:
        import_id = q.submit(ImportRequest(source="a.png", payload=CABLE, container_id=shelf))
        assert q.wait(import_id, timeout=10)
    finally:
        q.shutdown(timeout=5)

    record = store.get_import(import_id)
    assert record.status == IMPORT_FAILED
    assert record.message == "worker exploded"


def test_worker_survives_failed_status_write(store, monkeypatch):
    shelf = store.create_container("Shelf")
    coordinator = MagicMock()
    coordinator.ingest_batch.side_effect = [
        RuntimeError("worker exploded"),
        BatchReport(container_id=shelf, outcomes=[IngestOutcome(index=0, source="b.png", status=SUCCEEDED, item_id=1)]),
    ]
    update_import = store.update_import

    def locked_when_failing(import_id, status, *args, **kwargs):
        if status == IMPORT_FAILED:
            raise sqlite3.OperationalError("database is locked")
        return update_import(import_id, status, *args, **kwargs)

    monkeypatch.setattr(store, "update_import", locked_when_failing)
    q = ImportQueue(store, coordinator)
    try:
        first = q.submit(ImportRequest(source="a.png", payload=CABLE, container_id=shelf))
        second = q.submit(ImportRequest(source="b.png", payload=BATTERIES, container_id=shelf))
        assert q.wait(second, timeout=10)
        assert q._worker.is_alive()
    finally:
        q.shutdown(timeout=5)

    assert store.get_import(first).status == IMPORT_RUNNING
    record = store.get_import(second)
    assert record.status == IMPORT_COMPLETE
    assert record.succeeded == 1

"""
Tests for photo ingestion: per-image isolation, atomic commit, cancellation
and upload expansion.
"""

import io
import sqlite3
import threading
import zipfile
from unittest.mock import MagicMock

import pytest
from PIL import Image

from stuff_search.core.errors import CaptioningError, ContainerNotFound, EmbeddingError, InvalidImage
from stuff_search.core.ingestion import CANCELLED_REASON, IngestionCoordinator, expand_upload, item_text
from stuff_search.core.schema import FAILED, SUCCEEDED
from stuff_search.vision import MemoryAssetStore, MockCaptioner

from conftest import assert_paired, make_photo

ONE, TWO, THREE = make_photo(1), make_photo(2), make_photo(3)


def make_zip(entries):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in entries:
            archive.writestr(name, data)
    return buffer.getvalue()


def image_size(data):
    with Image.open(io.BytesIO(data)) as image:
        return image.size


@pytest.fixture
def shelf(store):
    return store.create_container("Shelf 1")


@pytest.fixture
def captioner():
    return MockCaptioner({
        ONE: ("usb cable", "a usb cable"),
        TWO: ("paperclip box", "a box of paperclips"),
        THREE: ("batteries", "aa batteries"),
    })


def test_item_text():
    assert item_text("drill tap set", "metal taps") == "drill tap set\nmetal taps"


def test_batch_with_captioning_failure_in_the_middle(store, gateway, shelf):
    captions = {ONE: ("usb cable", "a usb cable"), THREE: ("batteries", "aa batteries")}

    def describe(data):
        if data not in captions:
            raise CaptioningError("quota exceeded")
        return captions[data]

    captioner = MagicMock()
    captioner.describe.side_effect = describe
    coordinator = IngestionCoordinator(store, gateway, captioner, workers=3)

    report = coordinator.ingest_batch(shelf, [("1.jpg", ONE), ("2.jpg", TWO), ("3.jpg", THREE)])

    assert [o.status for o in report.outcomes] == [SUCCEEDED, FAILED, SUCCEEDED]
    assert [o.index for o in report.outcomes] == [0, 1, 2]
    assert "quota exceeded" in report.outcomes[1].reason
    assert report.succeeded == 2
    assert report.failed == 1
    assert len(store.list_items(shelf)) == 2
    assert sorted(report.item_ids) == store.item_ids()
    assert_paired(store)


def test_embedding_failure_isolated(store, shelf, captioner):
    gateway = MagicMock()
    gateway.embed.side_effect = [
        EmbeddingError(EmbeddingError.MODEL_UNAVAILABLE, "model not loaded"),
        [1.0, 0, 0, 0, 0, 0, 0, 0],
    ]
    coordinator = IngestionCoordinator(store, gateway, captioner, workers=1)

    report = coordinator.ingest_batch(shelf, [("a.jpg", ONE), ("b.jpg", TWO)])

    assert [o.status for o in report.outcomes] == [FAILED, SUCCEEDED]
    assert "EmbeddingError" in report.outcomes[0].reason
    assert len(store.item_ids()) == 1
    assert_paired(store)


def test_bad_vector_from_model_fails_only_that_image(store, shelf, captioner):
    gateway = MagicMock()
    gateway.embed.side_effect = [[1.0, 2.0], [1.0, 0, 0, 0, 0, 0, 0, 0]]
    coordinator = IngestionCoordinator(store, gateway, captioner, workers=1)

    report = coordinator.ingest_batch(shelf, [("a.jpg", ONE), ("b.jpg", TWO)])

    assert [o.status for o in report.outcomes] == [FAILED, SUCCEEDED]
    assert "DimensionMismatch" in report.outcomes[0].reason
    assert_paired(store)


def test_asset_write_failure_fails_only_that_image(store, gateway, shelf, captioner):
    class FullDisk(MemoryAssetStore):
        def __init__(self):
            super().__init__()
            self.calls = 0

        def store(self, data):
            self.calls += 1
            # Large copy of the second photo
            if self.calls == 3:
                raise OSError(28, "No space left on device")
            return super().store(data)

    coordinator = IngestionCoordinator(store, gateway, captioner, assets=FullDisk(), workers=1)

    report = coordinator.ingest_batch(shelf, [("1.jpg", ONE), ("2.jpg", TWO), ("3.jpg", THREE)])

    assert [o.status for o in report.outcomes] == [SUCCEEDED, FAILED, SUCCEEDED]
    assert "No space left on device" in report.outcomes[1].reason
    assert sorted(i.name for i in store.list_items(shelf)) == ["batteries", "usb cable"]
    assert_paired(store)


def test_database_error_fails_only_that_image(store, gateway, shelf, captioner, monkeypatch):
    create_item = store.create_item
    calls = []

    def locked_on_second_call(*args, **kwargs):
        calls.append(args)
        if len(calls) == 2:
            raise sqlite3.OperationalError("database is locked")
        return create_item(*args, **kwargs)

    monkeypatch.setattr(store, "create_item", locked_on_second_call)
    coordinator = IngestionCoordinator(store, gateway, captioner, workers=1)

    report = coordinator.ingest_batch(shelf, [("1.jpg", ONE), ("2.jpg", TWO), ("3.jpg", THREE)])

    assert [o.status for o in report.outcomes] == [SUCCEEDED, FAILED, SUCCEEDED]
    assert "database is locked" in report.outcomes[1].reason
    assert len(store.item_ids()) == 2
    assert_paired(store)


def test_non_image_fails_before_captioning(store, gateway, shelf):
    captioner = MagicMock()
    captioner.describe.return_value = ("usb cable", "a usb cable")
    coordinator = IngestionCoordinator(store, gateway, captioner, workers=1)

    report = coordinator.ingest_batch(shelf, [("notes.txt", b"remember the milk"), ("1.jpg", ONE)])

    assert [o.status for o in report.outcomes] == [FAILED, SUCCEEDED]
    assert "InvalidImage" in report.outcomes[0].reason
    assert "not an image" in report.outcomes[0].reason
    captioner.describe.assert_called_once_with(ONE)


def test_unknown_container_processes_nothing(store, gateway):
    captioner = MagicMock()
    coordinator = IngestionCoordinator(store, gateway, captioner)

    with pytest.raises(ContainerNotFound):
        coordinator.ingest_batch(42, [("a.jpg", ONE)])
    captioner.describe.assert_not_called()


def test_empty_batch(store, gateway, shelf):
    report = IngestionCoordinator(store, gateway, MockCaptioner()).ingest_batch(shelf, [])
    assert report.outcomes == []


def test_downscaled_copies_stored_with_item(store, gateway, assets, shelf):
    photo = make_photo(0, size=(2000, 1000), fmt="JPEG")
    coordinator = IngestionCoordinator(store, gateway, MockCaptioner(), assets=assets)

    report = coordinator.ingest_batch(shelf, [("big.jpg", photo)])

    item = store.get_item(report.item_ids[0])
    assert image_size(assets.retrieve(item.image_ref)) == (1024, 512)
    assert image_size(assets.retrieve(item.thumbnail_ref)) == (512, 256)


def test_small_photo_is_not_upscaled(store, gateway, assets, shelf):
    coordinator = IngestionCoordinator(store, gateway, MockCaptioner(), assets=assets)

    report = coordinator.ingest_batch(shelf, [("small.png", make_photo(0))])

    item = store.get_item(report.item_ids[0])
    assert image_size(assets.retrieve(item.image_ref)) == (24, 16)
    assert image_size(assets.retrieve(item.thumbnail_ref)) == (24, 16)


def test_cancelled_before_start(store, gateway, shelf):
    captioner = MagicMock()
    cancel = threading.Event()
    cancel.set()

    report = IngestionCoordinator(store, gateway, captioner).ingest_batch(
        shelf, [("a.jpg", ONE), ("b.jpg", TWO)], cancel_event=cancel
    )

    assert all(o.reason == CANCELLED_REASON for o in report.outcomes)
    captioner.describe.assert_not_called()
    assert store.item_ids() == []


def test_cancel_mid_batch_keeps_committed_items(store, gateway, shelf):
    cancel = threading.Event()
    calls = []

    def describe(data):
        calls.append(data)
        if data == TWO:
            # Client goes away while this caption is in flight
            cancel.set()
        return "usb cable", "a usb cable"

    captioner = MagicMock()
    captioner.describe.side_effect = describe
    coordinator = IngestionCoordinator(store, gateway, captioner, workers=1)

    report = coordinator.ingest_batch(shelf, [("a.jpg", ONE), ("b.jpg", TWO), ("c.jpg", THREE)],
                                      cancel_event=cancel)

    assert [o.status for o in report.outcomes] == [SUCCEEDED, FAILED, FAILED]
    assert report.outcomes[1].reason == CANCELLED_REASON
    assert report.outcomes[2].reason == CANCELLED_REASON
    assert calls == [ONE, TWO]
    assert store.item_ids() == [report.outcomes[0].item_id]
    assert_paired(store)


def test_expand_upload_single_image():
    assert expand_upload("photo.png", ONE) == [("photo.png", ONE)]


def test_expand_upload_single_non_image():
    with pytest.raises(InvalidImage, match="not an image"):
        expand_upload("notes.txt", b"remember the milk")


def test_expand_upload_zip_keeps_only_images():
    payload = make_zip([
        ("IMG_1.png", ONE),
        ("nested/IMG_2.png", TWO),
        ("nested/", b""),
        ("readme.txt", b"photos from the garage"),
        ("receipt.pdf", b"%PDF-1.4 not really"),
        (".DS_Store", b"junk"),
        ("__MACOSX/._IMG_1.png", b"fork"),
    ])

    images = expand_upload("photos.zip", payload)

    assert images == [
        ("photos.zip:IMG_1.png", ONE),
        ("photos.zip:nested/IMG_2.png", TWO),
    ]


def test_expand_upload_empty_zip():
    assert expand_upload("empty.zip", make_zip([])) == []
    assert expand_upload("docs.zip", make_zip([("a.txt", b"text")])) == []

"""
Photo ingestion: decode -> caption -> embed -> atomic commit, per image.

A batch never fails as a whole because of one bad photo. Each image ends as
either Succeeded(item_id) or Failed(reason); nothing is retried.
"""

import io
import sqlite3
import threading
import zipfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import PurePosixPath
from typing import List, Optional, Sequence, Tuple

from ..util.logging import logger
from .config import INGEST_WORKERS
from ..vision.images import is_image, prepare_photo
from .errors import ContainerNotFound, InvalidImage, StuffSearchError
from .schema import FAILED, SUCCEEDED, BatchReport, IngestOutcome

CANCELLED_REASON = "cancelled"

ImageInput = Tuple[str, bytes]


def item_text(name: str, description: str) -> str:
    """Text that is embedded for an item."""
    return f"{name}\n{description}"


def expand_upload(filename: str, payload: bytes) -> List[ImageInput]:
    """
    Turn an uploaded file into (source, bytes) pairs.

    A zip archive yields one entry per member that decodes as an image, in
    archive order; directories, hidden or macOS resource-fork entries and
    other files are skipped. Any other payload must itself be an image.

    Raises:
        InvalidImage: a non-archive payload that is not an image
    """
    if not zipfile.is_zipfile(io.BytesIO(payload)):
        if not is_image(payload):
            raise InvalidImage(filename)
        return [(filename, payload)]

    images = []
    skipped = 0
    with zipfile.ZipFile(io.BytesIO(payload)) as archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            path = PurePosixPath(info.filename)
            if any(part.startswith(".") or part == "__MACOSX" for part in path.parts):
                continue
            data = archive.read(info)
            if not is_image(data):
                skipped += 1
                continue
            images.append((f"{filename}:{info.filename}", data))

    logger.log_operation(
        "ingest.expand", "success", {"source": filename, "images": len(images), "skipped": skipped}
    )
    return images


class IngestionCoordinator:
    """Turns photos assigned to a container into items."""

    def __init__(self, store, gateway, captioner, assets=None, workers: int = None):
        self.store = store
        self.gateway = gateway
        self.captioner = captioner
        self.assets = assets
        self.workers = workers or INGEST_WORKERS

    def ingest_batch(self, container_id: int, images: Sequence[ImageInput],
                     cancel_event: Optional[threading.Event] = None) -> BatchReport:
        """
        Ingest a batch of images into `container_id`.

        Images are processed concurrently; each image's caption, embed and
        commit steps run in order. If `cancel_event` is set, images that have
        not committed yet are reported as failed with reason "cancelled";
        items already committed stay.

        Raises:
            ContainerNotFound: the target container does not exist (nothing is processed)
        """
        if self.store.get_container(container_id) is None:
            raise ContainerNotFound(container_id)

        images = list(images)
        report = BatchReport(container_id=container_id)
        if not images:
            return report

        cancel_event = cancel_event or threading.Event()
        workers = max(1, min(self.workers, len(images)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ingest") as pool:
            futures = [
                pool.submit(self._ingest_one, container_id, position, source, data, cancel_event)
                for position, (source, data) in enumerate(images)
            ]
            report.outcomes = [future.result() for future in futures]

        logger.log_operation(
            "ingest.batch", "complete",
            {"container_id": container_id, "succeeded": report.succeeded, "failed": report.failed}
        )
        return report

    def _ingest_one(self, container_id: int, position: int, source: str, data: bytes,
                    cancel_event: threading.Event) -> IngestOutcome:
        def failed(reason: str) -> IngestOutcome:
            logger.log_ingest_outcome(source, FAILED, reason=reason)
            return IngestOutcome(index=position, source=source, status=FAILED, reason=reason)

        if cancel_event.is_set():
            return failed(CANCELLED_REASON)

        try:
            photo = prepare_photo(data, source)
            name, description = self.captioner.describe(data)
            if cancel_event.is_set():
                return failed(CANCELLED_REASON)

            vector = self.gateway.embed(item_text(name, description))
            if cancel_event.is_set():
                return failed(CANCELLED_REASON)

            image_ref = thumbnail_ref = None
            if self.assets is not None:
                image_ref = self.assets.store(photo.large)
                thumbnail_ref = self.assets.store(photo.small)
            item_id = self.store.create_item(
                container_id, name, description, image_ref, vector, thumbnail_ref=thumbnail_ref
            )
        except (StuffSearchError, OSError, sqlite3.Error) as e:
            return failed(f"{type(e).__name__}: {e}")

        logger.log_ingest_outcome(source, SUCCEEDED, item_id=item_id)
        return IngestOutcome(index=position, source=source, status=SUCCEEDED, item_id=item_id)

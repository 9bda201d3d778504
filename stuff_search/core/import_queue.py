"""
Background import queue.

Uploads are logged in the `imports` table as soon as they are accepted and
then processed one at a time by a worker thread. Each upload's progress is
visible through the import log.
"""

import queue
import threading
from dataclasses import dataclass
from typing import Dict, Optional

from ..util.logging import logger
from .errors import ContainerNotFound, InvalidImage, StuffSearchError
from .ingestion import expand_upload
from .inventory import (
    IMPORT_CANCELLED,
    IMPORT_COMPLETE,
    IMPORT_FAILED,
    IMPORT_QUEUED,
    IMPORT_RUNNING,
)

_STOP = object()


@dataclass
class ImportRequest:
    source: str
    payload: bytes
    container_id: int


class ImportQueue:
    """Single worker thread feeding uploads through an IngestionCoordinator."""

    def __init__(self, store, coordinator):
        self.store = store
        self.coordinator = coordinator
        self._queue: "queue.Queue" = queue.Queue()
        self._done: Dict[int, threading.Event] = {}
        self._done_lock = threading.Lock()
        self._worker = threading.Thread(target=self._run, name="import-queue", daemon=True)
        self._worker.start()

    def submit(self, request: ImportRequest) -> int:
        """Log the upload as queued and hand it to the worker. Returns the import id."""
        import_id = self.store.log_new_import(request.source, IMPORT_QUEUED, request.container_id)
        with self._done_lock:
            self._done[import_id] = threading.Event()
        self._queue.put((import_id, request))
        logger.log_operation("import.queued", "success", {"import_id": import_id, "source": request.source})
        return import_id

    def wait(self, import_id: int, timeout: Optional[float] = None) -> bool:
        """Block until an import submitted here has finished. Returns False on timeout."""
        with self._done_lock:
            event = self._done.get(import_id)
        if event is None:
            return True
        return event.wait(timeout)

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Finish queued imports, then stop the worker."""
        self._queue.put(_STOP)
        self._worker.join(timeout)

    def _run(self) -> None:
        while True:
            entry = self._queue.get()
            if entry is _STOP:
                break
            import_id, request = entry
            try:
                self._process(import_id, request)
            except Exception as e:
                logger.log_operation(
                    "import.process", "error",
                    {"import_id": import_id, "error": str(e), "error_type": type(e).__name__}
                )
                self._mark_failed(import_id, str(e))
            finally:
                with self._done_lock:
                    event = self._done.pop(import_id, None)
                if event is not None:
                    event.set()

    def _mark_failed(self, import_id: int, message: str) -> None:
        # The worker must outlive a status write that fails, e.g. on a locked database
        try:
            self.store.update_import(import_id, IMPORT_FAILED, message=message)
        except Exception as e:
            logger.log_operation(
                "import.status", "error",
                {"import_id": import_id, "error": str(e), "error_type": type(e).__name__}
            )

    def _process(self, import_id: int, request: ImportRequest) -> None:
        self.store.update_import(import_id, IMPORT_RUNNING, message="Starting")

        try:
            images = expand_upload(request.source, request.payload)
        except InvalidImage:
            self.store.cancel_import(import_id, "file not an image")
            return
        if not images:
            self.store.cancel_import(import_id, "upload contains no images")
            return

        try:
            report = self.coordinator.ingest_batch(request.container_id, images)
        except ContainerNotFound as e:
            self.store.cancel_import(import_id, str(e))
            return
        except StuffSearchError as e:
            self.store.update_import(import_id, IMPORT_FAILED, message=str(e))
            return

        self.store.update_import(
            import_id, IMPORT_COMPLETE,
            message=f"{report.succeeded} of {len(report.outcomes)} images imported",
            succeeded=report.succeeded,
            failed=report.failed,
        )

"""
HTTP API for the household inventory: containers, photo ingestion,
reorganization, item edits and semantic search.
"""

import asyncio
import base64
import binascii
import logging
import threading
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .schemas import (
    ContainerCreateRequest,
    ContainerListResponse,
    ContainerResponse,
    EditDescriptionRequest,
    HealthResponse,
    ImportCreateRequest,
    ImportListResponse,
    ImportResponse,
    IngestOutcomeResponse,
    IngestRequest,
    IngestResponse,
    ItemListResponse,
    ItemResponse,
    MoveContainerRequest,
    MoveItemRequest,
    SearchHit,
    SearchResponse,
)
from ..core.config import SEARCH_DEFAULT_K, VERSION, debug_enabled
from ..core.db import health_check
from ..core.errors import (
    ConsistencyError,
    ContainerNotFound,
    ExternalServiceError,
    ImportNotFound,
    ItemNotFound,
    NotEmpty,
    NotFoundError,
    StuffSearchError,
    ValidationError,
)
from ..core.service import InventoryService
from ..util.logging import logger

_service: Optional[InventoryService] = None
_service_lock = threading.Lock()


def get_service() -> InventoryService:
    """Process-wide service, built from configuration on first use."""
    global _service
    with _service_lock:
        if _service is None:
            _service = InventoryService.from_config()
        return _service


def shutdown_service() -> None:
    global _service
    with _service_lock:
        service, _service = _service, None
    if service is not None:
        service.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    shutdown_service()


app = FastAPI(
    title="Stuff Search API",
    version=VERSION,
    description="Find things around the house by describing them",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _status_for(exc: StuffSearchError) -> int:
    if isinstance(exc, NotEmpty):
        return 409
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ExternalServiceError):
        return 502
    return 500


@app.exception_handler(StuffSearchError)
async def stuff_search_exception_handler(request, exc: StuffSearchError):
    """Map core errors onto HTTP status codes."""
    status_code = _status_for(exc)
    if isinstance(exc, ConsistencyError):
        logger.log_consistency_error(f"http {request.method} {request.url.path}", exc)
    content = {"detail": str(exc), "error_type": type(exc).__name__}
    kind = getattr(exc, "kind", None)
    if kind:
        content["kind"] = kind
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle all unhandled exceptions."""
    logging.error(f"Unhandled exception: {exc}")
    content = {"detail": "Internal server error"}
    if debug_enabled():
        content["debug"] = str(exc)
    return JSONResponse(status_code=500, content=content)


def _decode(data: str, source: str) -> bytes:
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Image {source!r} is not valid base64") from e


def _container_response(service: InventoryService, container) -> ContainerResponse:
    return ContainerResponse(
        id=container.id,
        name=container.name,
        parent_id=container.parent_id,
        location=container.location,
        path=service.container_path(container.id),
        created_at=container.created_at,
    )


def _item_response(item) -> ItemResponse:
    return ItemResponse(
        id=item.id,
        container_id=item.container_id,
        name=item.name,
        description=item.description,
        image_ref=item.image_ref,
        thumbnail_ref=item.thumbnail_ref,
        indexed=item.embedding_id is not None,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


def _import_response(record) -> ImportResponse:
    return ImportResponse(**vars(record))


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint(service: InventoryService = Depends(get_service)):
    """Check system health: database, counts and drift between items and vectors."""
    db_health = health_check(service.store.db_path)
    status = service.health()
    healthy = db_health and not status["drift"]

    return HealthResponse(
        status="healthy" if healthy else "degraded",
        version=VERSION,
        db_health=db_health,
        counts=status["counts"],
        drift=status["drift"],
    )


# Containers

@app.post("/containers", response_model=ContainerResponse, status_code=201)
def create_container(req: ContainerCreateRequest, service: InventoryService = Depends(get_service)):
    container_id = service.create_container(req.name, parent_id=req.parent_id, location=req.location)
    return _container_response(service, service.get_container(container_id))


@app.get("/containers", response_model=ContainerListResponse)
def list_containers(service: InventoryService = Depends(get_service)):
    return ContainerListResponse(
        containers=[_container_response(service, c) for c in service.list_containers()]
    )


@app.get("/containers/{container_id}", response_model=ContainerResponse)
def get_container(container_id: int, service: InventoryService = Depends(get_service)):
    container = service.get_container(container_id)
    if container is None:
        raise ContainerNotFound(container_id)
    return _container_response(service, container)


@app.post("/containers/{container_id}/move", response_model=ContainerResponse)
def move_container(container_id: int, req: MoveContainerRequest, service: InventoryService = Depends(get_service)):
    service.move_container(container_id, req.parent_id)
    return _container_response(service, service.get_container(container_id))


@app.delete("/containers/{container_id}", status_code=204)
def delete_container(container_id: int, service: InventoryService = Depends(get_service)):
    service.delete_container(container_id)


@app.post("/containers/{container_id}/ingest", response_model=IngestResponse)
async def ingest_images(container_id: int, req: IngestRequest, request: Request,
                        service: InventoryService = Depends(get_service)):
    """Caption, embed and store a batch of photos. Returns one outcome per photo.

    If the client disconnects mid-batch, photos not yet committed are
    abandoned; items already created stay.
    """
    images = [(upload.source, _decode(upload.data, upload.source)) for upload in req.images]
    cancel_event = threading.Event()

    task = asyncio.ensure_future(run_in_threadpool(service.ingest_batch, container_id, images, cancel_event))
    while not task.done():
        await asyncio.wait({task}, timeout=0.5)
        if not task.done() and await request.is_disconnected():
            logger.info(f"Client disconnected, cancelling ingest into container {container_id}")
            cancel_event.set()
    report = task.result()

    return IngestResponse(
        container_id=report.container_id,
        succeeded=report.succeeded,
        failed=report.failed,
        outcomes=[IngestOutcomeResponse(**vars(outcome)) for outcome in report.outcomes],
    )


# Imports

@app.post("/imports", response_model=ImportResponse, status_code=202)
def create_import(req: ImportCreateRequest, service: InventoryService = Depends(get_service)):
    """Queue an upload for background import."""
    if service.get_container(req.container_id) is None:
        raise ContainerNotFound(req.container_id)
    import_id = service.submit_import(req.source, _decode(req.data, req.source), req.container_id)
    return _import_response(service.get_import(import_id))


@app.get("/imports", response_model=ImportListResponse)
def list_imports(limit: int = 50, service: InventoryService = Depends(get_service)):
    return ImportListResponse(imports=[_import_response(r) for r in service.list_imports(limit)])


@app.get("/imports/{import_id}", response_model=ImportResponse)
def get_import(import_id: int, service: InventoryService = Depends(get_service)):
    record = service.get_import(import_id)
    if record is None:
        raise ImportNotFound(import_id)
    return _import_response(record)


# Items

@app.get("/items", response_model=ItemListResponse)
def list_items(container_id: Optional[int] = None, service: InventoryService = Depends(get_service)):
    return ItemListResponse(items=[_item_response(i) for i in service.list_items(container_id)])


@app.get("/items/{item_id}", response_model=ItemResponse)
def get_item(item_id: int, service: InventoryService = Depends(get_service)):
    item = service.get_item(item_id)
    if item is None:
        raise ItemNotFound(item_id)
    return _item_response(item)


@app.post("/items/{item_id}/move", response_model=ItemResponse)
def move_item(item_id: int, req: MoveItemRequest, service: InventoryService = Depends(get_service)):
    service.move_item(item_id, req.container_id)
    return _item_response(service.get_item(item_id))


@app.put("/items/{item_id}/description", response_model=ItemResponse)
def edit_item_description(item_id: int, req: EditDescriptionRequest, service: InventoryService = Depends(get_service)):
    return _item_response(service.edit_item_description(item_id, req.description, name=req.name))


@app.delete("/items/{item_id}", status_code=204)
def delete_item(item_id: int, service: InventoryService = Depends(get_service)):
    service.delete_item(item_id)


# Search

@app.get("/search", response_model=SearchResponse)
def search(q: str, k: int = SEARCH_DEFAULT_K, service: InventoryService = Depends(get_service)):
    """Rank items by similarity to a free-text description."""
    results = service.search(q, k)
    hits: List[SearchHit] = [
        SearchHit(
            item_id=r.item.id,
            name=r.item.name,
            description=r.item.description,
            image_ref=r.item.image_ref,
            thumbnail_ref=r.item.thumbnail_ref,
            container_id=r.item.container_id,
            container_path=r.container_path,
            score=r.score,
        )
        for r in results
    ]
    return SearchResponse(query=q, k=k, results=hits)

"""
Request and response models for the HTTP API.
"""

from pydantic import BaseModel, field_validator
from typing import Optional, List, Dict
from datetime import datetime


class ContainerCreateRequest(BaseModel):
    name: str
    parent_id: Optional[int] = None
    location: Optional[str] = None

    @field_validator('name')
    @classmethod
    def name_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('name cannot be empty')
        return v.strip()


class ContainerResponse(BaseModel):
    id: int
    name: str
    parent_id: Optional[int] = None
    location: Optional[str] = None
    path: List[str]
    created_at: datetime


class ContainerListResponse(BaseModel):
    containers: List[ContainerResponse]


class MoveContainerRequest(BaseModel):
    parent_id: Optional[int] = None


class MoveItemRequest(BaseModel):
    container_id: int


class EditDescriptionRequest(BaseModel):
    description: str
    name: Optional[str] = None

    @field_validator('name')
    @classmethod
    def name_must_not_be_blank(cls, v):
        if v is not None and not v.strip():
            raise ValueError('name cannot be empty')
        return v


class ItemResponse(BaseModel):
    id: int
    container_id: int
    name: str
    description: str
    image_ref: Optional[str] = None
    thumbnail_ref: Optional[str] = None
    indexed: bool
    created_at: datetime
    updated_at: datetime


class ItemListResponse(BaseModel):
    items: List[ItemResponse]


class ImageUpload(BaseModel):
    """A photo sent inline as base64."""
    source: str
    data: str

    @field_validator('data')
    @classmethod
    def data_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('data cannot be empty')
        return v


class IngestRequest(BaseModel):
    images: List[ImageUpload]

    @field_validator('images')
    @classmethod
    def images_must_not_be_empty(cls, v):
        if not v:
            raise ValueError('at least one image is required')
        return v


class IngestOutcomeResponse(BaseModel):
    index: int
    source: str
    status: str  # succeeded or failed
    item_id: Optional[int] = None
    reason: Optional[str] = None


class IngestResponse(BaseModel):
    container_id: int
    succeeded: int
    failed: int
    outcomes: List[IngestOutcomeResponse]


class ImportCreateRequest(BaseModel):
    """Queue an upload (single photo or zip archive of photos) for background import."""
    source: str
    data: str
    container_id: int

    @field_validator('source')
    @classmethod
    def source_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('source cannot be empty')
        return v


class ImportResponse(BaseModel):
    id: int
    source: str
    status: str
    message: Optional[str] = None
    container_id: int
    succeeded: int
    failed: int
    created_at: datetime
    updated_at: datetime


class ImportListResponse(BaseModel):
    imports: List[ImportResponse]


class SearchHit(BaseModel):
    item_id: int
    name: str
    description: str
    image_ref: Optional[str] = None
    thumbnail_ref: Optional[str] = None
    container_id: int
    container_path: List[str]
    score: float


class SearchResponse(BaseModel):
    query: str
    k: int
    results: List[SearchHit]


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    counts: Dict[str, int]
    drift: Dict[str, int]

"""
Pydantic models for the document analysis pipeline.

Defines strict types for retrieved files, normalized images, analysis
results and the API responses built around them.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class DocumentType(str, Enum):
    """Kinds of archival documents the analyzer can classify."""

    LETTER = "letter"
    REPORT = "report"
    PHOTO = "photo"
    NEWSPAPER = "newspaper"
    LIST = "list"
    DIARY_ENTRY = "diary_entry"
    BOOK = "book"
    MAP = "map"
    BIOGRAPHY = "biography"


class EntityType(str, Enum):
    """Kinds of entities extracted from a document."""

    PERSON = "person"
    LOCATION = "location"
    ORGANIZATION = "organization"
    EVENT = "event"
    DATE = "date"
    UNIT = "unit"


# =============================================================================
# Pipeline Models
# =============================================================================


class RetrievedFile(BaseModel):
    """
    A source file fetched from the file store.

    Attributes:
        id: Opaque file handle.
        name: Original filename.
        media_type: Declared MIME type, drives conversion.
        size_bytes: Payload size.
        data: Raw file bytes.
    """

    id: str
    name: str
    media_type: str
    size_bytes: int = Field(..., ge=0)
    data: bytes = Field(..., repr=False)


class ImagePayload(BaseModel):
    """A single normalized raster image, base64 encoded."""

    mime_type: str = Field(..., description="MIME type of the encoded image")
    data: str = Field(..., description="Base64 image data", repr=False)

    @property
    def data_url(self) -> str:
        """The image as a data URL, ready for a vision API."""
        return f"data:{self.mime_type};base64,{self.data}"


class Entity(BaseModel):
    """
    An entity mentioned in a document.

    Attributes:
        name: Entity name as written in the document.
        type: Entity category.
        date: ISO-8601 form of the name, only for parseable date entities.
    """

    name: str = Field(..., min_length=1)
    type: EntityType
    date: str | None = None


class AnalysisResult(BaseModel):
    """Validated output of the vision analysis."""

    document_type: DocumentType
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    entities: list[Entity] = Field(default_factory=list)


class PipelineOptions(BaseModel):
    """Per-call switches for the analysis pipeline."""

    force_refresh: bool = Field(
        default=False,
        description="Skip the cache read and recompute the analysis",
    )
    auto_save: bool = Field(
        default=False,
        description="Persist the analysis as a document on success",
    )


class DocumentCreate(BaseModel):
    """Fields handed to the document store when saving an analysis."""

    title: str = Field(..., min_length=1)
    file_name: str
    content: str
    image_url: str | None = None
    document_type: DocumentType
    entities: list[Entity] = Field(default_factory=list)


class SavedDocument(DocumentCreate):
    """A document record as persisted by the document store."""

    id: str
    created_at: datetime
    updated_at: datetime


class AnalysisEnvelope(BaseModel):
    """
    Complete result of one pipeline run.

    This is the value cached under the file's analysis key.
    """

    analysis: AnalysisResult
    image: ImagePayload
    file_id: str
    file_name: str
    processed_at: datetime
    saved_document: SavedDocument | None = None


# =============================================================================
# File Store Models
# =============================================================================


class StoredFileInfo(BaseModel):
    """Metadata of a file held in the file store."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    media_type: str
    size_bytes: int = Field(..., ge=0)
    created_at: datetime


class StoredFileListResponse(BaseModel):
    """Paginated listing of stored files."""

    files: list[StoredFileInfo] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)


# =============================================================================
# Document Store Models
# =============================================================================


class DocumentUpdate(BaseModel):
    """Partial update of a saved document. Unset fields are left as they are."""

    title: str | None = Field(default=None, min_length=1)
    content: str | None = None
    image_url: str | None = None
    document_type: DocumentType | None = None
    entities: list[Entity] | None = Field(
        default=None,
        description="Replaces the linked entities when given",
    )


class DocumentListResponse(BaseModel):
    """Paginated listing of saved documents."""

    documents: list[SavedDocument] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    total_pages: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)


class DocumentStatsResponse(BaseModel):
    """Aggregate counts over saved documents."""

    total_documents: int = Field(..., ge=0)
    documents_by_type: dict[str, int] = Field(default_factory=dict)
    recent_documents: list[SavedDocument] = Field(default_factory=list)


# =============================================================================
# Entity Models
# =============================================================================


class EntityCreate(BaseModel):
    """Fields for creating an entity directly."""

    name: str = Field(..., min_length=1, max_length=255)
    type: EntityType
    date: str | None = None


class EntityUpdate(BaseModel):
    """Partial update of an entity. Unset fields are left as they are."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    type: EntityType | None = None
    date: str | None = None


class DocumentSummary(BaseModel):
    """Short reference to a document that mentions an entity."""

    id: str
    title: str
    document_type: DocumentType
    created_at: datetime


class EntityRecord(BaseModel):
    """
    A stored entity shared by the documents that mention it.

    Attributes:
        id: Entity ID.
        name: Entity name.
        type: Entity category.
        date: ISO-8601 form for date entities.
        document_count: Number of documents linked to the entity.
        documents: Linked documents, only filled when requested.
    """

    id: str
    name: str
    type: EntityType
    date: str | None = None
    document_count: int = Field(default=0, ge=0)
    documents: list[DocumentSummary] | None = None
    created_at: datetime
    updated_at: datetime


class EntityListResponse(BaseModel):
    """Paginated listing of entities."""

    entities: list[EntityRecord] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    total_pages: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)


class EntityStatsResponse(BaseModel):
    """Aggregate counts over entities."""

    total_entities: int = Field(..., ge=0)
    entities_by_type: dict[str, int] = Field(default_factory=dict)
    top_entities: list[EntityRecord] = Field(default_factory=list)


# =============================================================================
# Cache Models
# =============================================================================


class CacheStats(BaseModel):
    """Running cache statistics."""

    total_items: int = 0
    total_size: int = Field(default=0, description="Approximate size in bytes")
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    hit_rate: float = 0.0
    miss_rate: float = 0.0


class CacheItemInfo(BaseModel):
    """Inspection view of a single cache entry."""

    key: str
    size: int
    ttl: int = Field(..., description="Remaining lifetime in seconds")
    age: int = Field(..., description="Seconds since the entry was written")
    access_count: int
    last_accessed: datetime


class CacheClearResponse(BaseModel):
    """Result of a cache invalidation request."""

    message: str
    removed: int = Field(..., ge=0)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(default="healthy")
    message: str = Field(default="")
    version: str = Field(default="1.0.0")

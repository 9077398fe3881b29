"""
Document service for saved analyses.

Handles:
- Persisting an analysis result, linking it to shared entities
- Partial updates of saved documents
- Cached reads: single document, paginated listing, search, documents per
  entity and statistics
- Cache invalidation whenever the stored set changes
"""

import logging
import math
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import SessionLocal
from ..models import (
    DocumentCreate,
    DocumentListResponse,
    DocumentStatsResponse,
    DocumentUpdate,
    Entity,
    SavedDocument,
)
from ..models_db import ArchiveEntity, Document, DocumentEntity
from .cache_service import CacheEngine, CacheKey, CacheTTL
from .entity_service import find_or_create
from .exceptions import NotFoundError, PersistenceError

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 255
RECENT_DOCUMENTS_LIMIT = 5


def _to_saved(row: Document) -> SavedDocument:
    return SavedDocument(
        id=str(row.id),
        title=row.title,
        file_name=row.file_name,
        content=row.content,
        image_url=row.image_url,
        document_type=row.document_type,
        entities=[
            Entity(name=link.entity.name, type=link.entity.entity_type, date=link.entity.date)
            for link in row.entity_links
        ],
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _parse_id(document_id: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(document_id))
    except ValueError:
        return None


def _link_entities(db: Session, row: Document, entities: Iterable[Entity]) -> None:
    """Attach shared entities to a document, once each, in answer order."""
    linked: dict[tuple[str, str], ArchiveEntity] = {}
    for entity in entities:
        record = find_or_create(db, entity.name, entity.type.value, entity.date)
        linked.setdefault((record.name, record.entity_type), record)

    row.entity_links = [
        DocumentEntity(entity=record, position=position)
        for position, record in enumerate(linked.values())
    ]


class DocumentService:
    """Stores analyzed documents and serves cached reads over them."""

    def __init__(
        self,
        cache: CacheEngine,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self._cache = cache
        self._session_factory = session_factory

    def _invalidate(self) -> None:
        # Entity document counts change with every document write
        for prefix in (CacheKey.DOCUMENT, CacheKey.SEARCH, CacheKey.STATS, CacheKey.ENTITY):
            self._cache.delete_pattern(prefix.key("*"))

    async def save(self, fields: DocumentCreate) -> SavedDocument:
        """
        Persist an analysis as a new document.

        Every call creates a new record, even for the same source file.
        Entities are matched by name and type against the stored ones and
        created when missing.

        Args:
            fields: Title, content, type, image and entities to store.

        Returns:
            The saved record with its generated ID and timestamps.

        Raises:
            PersistenceError: If the database write fails.
        """
        title = fields.title[:TITLE_MAX_LENGTH]
        logger.info("Saving document: %s", title)

        try:
            with self._session_factory() as db:
                row = Document(
                    title=title,
                    file_name=fields.file_name,
                    content=fields.content,
                    image_url=fields.image_url,
                    document_type=fields.document_type.value,
                )
                db.add(row)
                _link_entities(db, row, fields.entities)
                db.commit()
                db.refresh(row)
                saved = _to_saved(row)
        except SQLAlchemyError as e:
            logger.error("Failed to save document %s: %s", title, e)
            raise PersistenceError(f"Failed to save document: {e}") from e

        self._invalidate()
        logger.info("Saved document %s with %d entities", saved.id, len(saved.entities))
        return saved

    def get_document(self, document_id: str) -> SavedDocument:
        """
        Get a single document by ID.

        Raises:
            NotFoundError: If the document does not exist.
        """
        uid = _parse_id(document_id)
        if uid is None:
            raise NotFoundError(f"Document {document_id} not found")

        cache_key = CacheKey.DOCUMENT.key(uid)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        with self._session_factory() as db:
            row = db.query(Document).filter(Document.id == uid).first()
            if row is None:
                raise NotFoundError(f"Document {document_id} not found")
            document = _to_saved(row)

        self._cache.set(cache_key, document, CacheTTL.MEDIUM)
        return document

    def list_documents(
        self,
        page: int = 1,
        limit: int = 10,
        document_type: str | None = None,
    ) -> DocumentListResponse:
        """List documents newest first, optionally filtered by type."""
        cache_key = CacheKey.DOCUMENT.key("list", page, limit, document_type or "all")
        cached = self._cache.get(cache_key)
        if cached is not None:
            logger.info("Returning cached document list (page %d)", page)
            return cached

        with self._session_factory() as db:
            query = db.query(Document)
            if document_type:
                query = query.filter(Document.document_type == document_type)

            total = query.count()
            rows = (
                query.order_by(Document.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )
            documents = [_to_saved(row) for row in rows]

        result = DocumentListResponse(
            documents=documents,
            total=total,
            total_pages=math.ceil(total / limit),
            page=page,
            limit=limit,
        )
        self._cache.set(cache_key, result, CacheTTL.SHORT)
        logger.info("Retrieved %d documents (page %d)", len(documents), page)
        return result

    def search_documents(self, query: str, page: int = 1, limit: int = 10) -> DocumentListResponse:
        """Case-insensitive substring search over title and content."""
        cache_key = CacheKey.SEARCH.key(query, page, limit)
        cached = self._cache.get(cache_key)
        if cached is not None:
            logger.info("Returning cached search results for: %s", query)
            return cached

        pattern = f"%{query}%"
        with self._session_factory() as db:
            matches = db.query(Document).filter(
                or_(Document.title.ilike(pattern), Document.content.ilike(pattern))
            )
            total = matches.count()
            rows = (
                matches.order_by(Document.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )
            documents = [_to_saved(row) for row in rows]

        result = DocumentListResponse(
            documents=documents,
            total=total,
            total_pages=math.ceil(total / limit),
            page=page,
            limit=limit,
        )
        self._cache.set(cache_key, result, CacheTTL.SHORT)
        logger.info("Search for '%s' matched %d documents", query, total)
        return result

    def get_document_stats(self) -> DocumentStatsResponse:
        """Totals per document type plus the most recent documents."""
        cache_key = CacheKey.STATS.key("documents")
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        with self._session_factory() as db:
            total = db.query(Document).count()
            by_type = (
                db.query(Document.document_type, func.count(Document.id))
                .group_by(Document.document_type)
                .all()
            )
            recent = (
                db.query(Document)
                .order_by(Document.created_at.desc())
                .limit(RECENT_DOCUMENTS_LIMIT)
                .all()
            )
            stats = DocumentStatsResponse(
                total_documents=total,
                documents_by_type={doc_type: count for doc_type, count in by_type},
                recent_documents=[_to_saved(row) for row in recent],
            )

        self._cache.set(cache_key, stats, CacheTTL.LONG)
        return stats

    def get_documents_by_entity(
        self, entity_id: str, page: int = 1, limit: int = 10
    ) -> DocumentListResponse:
        """
        List the documents that mention an entity, newest first.

        Raises:
            NotFoundError: If the entity does not exist.
        """
        uid = _parse_id(entity_id)
        if uid is None:
            raise NotFoundError(f"Entity {entity_id} not found")

        cache_key = CacheKey.DOCUMENT.key("entity", uid, page, limit)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        with self._session_factory() as db:
            if db.query(ArchiveEntity.id).filter(ArchiveEntity.id == uid).first() is None:
                raise NotFoundError(f"Entity {entity_id} not found")

            linked = (
                db.query(Document)
                .join(Document.entity_links)
                .filter(DocumentEntity.entity_id == uid)
            )
            total = linked.count()
            rows = (
                linked.order_by(Document.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )
            documents = [_to_saved(row) for row in rows]

        result = DocumentListResponse(
            documents=documents,
            total=total,
            total_pages=math.ceil(total / limit),
            page=page,
            limit=limit,
        )
        self._cache.set(cache_key, result, CacheTTL.MEDIUM)
        return result

    def update_document(self, document_id: str, fields: DocumentUpdate) -> SavedDocument:
        """
        Update the given fields of a saved document.

        A new entity list replaces the document's links to entities; the
        entities themselves are kept.

        Raises:
            NotFoundError: If the document does not exist.
            PersistenceError: If the database write fails.
        """
        uid = _parse_id(document_id)
        if uid is None:
            raise NotFoundError(f"Document {document_id} not found")

        changes = fields.model_dump(exclude_unset=True)
        try:
            with self._session_factory() as db:
                row = db.query(Document).filter(Document.id == uid).first()
                if row is None:
                    raise NotFoundError(f"Document {document_id} not found")

                if changes.get("title"):
                    row.title = changes["title"][:TITLE_MAX_LENGTH]
                if changes.get("content") is not None:
                    row.content = changes["content"]
                if "image_url" in changes:
                    row.image_url = changes["image_url"]
                if fields.document_type is not None:
                    row.document_type = fields.document_type.value
                if fields.entities is not None:
                    row.entity_links.clear()
                    db.flush()
                    _link_entities(db, row, fields.entities)
                row.updated_at = datetime.utcnow()

                db.commit()
                db.refresh(row)
                saved = _to_saved(row)
        except SQLAlchemyError as e:
            logger.error("Failed to update document %s: %s", document_id, e)
            raise PersistenceError(f"Failed to update document: {e}") from e

        self._invalidate()
        logger.info("Updated document %s", document_id)
        return saved

    def delete_document(self, document_id: str) -> bool:
        """Delete a document and its entity links; returns whether it existed."""
        uid = _parse_id(document_id)
        if uid is None:
            return False

        with self._session_factory() as db:
            row = db.query(Document).filter(Document.id == uid).first()
            if row is None:
                return False
            db.delete(row)
            db.commit()

        self._invalidate()
        logger.info("Deleted document %s", document_id)
        return True

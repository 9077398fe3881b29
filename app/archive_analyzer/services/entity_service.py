"""
Entity service for the people, places and units named in saved documents.

Handles:
- Find-or-create of shared entities, also used when documents are saved
- Cached reads: single entity, filtered listing, search, by type, statistics
- Updates and deletes, with cache invalidation
"""

import logging
import math
import uuid
from collections.abc import Callable

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..database import SessionLocal
from ..models import (
    DocumentSummary,
    EntityCreate,
    EntityListResponse,
    EntityRecord,
    EntityStatsResponse,
    EntityType,
    EntityUpdate,
)
from ..models_db import ArchiveEntity, Document, DocumentEntity
from .cache_service import CacheEngine, CacheKey, CacheTTL
from .exceptions import NotFoundError, PersistenceError

logger = logging.getLogger(__name__)

ENTITY_NAME_MAX_LENGTH = 255
TOP_ENTITIES_LIMIT = 10


def find_or_create(
    db: Session, name: str, entity_type: str, date: str | None = None
) -> ArchiveEntity:
    """
    Return the entity with this name and type, adding it to the session if new.

    An existing entity is returned unchanged, including its date.
    """
    name = name[:ENTITY_NAME_MAX_LENGTH]
    row = (
        db.query(ArchiveEntity)
        .filter(ArchiveEntity.name == name, ArchiveEntity.entity_type == entity_type)
        .first()
    )
    if row is None:
        row = ArchiveEntity(name=name, entity_type=entity_type, date=date)
        db.add(row)
    return row


def _parse_id(entity_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(entity_id))
    except ValueError:
        raise NotFoundError(f"Entity {entity_id} not found") from None


def _document_counts(db: Session, ids: list[uuid.UUID]) -> dict[uuid.UUID, int]:
    if not ids:
        return {}
    rows = (
        db.query(DocumentEntity.entity_id, func.count(DocumentEntity.id))
        .filter(DocumentEntity.entity_id.in_(ids))
        .group_by(DocumentEntity.entity_id)
        .all()
    )
    return dict(rows)


def _to_record(
    row: ArchiveEntity,
    document_count: int = 0,
    documents: list[DocumentSummary] | None = None,
) -> EntityRecord:
    return EntityRecord(
        id=str(row.id),
        name=row.name,
        type=row.entity_type,
        date=row.date,
        document_count=document_count,
        documents=documents,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class EntityService:
    """Manages shared entities and serves cached reads over them."""

    def __init__(
        self,
        cache: CacheEngine,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self._cache = cache
        self._session_factory = session_factory

    def _invalidate(self) -> None:
        # Cached documents embed entity names, so they go too
        for prefix in (CacheKey.ENTITY, CacheKey.SEARCH, CacheKey.STATS, CacheKey.DOCUMENT):
            self._cache.delete_pattern(prefix.key("*"))

    def _paginate(self, db: Session, query: Query, page: int, limit: int) -> EntityListResponse:
        total = query.count()
        rows = (
            query.order_by(ArchiveEntity.name.asc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        counts = _document_counts(db, [row.id for row in rows])
        return EntityListResponse(
            entities=[_to_record(row, counts.get(row.id, 0)) for row in rows],
            total=total,
            total_pages=math.ceil(total / limit),
            page=page,
            limit=limit,
        )

    def create_entity(self, fields: EntityCreate) -> EntityRecord:
        """
        Create a new entity.

        Raises:
            PersistenceError: If the database write fails.
        """
        try:
            with self._session_factory() as db:
                row = ArchiveEntity(
                    name=fields.name,
                    entity_type=fields.type.value,
                    date=fields.date,
                )
                db.add(row)
                db.commit()
                db.refresh(row)
                record = _to_record(row)
        except SQLAlchemyError as e:
            logger.error("Failed to create entity %s: %s", fields.name, e)
            raise PersistenceError(f"Failed to create entity: {e}") from e

        self._invalidate()
        logger.info("Entity created: %s", record.id)
        return record

    def find_or_create_entity(self, fields: EntityCreate) -> EntityRecord:
        """Return the entity with the same name and type, creating it if missing."""
        try:
            with self._session_factory() as db:
                row = find_or_create(db, fields.name, fields.type.value, fields.date)
                created = row.id is None
                db.commit()
                db.refresh(row)
                record = _to_record(row, _document_counts(db, [row.id]).get(row.id, 0))
        except SQLAlchemyError as e:
            logger.error("Failed to find or create entity %s: %s", fields.name, e)
            raise PersistenceError(f"Failed to find or create entity: {e}") from e

        if created:
            self._invalidate()
            logger.info("Entity created: %s", record.id)
        return record

    def get_entity(self, entity_id: str, include_documents: bool = False) -> EntityRecord:
        """
        Get a single entity, optionally with the documents that mention it.

        Raises:
            NotFoundError: If the entity does not exist.
        """
        uid = _parse_id(entity_id)
        cache_key = CacheKey.ENTITY.key(uid, include_documents)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        with self._session_factory() as db:
            row = db.query(ArchiveEntity).filter(ArchiveEntity.id == uid).first()
            if row is None:
                raise NotFoundError(f"Entity {entity_id} not found")

            documents = None
            if include_documents:
                linked = (
                    db.query(Document)
                    .join(Document.entity_links)
                    .filter(DocumentEntity.entity_id == uid)
                    .order_by(Document.created_at.desc())
                    .all()
                )
                documents = [
                    DocumentSummary(
                        id=str(doc.id),
                        title=doc.title,
                        document_type=doc.document_type,
                        created_at=doc.created_at,
                    )
                    for doc in linked
                ]
            record = _to_record(row, _document_counts(db, [uid]).get(uid, 0), documents)

        self._cache.set(cache_key, record, CacheTTL.MEDIUM)
        return record

    def list_entities(
        self,
        page: int = 1,
        limit: int = 10,
        entity_type: str | None = None,
        keyword: str | None = None,
        date: str | None = None,
    ) -> EntityListResponse:
        """List entities by name, filtered by type, name keyword or date."""
        cache_key = CacheKey.ENTITY.key(
            "list", page, limit, entity_type or "all", keyword or "", date or ""
        )
        cached = self._cache.get(cache_key)
        if cached is not None:
            logger.info("Returning cached entity list (page %d)", page)
            return cached

        with self._session_factory() as db:
            query = db.query(ArchiveEntity)
            if entity_type:
                query = query.filter(ArchiveEntity.entity_type == entity_type)
            if keyword:
                query = query.filter(ArchiveEntity.name.ilike(f"%{keyword}%"))
            if date:
                query = query.filter(ArchiveEntity.date.contains(date))
            result = self._paginate(db, query, page, limit)

        self._cache.set(cache_key, result, CacheTTL.SHORT)
        logger.info("Retrieved %d entities (page %d)", len(result.entities), page)
        return result

    def search_entities(self, query: str, page: int = 1, limit: int = 10) -> EntityListResponse:
        """Case-insensitive substring search over entity names."""
        cache_key = CacheKey.SEARCH.key("entities", query, page, limit)
        cached = self._cache.get(cache_key)
        if cached is not None:
            logger.info("Returning cached entity search results for: %s", query)
            return cached

        with self._session_factory() as db:
            matches = db.query(ArchiveEntity).filter(ArchiveEntity.name.ilike(f"%{query}%"))
            result = self._paginate(db, matches, page, limit)

        self._cache.set(cache_key, result, CacheTTL.SHORT)
        logger.info("Entity search for '%s' matched %d entities", query, result.total)
        return result

    def get_entities_by_type(
        self, entity_type: EntityType, page: int = 1, limit: int = 10
    ) -> EntityListResponse:
        """List the entities of one type."""
        entity_type = EntityType(entity_type)
        cache_key = CacheKey.ENTITY.key("type", entity_type.value, page, limit)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        with self._session_factory() as db:
            query = db.query(ArchiveEntity).filter(ArchiveEntity.entity_type == entity_type.value)
            result = self._paginate(db, query, page, limit)

        self._cache.set(cache_key, result, CacheTTL.MEDIUM)
        return result

    def get_entity_stats(self) -> EntityStatsResponse:
        """Totals per entity type plus the most frequently mentioned entities."""
        cache_key = CacheKey.STATS.key("entities")
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        with self._session_factory() as db:
            total = db.query(ArchiveEntity).count()
            by_type = (
                db.query(ArchiveEntity.entity_type, func.count(ArchiveEntity.id))
                .group_by(ArchiveEntity.entity_type)
                .all()
            )
            document_count = func.count(DocumentEntity.id)
            top = (
                db.query(ArchiveEntity, document_count)
                .outerjoin(ArchiveEntity.document_links)
                .group_by(ArchiveEntity.id)
                .order_by(document_count.desc(), ArchiveEntity.name.asc())
                .limit(TOP_ENTITIES_LIMIT)
                .all()
            )
            stats = EntityStatsResponse(
                total_entities=total,
                entities_by_type={entity_type: count for entity_type, count in by_type},
                top_entities=[_to_record(row, count) for row, count in top],
            )

        self._cache.set(cache_key, stats, CacheTTL.LONG)
        return stats

    def update_entity(self, entity_id: str, fields: EntityUpdate) -> EntityRecord:
        """
        Update the given fields of an entity.

        Raises:
            NotFoundError: If the entity does not exist.
            PersistenceError: If the database write fails.
        """
        uid = _parse_id(entity_id)
        changes = fields.model_dump(exclude_unset=True)

        try:
            with self._session_factory() as db:
                row = db.query(ArchiveEntity).filter(ArchiveEntity.id == uid).first()
                if row is None:
                    raise NotFoundError(f"Entity {entity_id} not found")

                if changes.get("name"):
                    row.name = changes["name"]
                if changes.get("type"):
                    row.entity_type = EntityType(changes["type"]).value
                if "date" in changes:
                    row.date = changes["date"]

                db.commit()
                db.refresh(row)
                record = _to_record(row, _document_counts(db, [uid]).get(uid, 0))
        except SQLAlchemyError as e:
            logger.error("Failed to update entity %s: %s", entity_id, e)
            raise PersistenceError(f"Failed to update entity: {e}") from e

        self._invalidate()
        logger.info("Entity updated: %s", entity_id)
        return record

    def delete_entity(self, entity_id: str) -> bool:
        """Delete an entity and its document links; returns whether it existed."""
        try:
            uid = _parse_id(entity_id)
        except NotFoundError:
            return False

        with self._session_factory() as db:
            row = db.query(ArchiveEntity).filter(ArchiveEntity.id == uid).first()
            if row is None:
                return False
            db.delete(row)
            db.commit()

        self._invalidate()
        logger.info("Entity deleted: %s", entity_id)
        return True

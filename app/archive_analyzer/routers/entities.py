"""
Router for entities named in saved documents.

Handles:
- Creating entities and find-or-create by name and type
- Filtered listing, search and per-type listing
- Aggregate statistics
- Single entity retrieval, update and deletion
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..dependencies import get_entity_service
from ..models import (
    EntityCreate,
    EntityListResponse,
    EntityRecord,
    EntityStatsResponse,
    EntityType,
    EntityUpdate,
)
from ..services import EntityService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/entities", tags=["entities"])


@router.post("", response_model=EntityRecord, status_code=status.HTTP_201_CREATED)
async def create_entity(
    fields: EntityCreate,
    entities: EntityService = Depends(get_entity_service),
) -> EntityRecord:
    """Create a new entity."""
    return entities.create_entity(fields)


@router.get("", response_model=EntityListResponse)
async def list_entities(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    type: EntityType | None = None,
    keyword: str | None = Query(default=None, description="Part of the entity name"),
    date: str | None = Query(default=None, description="Part of the ISO-8601 date"),
    entities: EntityService = Depends(get_entity_service),
) -> EntityListResponse:
    """List entities by name."""
    return entities.list_entities(
        page=page,
        limit=limit,
        entity_type=type.value if type else None,
        keyword=keyword,
        date=date,
    )


@router.get("/search", response_model=EntityListResponse)
async def search_entities(
    q: str = Query(..., min_length=1, description="Text to look for in entity names"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    entities: EntityService = Depends(get_entity_service),
) -> EntityListResponse:
    """Search entities by name."""
    return entities.search_entities(q, page=page, limit=limit)


@router.get("/stats", response_model=EntityStatsResponse)
async def get_entity_stats(
    entities: EntityService = Depends(get_entity_service),
) -> EntityStatsResponse:
    """Entity counts per type and the most mentioned entities."""
    return entities.get_entity_stats()


@router.post("/find-or-create", response_model=EntityRecord)
async def find_or_create_entity(
    fields: EntityCreate,
    entities: EntityService = Depends(get_entity_service),
) -> EntityRecord:
    """Return the entity with this name and type, creating it if missing."""
    return entities.find_or_create_entity(fields)


@router.get("/type/{entity_type}", response_model=EntityListResponse)
async def list_entities_by_type(
    entity_type: EntityType,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    entities: EntityService = Depends(get_entity_service),
) -> EntityListResponse:
    """List the entities of one type."""
    return entities.get_entities_by_type(entity_type, page=page, limit=limit)


@router.get("/{entity_id}", response_model=EntityRecord)
async def get_entity(
    entity_id: str,
    include_documents: bool = False,
    entities: EntityService = Depends(get_entity_service),
) -> EntityRecord:
    """Get a single entity."""
    return entities.get_entity(entity_id, include_documents=include_documents)


@router.put("/{entity_id}", response_model=EntityRecord)
async def update_entity(
    entity_id: str,
    fields: EntityUpdate,
    entities: EntityService = Depends(get_entity_service),
) -> EntityRecord:
    """Update fields of an entity."""
    return entities.update_entity(entity_id, fields)


@router.delete("/{entity_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_entity(
    entity_id: str,
    entities: EntityService = Depends(get_entity_service),
) -> None:
    """Delete an entity and its links to documents."""
    if not entities.delete_entity(entity_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Entity {entity_id} not found",
        )

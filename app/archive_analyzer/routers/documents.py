"""
Router for saved documents.

Handles:
- Paginated listing with an optional type filter
- Text search over titles and content
- Aggregate statistics
- Documents mentioning an entity
- Single document retrieval, update and deletion
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..dependencies import get_document_service
from ..models import (
    DocumentListResponse,
    DocumentStatsResponse,
    DocumentType,
    DocumentUpdate,
    SavedDocument,
)
from ..services import DocumentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["documents"])


@router.get("", response_model=DocumentListResponse)
async def list_documents(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    document_type: DocumentType | None = None,
    documents: DocumentService = Depends(get_document_service),
) -> DocumentListResponse:
    """List saved documents, newest first."""
    return documents.list_documents(
        page=page,
        limit=limit,
        document_type=document_type.value if document_type else None,
    )


@router.get("/search", response_model=DocumentListResponse)
async def search_documents(
    q: str = Query(..., min_length=1, description="Text to look for in title or content"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    documents: DocumentService = Depends(get_document_service),
) -> DocumentListResponse:
    """Search saved documents by title and content."""
    return documents.search_documents(q, page=page, limit=limit)


@router.get("/stats", response_model=DocumentStatsResponse)
async def get_document_stats(
    documents: DocumentService = Depends(get_document_service),
) -> DocumentStatsResponse:
    """Document counts per type and the latest documents."""
    return documents.get_document_stats()


@router.get("/by-entity/{entity_id}", response_model=DocumentListResponse)
async def list_documents_by_entity(
    entity_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    documents: DocumentService = Depends(get_document_service),
) -> DocumentListResponse:
    """List saved documents that mention an entity."""
    return documents.get_documents_by_entity(entity_id, page=page, limit=limit)


@router.get("/{document_id}", response_model=SavedDocument)
async def get_document(
    document_id: str,
    documents: DocumentService = Depends(get_document_service),
) -> SavedDocument:
    """Get a single saved document."""
    return documents.get_document(document_id)


@router.put("/{document_id}", response_model=SavedDocument)
async def update_document(
    document_id: str,
    fields: DocumentUpdate,
    documents: DocumentService = Depends(get_document_service),
) -> SavedDocument:
    """Update fields of a saved document."""
    return documents.update_document(document_id, fields)


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
    document_id: str,
    documents: DocumentService = Depends(get_document_service),
) -> None:
    """Delete a saved document and its entity links."""
    if not documents.delete_document(document_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Document {document_id} not found",
        )

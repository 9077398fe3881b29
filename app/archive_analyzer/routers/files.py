"""
Router for the file store.

Handles:
- Uploading source documents for later analysis
- Listing and deleting stored files
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status

from ..dependencies import get_file_store
from ..models import StoredFileInfo, StoredFileListResponse
from ..services import FileStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/files", tags=["files"])

DEFAULT_MEDIA_TYPE = "application/octet-stream"


@router.post("", response_model=StoredFileInfo, status_code=status.HTTP_201_CREATED)
async def upload_file(
    file: Annotated[UploadFile, File(description="Document to store (PDF, Word or image)")],
    store: FileStore = Depends(get_file_store),
) -> StoredFileInfo:
    """
    Upload a document into the file store.

    The declared content type is kept as is and decides how the file is
    converted when analyzed.
    """
    if not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No filename provided",
        )

    file_bytes = await file.read()
    logger.info("Uploading %s (%d bytes)", file.filename, len(file_bytes))

    try:
        return store.put(file.filename, file.content_type or DEFAULT_MEDIA_TYPE, file_bytes)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e


@router.get("", response_model=StoredFileListResponse)
async def list_files(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    store: FileStore = Depends(get_file_store),
) -> StoredFileListResponse:
    """List stored files, newest first."""
    return store.list_files(page=page, limit=limit)


@router.delete("/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_file(
    file_id: str,
    store: FileStore = Depends(get_file_store),
) -> None:
    """Delete a stored file and its cached analysis."""
    if not store.delete(file_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"File {file_id} not found",
        )

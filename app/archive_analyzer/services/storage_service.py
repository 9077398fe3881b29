"""
File store backing the analysis pipeline's retrieval step.

Source files are uploaded once and kept in the database; the pipeline then
fetches them by their opaque ID.
"""

import logging
import math
import uuid
from collections.abc import Callable

from sqlalchemy.orm import Session

from ..database import SessionLocal
from ..models import RetrievedFile, StoredFileInfo, StoredFileListResponse
from ..models_db import StoredFile
from .cache_service import CacheEngine, CacheKey, CacheTTL
from .exceptions import NotFoundError, TooLargeError

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 50 * 1024 * 1024


def normalize_file_id(file_id: str) -> str:
    """Canonical form of a file ID; strings that are not UUIDs pass through."""
    try:
        return str(uuid.UUID(str(file_id)))
    except ValueError:
        return str(file_id)


def _parse_id(file_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(file_id))
    except ValueError:
        raise NotFoundError(f"File {file_id} not found") from None


def _to_info(row: StoredFile) -> StoredFileInfo:
    return StoredFileInfo(
        id=str(row.id),
        name=row.filename,
        media_type=row.media_type,
        size_bytes=row.size_bytes,
        created_at=row.created_at,
    )


class FileStore:
    """
    Keyed storage for uploaded source files.

    Enforces a maximum file size on both upload and retrieval.
    """

    def __init__(
        self,
        cache: CacheEngine,
        session_factory: Callable[[], Session] = SessionLocal,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
    ):
        """
        Initialize the file store.

        Args:
            cache: Shared cache engine, used for listings.
            session_factory: Factory returning SQLAlchemy sessions.
            max_file_size: Size bound in bytes.
        """
        self._cache = cache
        self._session_factory = session_factory
        self.max_file_size = max_file_size

    def put(self, name: str, media_type: str, data: bytes) -> StoredFileInfo:
        """
        Store a new file.

        Raises:
            ValueError: If the payload is empty.
            TooLargeError: If the payload exceeds the size bound.
        """
        if not data:
            raise ValueError("Empty file provided")
        if len(data) > self.max_file_size:
            raise TooLargeError(len(data), self.max_file_size)

        with self._session_factory() as db:
            row = StoredFile(
                filename=name,
                media_type=media_type,
                size_bytes=len(data),
                file_content=data,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            info = _to_info(row)

        self._cache.delete_pattern(CacheKey.DIRECTORY.key("*"))
        logger.info("Stored file %s: %s (%d bytes)", info.id, name, info.size_bytes)
        return info

    async def fetch(self, file_id: str) -> RetrievedFile:
        """
        Retrieve a file's metadata and content.

        Raises:
            NotFoundError: If no file has this ID.
            TooLargeError: If the file exceeds the size bound.
        """
        uid = _parse_id(file_id)
        logger.info("Fetching content for file %s", file_id)

        with self._session_factory() as db:
            meta = (
                db.query(StoredFile.filename, StoredFile.media_type, StoredFile.size_bytes)
                .filter(StoredFile.id == uid)
                .first()
            )
            if meta is None:
                raise NotFoundError(f"File {file_id} not found")

            if meta.size_bytes > self.max_file_size:
                raise TooLargeError(meta.size_bytes, self.max_file_size)

            content = (
                db.query(StoredFile.file_content).filter(StoredFile.id == uid).scalar()
            )

        logger.info("Retrieved content for file %s: %s (%d bytes)", file_id, meta.filename, meta.size_bytes)
        return RetrievedFile(
            id=str(uid),
            name=meta.filename,
            media_type=meta.media_type,
            size_bytes=meta.size_bytes,
            data=content or b"",
        )

    def list_files(self, page: int = 1, limit: int = 20) -> StoredFileListResponse:
        """List stored files, newest first. Cached for a short time."""
        cache_key = CacheKey.DIRECTORY.key(page, limit)
        cached = self._cache.get(cache_key)
        if cached is not None:
            logger.info("Returning cached file listing (page %d)", page)
            return cached

        with self._session_factory() as db:
            total = db.query(StoredFile).count()
            rows = (
                db.query(StoredFile)
                .order_by(StoredFile.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )
            files = [_to_info(row) for row in rows]

        result = StoredFileListResponse(files=files, total=total, page=page, limit=limit)
        self._cache.set(cache_key, result, CacheTTL.SHORT)

        logger.info(
            "Retrieved %d files (page %d/%d)", len(files), page, max(1, math.ceil(total / limit))
        )
        return result

    def delete(self, file_id: str) -> bool:
        """Delete a stored file; returns whether it existed."""
        try:
            uid = _parse_id(file_id)
        except NotFoundError:
            return False

        with self._session_factory() as db:
            deleted = db.query(StoredFile).filter(StoredFile.id == uid).delete()
            db.commit()

        if deleted:
            self._cache.delete_pattern(CacheKey.DIRECTORY.key("*"))
            self._cache.delete(CacheKey.ANALYSIS.key(uid))
            logger.info("Deleted file %s", file_id)
        return bool(deleted)

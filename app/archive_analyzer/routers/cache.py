"""
Router for cache inspection and invalidation.
"""

import logging

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_cache
from ..models import CacheClearResponse, CacheItemInfo, CacheStats
from ..services import CacheEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cache", tags=["cache"])


@router.get("/stats", response_model=CacheStats)
async def get_cache_stats(cache: CacheEngine = Depends(get_cache)) -> CacheStats:
    """Hit/miss counters and approximate size."""
    return cache.get_stats()


@router.get("/entries", response_model=list[CacheItemInfo])
async def get_cache_entries(cache: CacheEngine = Depends(get_cache)) -> list[CacheItemInfo]:
    """Per-entry details, most accessed first."""
    return cache.get_detailed_info()


@router.delete("", response_model=CacheClearResponse)
async def clear_cache(
    pattern: str | None = Query(default=None, description="Wildcard pattern, e.g. doc_*"),
    cache: CacheEngine = Depends(get_cache),
) -> CacheClearResponse:
    """Clear the whole cache, or only the keys matching ``pattern``."""
    if pattern:
        removed = cache.delete_pattern(pattern)
        logger.info("Cleared %d cache entries matching %s", removed, pattern)
        return CacheClearResponse(message=f"Cleared entries matching {pattern}", removed=removed)

    removed = len(cache)
    cache.clear()
    return CacheClearResponse(message="Cache cleared", removed=removed)

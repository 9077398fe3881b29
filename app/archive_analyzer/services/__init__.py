"""
Services package for the archive analyzer.

Contains:
- cache_service: In-memory TTL/LRU cache shared by all read paths
- conversion_service: File to image conversion
- ai: Vision analysis client and response validation
- storage_service: File store (retrieval)
- document_service: Saved documents (persistence)
- entity_service: Entities shared by saved documents
- pipeline: The orchestrator tying them together
"""

from .ai import AnalysisClient
from .cache_service import CacheEngine, CacheKey, CacheTTL
from .conversion_service import ConversionService
from .document_service import DocumentService
from .entity_service import EntityService
from .pipeline import PipelineOrchestrator
from .storage_service import FileStore

__all__ = [
    "AnalysisClient",
    "CacheEngine",
    "CacheKey",
    "CacheTTL",
    "ConversionService",
    "DocumentService",
    "EntityService",
    "FileStore",
    "PipelineOrchestrator",
]

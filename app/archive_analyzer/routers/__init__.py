"""
Routers package for FastAPI endpoints.

Organized by domain:
- files: File store upload, listing and deletion
- analysis: Running the analysis pipeline
- documents: Saved documents
- entities: Entities named in saved documents
- cache: Cache statistics and invalidation
"""

from . import analysis, cache, documents, entities, files

__all__ = ["analysis", "cache", "documents", "entities", "files"]

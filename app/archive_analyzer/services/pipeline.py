"""
Document analysis pipeline.

Composes retrieval, conversion, vision analysis and response validation
behind a cache-aside layer keyed by file ID, and optionally saves the
result as a document.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone

from ..models import AnalysisEnvelope, DocumentCreate, PipelineOptions
from .ai import AnalysisClient
from .cache_service import CacheEngine, CacheKey, CacheTTL
from .conversion_service import ConversionService
from .document_service import DocumentService
from .exceptions import PersistenceError
from .storage_service import FileStore, normalize_file_id

logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """
    Runs the analysis pipeline for one stored file.

    Steps run strictly in sequence: fetch, convert, analyze, parse, then the
    optional save. Finished envelopes are cached under ``analysis_<file_id>``.
    Concurrent requests for the same uncached file share one analysis, and
    each of them then saves according to its own options.
    """

    def __init__(
        self,
        cache: CacheEngine,
        store: FileStore,
        converter: ConversionService,
        analyzer: AnalysisClient,
        documents: DocumentService | None = None,
        cache_ttl: float = CacheTTL.LONG,
    ):
        """
        Initialize the orchestrator.

        Args:
            cache: Shared cache engine.
            store: Retrieval collaborator.
            converter: File to image dispatcher.
            analyzer: Vision analysis client.
            documents: Persistence collaborator, required for auto-save.
            cache_ttl: Lifetime of cached envelopes in seconds.
        """
        self._cache = cache
        self._store = store
        self._converter = converter
        self._analyzer = analyzer
        self._documents = documents
        self.cache_ttl = cache_ttl

    @staticmethod
    def cache_key(file_id: str) -> str:
        return CacheKey.ANALYSIS.key(normalize_file_id(file_id))

    async def process(
        self, file_id: str, options: PipelineOptions | None = None
    ) -> AnalysisEnvelope:
        """
        Analyze a stored file, serving repeated requests from the cache.

        A cached envelope is returned as is, so ``auto_save`` has no effect
        on a cache hit. With ``force_refresh`` the cache read is skipped and
        the new envelope replaces the cached one.

        Args:
            file_id: ID of the file in the file store.
            options: Per-call switches.

        Returns:
            The analysis envelope.

        Raises:
            NotFoundError: If the file does not exist.
            TooLargeError: If the file exceeds the size bound.
            ConversionError: If the file cannot be turned into an image.
            AnalysisError: If every inference attempt failed.
            ParseError: If the answer holds no JSON object.
            ValidationError: If the answer violates the schema.
            PersistenceError: If auto-save failed. The computed envelope is
                attached to the error and nothing is cached.
        """
        options = options or PipelineOptions()
        file_id = normalize_file_id(file_id)
        key = self.cache_key(file_id)

        if options.force_refresh:
            logger.info("Force refresh requested for file %s", file_id)
            envelope = await self._analyze(file_id)
        else:
            cached = self._cache.get(key)
            if cached is not None:
                logger.info("Returning cached analysis for file %s", file_id)
                return cached
            envelope = await self._cache.coalesce(key, lambda: self._analyze(file_id))

        if options.auto_save:
            envelope = await self._save(envelope)

        self._cache.set(key, envelope, self.cache_ttl)
        return envelope

    def invalidate(self, file_id: str) -> bool:
        """Drop the cached analysis of one file."""
        removed = self._cache.delete(self.cache_key(file_id))
        if removed:
            logger.info("Invalidated cached analysis for file %s", file_id)
        return removed

    async def _analyze(self, file_id: str) -> AnalysisEnvelope:
        started = time.perf_counter()
        logger.info("Processing file %s", file_id)

        file = await self._store.fetch(file_id)
        image = await asyncio.to_thread(self._converter.convert, file)
        raw = await self._analyzer.analyze(image)
        analysis = self._analyzer.parse(raw)

        logger.info(
            "Processed file %s (%s) in %.2fs",
            file_id,
            file.name,
            time.perf_counter() - started,
        )
        return AnalysisEnvelope(
            analysis=analysis,
            image=image,
            file_id=file_id,
            file_name=file.name,
            processed_at=datetime.now(timezone.utc),
        )

    async def _save(self, envelope: AnalysisEnvelope) -> AnalysisEnvelope:
        if self._documents is None:
            raise PersistenceError("No document store configured for auto-save", envelope=envelope)

        analysis = envelope.analysis
        fields = DocumentCreate(
            title=analysis.title,
            file_name=envelope.file_name,
            content=analysis.content,
            image_url=envelope.image.data_url,
            document_type=analysis.document_type,
            entities=analysis.entities,
        )

        try:
            saved = await self._documents.save(fields)
        except Exception as e:
            logger.error("Auto-save failed for file %s: %s", envelope.file_id, e)
            raise PersistenceError(
                f"Analysis succeeded but saving failed: {e}", envelope=envelope
            ) from e

        logger.info("Auto-saved analysis of file %s as document %s", envelope.file_id, saved.id)
        return envelope.model_copy(update={"saved_document": saved})

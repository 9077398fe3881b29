"""Tests for the pipeline orchestrator."""

import asyncio
import json
import uuid
from datetime import datetime, timezone

import pytest

from app.archive_analyzer.models import (
    DocumentCreate,
    PipelineOptions,
    RetrievedFile,
    SavedDocument,
)
from app.archive_analyzer.services import CacheEngine, ConversionService, PipelineOrchestrator
from app.archive_analyzer.services.ai.validation import parse_analysis
from app.archive_analyzer.services.exceptions import (
    AnalysisError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)


class StubStore:
    def __init__(self, files: dict[str, RetrievedFile]):
        self.files = files
        self.fetches = 0

    async def fetch(self, file_id: str) -> RetrievedFile:
        self.fetches += 1
        if file_id not in self.files:
            raise NotFoundError(f"File {file_id} not found")
        return self.files[file_id]


class StubAnalyzer:
    """Returns a fixed answer, optionally after a gate opens."""

    def __init__(self, answer: str, gate: asyncio.Event | None = None, error: Exception | None = None):
        self.answer = answer
        self.gate = gate
        self.error = error
        self.calls = 0

    async def analyze(self, image):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.answer

    def parse(self, raw: str):
        return parse_analysis(raw)


class StubDocuments:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.saved: list[DocumentCreate] = []

    async def save(self, fields: DocumentCreate) -> SavedDocument:
        if self.error is not None:
            raise self.error
        self.saved.append(fields)
        now = datetime.now(timezone.utc)
        return SavedDocument(id=f"doc-{len(self.saved)}", created_at=now, updated_at=now, **fields.model_dump())


@pytest.fixture
def store(png_file: RetrievedFile) -> StubStore:
    return StubStore({png_file.id: png_file})


@pytest.fixture
def analyzer(valid_analysis: dict) -> StubAnalyzer:
    return StubAnalyzer(json.dumps(valid_analysis))


@pytest.fixture
def documents() -> StubDocuments:
    return StubDocuments()


@pytest.fixture
def pipeline(cache: CacheEngine, store, analyzer, documents) -> PipelineOrchestrator:
    return PipelineOrchestrator(
        cache=cache,
        store=store,
        converter=ConversionService(),
        analyzer=analyzer,
        documents=documents,
    )


class TestProcess:
    """Tests for a pipeline run."""

    @pytest.mark.asyncio
    async def test_builds_envelope(self, pipeline: PipelineOrchestrator, png_file: RetrievedFile):
        """Test a run returns analysis, image and file metadata."""
        envelope = await pipeline.process(png_file.id)

        assert envelope.file_id == png_file.id
        assert envelope.file_name == "scan.png"
        assert envelope.analysis.title == "Report on Airborne Operations"
        assert envelope.image.mime_type == "image/png"
        assert envelope.processed_at.tzinfo is not None
        assert envelope.saved_document is None

    @pytest.mark.asyncio
    async def test_second_call_is_served_from_cache(
        self, pipeline: PipelineOrchestrator, analyzer: StubAnalyzer, store: StubStore, cache: CacheEngine
    ):
        """Test repeated calls within the TTL make no external calls."""
        first = await pipeline.process("file-1")
        second = await pipeline.process("file-1")

        assert second == first
        assert analyzer.calls == 1
        assert store.fetches == 1
        assert cache.has("analysis_file-1")

    @pytest.mark.asyncio
    async def test_cache_expires_after_an_hour(
        self, pipeline: PipelineOrchestrator, analyzer: StubAnalyzer, clock
    ):
        """Test envelopes are recomputed once the hour has passed."""
        await pipeline.process("file-1")
        clock.advance(3601)
        await pipeline.process("file-1")

        assert analyzer.calls == 2

    @pytest.mark.asyncio
    async def test_force_refresh_recomputes(
        self, pipeline: PipelineOrchestrator, analyzer: StubAnalyzer, cache: CacheEngine
    ):
        """Test force_refresh skips the cache read and replaces the entry."""
        first = await pipeline.process("file-1")
        refreshed = await pipeline.process("file-1", PipelineOptions(force_refresh=True))

        assert analyzer.calls == 2
        assert refreshed.processed_at >= first.processed_at
        assert cache.get("analysis_file-1") == refreshed

    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_run(
        self, cache: CacheEngine, store: StubStore, valid_analysis: dict
    ):
        """Test simultaneous requests for one file analyze it once."""
        gate = asyncio.Event()
        analyzer = StubAnalyzer(json.dumps(valid_analysis), gate=gate)
        pipeline = PipelineOrchestrator(cache, store, ConversionService(), analyzer)

        tasks = [asyncio.create_task(pipeline.process("file-1")) for _ in range(3)]
        # Let the first task reach the analyzer before opening the gate
        while analyzer.calls == 0:
            await asyncio.sleep(0.01)
        gate.set()

        results = await asyncio.gather(*tasks)
        assert analyzer.calls == 1
        assert results[0] == results[1] == results[2]

    @pytest.mark.asyncio
    async def test_missing_file(self, pipeline: PipelineOrchestrator, cache: CacheEngine):
        """Test unknown files raise NotFoundError and cache nothing."""
        with pytest.raises(NotFoundError):
            await pipeline.process("nope")
        assert not cache.has("analysis_nope")

    @pytest.mark.asyncio
    async def test_analysis_failure_is_not_cached(
        self, cache: CacheEngine, store: StubStore
    ):
        """Test an inference failure propagates and leaves no entry."""
        analyzer = StubAnalyzer("", error=AnalysisError("down", attempts=3))
        pipeline = PipelineOrchestrator(cache, store, ConversionService(), analyzer)

        with pytest.raises(AnalysisError):
            await pipeline.process("file-1")
        assert not cache.has("analysis_file-1")

    @pytest.mark.asyncio
    async def test_invalid_answer_raises_validation_error(
        self, cache: CacheEngine, store: StubStore
    ):
        """Test schema violations surface as ValidationError."""
        analyzer = StubAnalyzer(json.dumps({"title": "x"}))
        pipeline = PipelineOrchestrator(cache, store, ConversionService(), analyzer)

        with pytest.raises(ValidationError):
            await pipeline.process("file-1")


class TestConcurrentRequests:
    """Tests for requests that overlap on one uncached file."""

    @staticmethod
    async def _wait_for_analysis(analyzer: StubAnalyzer) -> None:
        while analyzer.calls == 0:
            await asyncio.sleep(0.01)

    @pytest.mark.asyncio
    async def test_waiter_with_auto_save_still_saves(
        self, cache: CacheEngine, store: StubStore, documents: StubDocuments, valid_analysis: dict
    ):
        """Test a caller asking for auto_save gets a saved document while sharing the analysis."""
        gate = asyncio.Event()
        analyzer = StubAnalyzer(json.dumps(valid_analysis), gate=gate)
        pipeline = PipelineOrchestrator(cache, store, ConversionService(), analyzer, documents)

        plain = asyncio.create_task(pipeline.process("file-1"))
        await self._wait_for_analysis(analyzer)
        saving = asyncio.create_task(pipeline.process("file-1", PipelineOptions(auto_save=True)))
        await asyncio.sleep(0.01)
        gate.set()

        plain_result, saved_result = await asyncio.gather(plain, saving)

        assert analyzer.calls == 1
        assert plain_result.saved_document is None
        assert saved_result.saved_document is not None
        assert saved_result.saved_document.id == "doc-1"
        assert len(documents.saved) == 1

    @pytest.mark.asyncio
    async def test_leader_save_failure_does_not_reach_waiter(
        self, cache: CacheEngine, store: StubStore, valid_analysis: dict
    ):
        """Test a failed auto-save fails only the caller that asked for it."""
        gate = asyncio.Event()
        analyzer = StubAnalyzer(json.dumps(valid_analysis), gate=gate)
        failing = StubDocuments(error=RuntimeError("database is locked"))
        pipeline = PipelineOrchestrator(cache, store, ConversionService(), analyzer, failing)

        saving = asyncio.create_task(pipeline.process("file-1", PipelineOptions(auto_save=True)))
        await self._wait_for_analysis(analyzer)
        plain = asyncio.create_task(pipeline.process("file-1"))
        await asyncio.sleep(0.01)
        gate.set()

        saving_result, plain_result = await asyncio.gather(saving, plain, return_exceptions=True)

        assert isinstance(saving_result, PersistenceError)
        assert plain_result.analysis.title == "Report on Airborne Operations"
        assert plain_result.saved_document is None
        assert analyzer.calls == 1
        assert cache.get("analysis_file-1") == plain_result

    @pytest.mark.asyncio
    async def test_analysis_failure_reaches_every_caller(
        self, cache: CacheEngine, store: StubStore
    ):
        """Test an inference failure is raised to all overlapping callers."""
        gate = asyncio.Event()
        analyzer = StubAnalyzer("", gate=gate, error=AnalysisError("down", attempts=3))
        pipeline = PipelineOrchestrator(cache, store, ConversionService(), analyzer)

        tasks = [asyncio.create_task(pipeline.process("file-1")) for _ in range(3)]
        await self._wait_for_analysis(analyzer)
        gate.set()

        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, AnalysisError) for r in results)
        assert analyzer.calls == 1
        assert not cache.has("analysis_file-1")

    @pytest.mark.asyncio
    async def test_cancelled_request_does_not_fail_others(
        self, cache: CacheEngine, store: StubStore, valid_analysis: dict
    ):
        """Test a waiter recomputes when the request doing the work is cancelled."""
        gate = asyncio.Event()
        analyzer = StubAnalyzer(json.dumps(valid_analysis), gate=gate)
        pipeline = PipelineOrchestrator(cache, store, ConversionService(), analyzer)

        first = asyncio.create_task(pipeline.process("file-1"))
        await self._wait_for_analysis(analyzer)
        second = asyncio.create_task(pipeline.process("file-1"))
        await asyncio.sleep(0.01)

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        gate.set()

        envelope = await second
        assert envelope.analysis.title == "Report on Airborne Operations"
        assert analyzer.calls == 2


class TestAutoSave:
    """Tests for saving results as documents."""

    @pytest.mark.asyncio
    async def test_auto_save_attaches_document(
        self, pipeline: PipelineOrchestrator, documents: StubDocuments
    ):
        """Test auto_save stores the analysis and attaches the record."""
        envelope = await pipeline.process("file-1", PipelineOptions(auto_save=True))

        assert envelope.saved_document is not None
        assert envelope.saved_document.id == "doc-1"
        saved = documents.saved[0]
        assert saved.title == "Report on Airborne Operations"
        assert saved.file_name == "scan.png"
        assert saved.image_url.startswith("data:image/png;base64,")
        assert len(saved.entities) == 3

    @pytest.mark.asyncio
    async def test_cache_hit_does_not_save(
        self, pipeline: PipelineOrchestrator, documents: StubDocuments
    ):
        """Test a cached envelope is returned without saving again."""
        await pipeline.process("file-1")
        envelope = await pipeline.process("file-1", PipelineOptions(auto_save=True))

        assert envelope.saved_document is None
        assert documents.saved == []

    @pytest.mark.asyncio
    async def test_persistence_failure_carries_envelope(
        self, cache: CacheEngine, store: StubStore, analyzer: StubAnalyzer
    ):
        """Test a failed save raises PersistenceError with the computed analysis."""
        failing = StubDocuments(error=RuntimeError("database is locked"))
        pipeline = PipelineOrchestrator(cache, store, ConversionService(), analyzer, failing)

        with pytest.raises(PersistenceError) as exc_info:
            await pipeline.process("file-1", PipelineOptions(auto_save=True))

        envelope = exc_info.value.envelope
        assert envelope.analysis.title == "Report on Airborne Operations"
        assert envelope.saved_document is None
        assert not cache.has("analysis_file-1")

    @pytest.mark.asyncio
    async def test_auto_save_without_document_store(
        self, cache: CacheEngine, store: StubStore, analyzer: StubAnalyzer
    ):
        """Test auto_save without a document service is a persistence failure."""
        pipeline = PipelineOrchestrator(cache, store, ConversionService(), analyzer)

        with pytest.raises(PersistenceError):
            await pipeline.process("file-1", PipelineOptions(auto_save=True))


class TestInvalidate:
    """Tests for dropping cached analyses."""

    @pytest.mark.asyncio
    async def test_invalidate(self, pipeline: PipelineOrchestrator, analyzer: StubAnalyzer):
        """Test invalidation forces the next call to recompute."""
        await pipeline.process("file-1")

        assert pipeline.invalidate("file-1") is True
        assert pipeline.invalidate("file-1") is False

        await pipeline.process("file-1")
        assert analyzer.calls == 2

    @pytest.mark.asyncio
    async def test_file_id_spellings_share_one_entry(
        self, cache: CacheEngine, png_file: RetrievedFile, analyzer: StubAnalyzer
    ):
        """Test upper-case and braced forms of a UUID hit the same cache entry."""
        file_id = str(uuid.uuid4())
        store = StubStore({file_id: png_file.model_copy(update={"id": file_id})})
        pipeline = PipelineOrchestrator(cache, store, ConversionService(), analyzer)

        first = await pipeline.process(file_id.upper())
        second = await pipeline.process("{" + file_id + "}")

        assert first.file_id == file_id
        assert second == first
        assert analyzer.calls == 1
        assert cache.has(f"analysis_{file_id}")
        assert pipeline.invalidate(file_id.upper()) is True
        assert not cache.has(f"analysis_{file_id}")

"""Tests for Pydantic models."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from app.archive_analyzer.models import (
    AnalysisEnvelope,
    AnalysisResult,
    DocumentType,
    Entity,
    EntityType,
    ImagePayload,
    PipelineOptions,
)


class TestImagePayload:
    """Tests for ImagePayload model."""

    def test_data_url(self):
        """Test the data URL combines MIME type and base64 data."""
        payload = ImagePayload(mime_type="image/png", data="AAAA")
        assert payload.data_url == "data:image/png;base64,AAAA"

    def test_repr_hides_data(self):
        """Test image data is kept out of the repr."""
        payload = ImagePayload(mime_type="image/png", data="SECRETDATA")
        assert "SECRETDATA" not in repr(payload)


class TestEntity:
    """Tests for Entity model."""

    def test_valid_entity(self):
        """Test creating a valid entity."""
        entity = Entity(name="Winston Churchill", type="person")
        assert entity.type == EntityType.PERSON
        assert entity.date is None

    def test_empty_name_rejected(self):
        """Test that empty entity names are rejected."""
        with pytest.raises(ValidationError):
            Entity(name="", type=EntityType.PERSON)

    def test_unknown_type_rejected(self):
        """Test that entity types outside the enum are rejected."""
        with pytest.raises(ValidationError):
            Entity(name="HMS Hood", type="ship")


class TestAnalysisResult:
    """Tests for AnalysisResult model."""

    def test_valid_result(self):
        """Test creating a valid analysis result."""
        result = AnalysisResult(
            document_type=DocumentType.DIARY_ENTRY,
            title="Diary, 12 May 1940",
            content="Entry describing the evacuation.",
        )
        assert result.entities == []

    def test_unknown_document_type_rejected(self):
        """Test that document types outside the enum are rejected."""
        with pytest.raises(ValidationError):
            AnalysisResult(document_type="memo", title="t", content="c")

    def test_empty_title_rejected(self):
        """Test that an empty title is rejected."""
        with pytest.raises(ValidationError):
            AnalysisResult(document_type="letter", title="", content="c")


class TestPipelineModels:
    """Tests for pipeline options and envelopes."""

    def test_options_default_off(self):
        """Test both switches default to False."""
        options = PipelineOptions()
        assert options.force_refresh is False
        assert options.auto_save is False

    def test_envelope_json_round_trip(self):
        """Test an envelope survives JSON serialization."""
        envelope = AnalysisEnvelope(
            analysis=AnalysisResult(document_type="map", title="Map of Caen", content="A map."),
            image=ImagePayload(mime_type="image/png", data="AAAA"),
            file_id="f1",
            file_name="caen.png",
            processed_at=datetime(1944, 7, 9, tzinfo=timezone.utc),
        )

        restored = AnalysisEnvelope.model_validate_json(envelope.model_dump_json())

        assert restored == envelope
        assert restored.saved_document is None

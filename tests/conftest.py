"""Pytest configuration and fixtures."""

import io
import os
from typing import Generator

# Settings are read at import time; point them at an in-memory database
# and force mock analysis before anything from the app is imported.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["OPENAI_API_KEY"] = ""

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from app.archive_analyzer.database import Base, engine, init_db
from app.archive_analyzer.main import app
from app.archive_analyzer.models import RetrievedFile
from app.archive_analyzer.services import CacheEngine, DocumentService, EntityService, FileStore


@pytest.fixture(autouse=True)
def database() -> Generator[None, None, None]:
    """Create all tables for a test and drop them afterwards."""
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI application."""
    with TestClient(app) as test_client:
        yield test_client


class FakeClock:
    """Manually advanced time source for cache tests."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> CacheEngine:
    """Cache engine driven by the fake clock."""
    return CacheEngine(max_size=100, clock=clock)


@pytest.fixture
def file_store(cache: CacheEngine) -> FileStore:
    return FileStore(cache)


@pytest.fixture
def document_service(cache: CacheEngine) -> DocumentService:
    return DocumentService(cache)


@pytest.fixture
def entity_service(cache: CacheEngine) -> EntityService:
    return EntityService(cache)


@pytest.fixture
def sample_png_bytes() -> bytes:
    """A small PNG image."""
    buffer = io.BytesIO()
    Image.new("RGB", (64, 48), color="white").save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def sample_docx_bytes() -> bytes:
    """A DOCX package with two paragraphs and a table."""
    import docx

    document = docx.Document()
    document.add_paragraph("Headquarters, 82nd Airborne Division")
    document.add_paragraph("Report on operations near Sainte-Mere-Eglise, June 1944.")
    table = document.add_table(rows=1, cols=2)
    table.rows[0].cells[0].text = "Casualties"
    table.rows[0].cells[1].text = "12"

    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def sample_pdf_bytes() -> bytes:
    """
    Create a minimal valid PDF for testing.

    This is a minimal PDF structure that should be recognized as a valid PDF.
    """
    return b"""%PDF-1.4
1 0 obj
<< /Type /Catalog /Pages 2 0 R >>
endobj
2 0 obj
<< /Type /Pages /Kids [3 0 R] /Count 1 >>
endobj
3 0 obj
<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] /Contents 4 0 R >>
endobj
4 0 obj
<< /Length 44 >>
stream
BT
/F1 12 Tf
100 700 Td
(Test) Tj
ET
endstream
endobj
xref
0 5
0000000000 65535 f
0000000009 00000 n
0000000058 00000 n
0000000115 00000 n
0000000214 00000 n
trailer
<< /Size 5 /Root 1 0 R >>
startxref
306
%%EOF"""


@pytest.fixture
def png_file(sample_png_bytes: bytes) -> RetrievedFile:
    """A retrieved PNG file."""
    return RetrievedFile(
        id="file-1",
        name="scan.png",
        media_type="image/png",
        size_bytes=len(sample_png_bytes),
        data=sample_png_bytes,
    )


@pytest.fixture
def valid_analysis() -> dict:
    """A well-formed analysis answer."""
    return {
        "title": "  Report on Airborne Operations  ",
        "content": "Summary of the 82nd Airborne Division's operations in Normandy.",
        "document_type": "report",
        "entities": [
            {"name": "82nd Airborne Division", "type": "unit"},
            {"name": "Normandy", "type": "location"},
            {"name": "6 June 1944", "type": "date"},
        ],
    }

"""
FastAPI application for the archive analyzer.

Provides endpoints for:
- Storing source documents (PDF, Word, images)
- Running the cached analysis pipeline on a stored file
- Browsing, searching, updating and deleting saved analyses
- Browsing and managing the entities named in them
- Inspecting and clearing the cache
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .config import get_settings
from .database import init_db
from .models import HealthResponse
from .routers import analysis, cache, documents, entities, files
from .services import (
    AnalysisClient,
    CacheEngine,
    ConversionService,
    DocumentService,
    EntityService,
    FileStore,
    PipelineOrchestrator,
)
from .services.exceptions import (
    AnalysisError,
    ConversionError,
    NotFoundError,
    ParseError,
    PersistenceError,
    TooLargeError,
    ValidationError,
)

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info("Starting Archive Analyzer...")
    # Note: In production, use Alembic migrations instead of init_db()
    init_db()

    cache_engine = CacheEngine(
        max_size=settings.cache_max_size,
        default_ttl=settings.cache_ttl_seconds,
        sweep_interval=settings.cache_sweep_interval_seconds,
    )
    file_store = FileStore(cache_engine, max_file_size=settings.max_file_size_bytes)
    document_service = DocumentService(cache_engine)
    analyzer = AnalysisClient()

    app.state.cache = cache_engine
    app.state.file_store = file_store
    app.state.documents = document_service
    app.state.entities = EntityService(cache_engine)
    app.state.analyzer = analyzer
    app.state.pipeline = PipelineOrchestrator(
        cache=cache_engine,
        store=file_store,
        converter=ConversionService(dpi=settings.pdf_dpi),
        analyzer=analyzer,
        documents=document_service,
    )

    cache_engine.start()
    logger.info("Services initialized successfully")
    yield
    logger.info("Shutting down Archive Analyzer...")
    await cache_engine.stop()


# Create FastAPI application
app = FastAPI(
    title="Archive Analyzer API",
    description="Structured analysis of archival documents using a vision LLM",
    version=__version__,
    debug=settings.debug,
    lifespan=lifespan,
)

# Configure CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",  # Vite development server
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Health Endpoints
# =============================================================================


@app.get("/", response_model=HealthResponse)
async def root() -> HealthResponse:
    """Root endpoint - health check."""
    return HealthResponse(status="healthy", message="Archive Analyzer API is running", version=__version__)


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="healthy", message="Service is healthy", version=__version__)


# =============================================================================
# Include Routers
# =============================================================================

app.include_router(files.router)
app.include_router(analysis.router)
app.include_router(documents.router)
app.include_router(entities.router)
app.include_router(cache.router)


# =============================================================================
# Exception Handlers
# =============================================================================


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request, exc: NotFoundError):
    """Handle missing files, documents and entities."""
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc)},
    )


@app.exception_handler(TooLargeError)
async def too_large_error_handler(request, exc: TooLargeError):
    """Handle files above the size bound."""
    return JSONResponse(
        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        content={"detail": str(exc)},
    )


@app.exception_handler(ConversionError)
async def conversion_error_handler(request, exc: ConversionError):
    """Handle document conversion errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": str(exc)},
    )


@app.exception_handler(AnalysisError)
async def analysis_error_handler(request, exc: AnalysisError):
    """Handle an unreachable or failing inference endpoint."""
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc), "attempts": exc.attempts},
    )


@app.exception_handler(ParseError)
async def parse_error_handler(request, exc: ParseError):
    """Handle inference output without a JSON object."""
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": str(exc)},
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request, exc: ValidationError):
    """Handle inference output that violates the analysis schema."""
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": str(exc), "violations": exc.violations},
    )


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request, exc: PersistenceError):
    """Handle a failed auto-save, returning the analysis that was computed."""
    content = {"detail": str(exc)}
    if exc.envelope is not None:
        content["analysis"] = exc.envelope.model_dump(mode="json")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=content,
    )

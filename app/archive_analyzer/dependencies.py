"""
FastAPI dependencies returning the services built in the app lifespan.
"""

from fastapi import Request

from .services import (
    AnalysisClient,
    CacheEngine,
    DocumentService,
    EntityService,
    FileStore,
    PipelineOrchestrator,
)


def get_cache(request: Request) -> CacheEngine:
    return request.app.state.cache


def get_file_store(request: Request) -> FileStore:
    return request.app.state.file_store


def get_document_service(request: Request) -> DocumentService:
    return request.app.state.documents


def get_entity_service(request: Request) -> EntityService:
    return request.app.state.entities


def get_analysis_client(request: Request) -> AnalysisClient:
    return request.app.state.analyzer


def get_pipeline(request: Request) -> PipelineOrchestrator:
    return request.app.state.pipeline

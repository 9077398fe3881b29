"""
Router for running the analysis pipeline.
"""

import logging

from fastapi import APIRouter, Depends, Query, status

from ..dependencies import get_pipeline
from ..models import AnalysisEnvelope, PipelineOptions
from ..services import PipelineOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analysis", tags=["analysis"])


@router.post("/{file_id}", response_model=AnalysisEnvelope)
async def analyze_file(
    file_id: str,
    force_refresh: bool = Query(default=False, description="Ignore any cached analysis"),
    auto_save: bool = Query(default=False, description="Save the result as a document"),
    pipeline: PipelineOrchestrator = Depends(get_pipeline),
) -> AnalysisEnvelope:
    """
    Analyze a stored file.

    Pipeline errors are mapped to HTTP responses by the application's
    exception handlers.
    """
    options = PipelineOptions(force_refresh=force_refresh, auto_save=auto_save)
    return await pipeline.process(file_id, options)


@router.delete("/{file_id}/cache", status_code=status.HTTP_204_NO_CONTENT)
async def invalidate_analysis(
    file_id: str,
    pipeline: PipelineOrchestrator = Depends(get_pipeline),
) -> None:
    """Drop the cached analysis of a file, if any."""
    pipeline.invalidate(file_id)

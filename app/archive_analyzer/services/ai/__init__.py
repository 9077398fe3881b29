"""
AI service package for historical document analysis.

This package provides modular AI functionality split into:
- analysis: Prompting, the single inference call and the retry loop
- validation: Response extraction, schema validation and normalization

The AnalysisClient class owns the OpenAI client and delegates to these
modules.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ...config import get_settings
from ...models import AnalysisResult, ImagePayload
from ..exceptions import AnalysisError
from .analysis import (
    ANALYSIS_SYSTEM_PROMPT,
    DECODING_PARAMS,
    analyze_image,
    backoff_delay,
    build_messages,
)
from .validation import (
    extract_json_object,
    parse_analysis,
    parse_date,
    validate_analysis_response,
)

logger = logging.getLogger(__name__)

__all__ = [
    "ANALYSIS_SYSTEM_PROMPT",
    "DECODING_PARAMS",
    "AnalysisClient",
    "analyze_image",
    "backoff_delay",
    "build_messages",
    "extract_json_object",
    "parse_analysis",
    "parse_date",
    "validate_analysis_response",
]


class AnalysisClient:
    """
    Client for vision-based document analysis.

    Talks to any OpenAI-compatible chat completions endpoint that accepts
    image inputs (OpenAI, Groq, a local gateway). Without an API key it runs
    in mock mode and returns a fixed, valid answer.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        use_mock: bool = False,
        client: Any = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the analysis client.

        Args:
            api_key: API key. If None, reads from config/environment.
            model: Vision-capable model name. Defaults to the configured one.
            base_url: Endpoint base URL, None for the OpenAI default.
            timeout: Request-level timeout in seconds.
            max_attempts: Default retry budget for ``analyze``.
            use_mock: If True, return mock data instead of calling the API.
            client: Pre-built AsyncOpenAI-compatible client.
            sleep: Awaitable used for backoff waits.
        """
        settings = get_settings()
        if api_key is None and client is None:
            api_key = settings.openai_api_key

        self.api_key = api_key
        self.model = model or settings.inference_model
        self.base_url = base_url if base_url is not None else settings.inference_base_url
        self.timeout = timeout if timeout is not None else settings.inference_timeout_seconds
        self.max_attempts = max_attempts or settings.analysis_max_attempts
        self.use_mock = use_mock or (client is None and not self.api_key)
        self._client = client
        self._sleep = sleep

        if self.use_mock:
            logger.warning(
                "Analysis client running in MOCK MODE. Set OPENAI_API_KEY in .env for real analysis."
            )

    @property
    def client(self):
        """Lazy-load the AsyncOpenAI client."""
        if self._client is None:
            if not self.api_key:
                raise AnalysisError(
                    "Inference API key not provided. Set OPENAI_API_KEY environment variable."
                )
            try:
                from openai import AsyncOpenAI

                # Retries are owned by analyze(), not by the SDK
                self._client = AsyncOpenAI(
                    api_key=self.api_key,
                    base_url=self.base_url,
                    timeout=self.timeout,
                    max_retries=0,
                )
            except ImportError as e:
                raise AnalysisError(
                    "openai library not installed. Run: pip install openai"
                ) from e
        return self._client

    async def analyze(self, image: ImagePayload, max_attempts: int | None = None) -> str:
        """
        Submit an image for analysis and return the raw text answer.

        Args:
            image: Normalized document image.
            max_attempts: Retry budget, defaults to the configured one.

        Returns:
            Raw model output (expected to contain a JSON object).

        Raises:
            AnalysisError: After all attempts have failed.
        """
        if self.use_mock:
            logger.info("Analyzing image (MOCK MODE)")
            return self._get_mock_analysis()

        return await analyze_image(
            image,
            client=self.client,
            model=self.model,
            max_attempts=max_attempts or self.max_attempts,
            sleep=self._sleep,
        )

    def parse(self, raw_text: str) -> AnalysisResult:
        """
        Validate and normalize a raw answer.

        Delegates to the validation module.
        """
        return parse_analysis(raw_text)

    async def list_models(self) -> list[str]:
        """List model IDs available on the endpoint."""
        if self.use_mock:
            return [self.model]

        try:
            page = await self.client.models.list()
        except Exception as e:
            logger.error("Failed to fetch available models: %s", e)
            raise AnalysisError(f"Failed to fetch available models: {e}") from e
        return [model.id for model in page.data]

    async def check_connection(self) -> bool:
        """Return whether the inference endpoint is reachable."""
        try:
            await self.list_models()
        except AnalysisError:
            logger.error("Inference endpoint connection test failed")
            return False
        return True

    def _get_mock_analysis(self) -> str:
        """Return a fixed analysis answer for development."""
        return json.dumps(
            {
                "title": "Mock Analysis of Archival Document",
                "content": (
                    "DEVELOPMENT MODE: this analysis was not produced by a model. "
                    "Set OPENAI_API_KEY for real document analysis."
                ),
                "document_type": "report",
                "entities": [
                    {"name": "Allied Forces", "type": "organization"},
                    {"name": "London", "type": "location"},
                    {"name": "1944-06-06", "type": "date"},
                ],
            }
        )

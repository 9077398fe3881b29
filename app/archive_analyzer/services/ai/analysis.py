"""
Vision analysis of normalized document images.

Sends one image plus a fixed instruction prompt to an OpenAI-compatible
chat completions endpoint and returns the raw text answer. Failed attempts
are retried with exponential backoff.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ...models import DocumentType, EntityType, ImagePayload
from ..exceptions import AnalysisError

logger = logging.getLogger(__name__)


# =============================================================================
# Analysis Prompts
# =============================================================================

_DOCUMENT_TYPES = "|".join(t.value for t in DocumentType)
_ENTITY_TYPES = "|".join(t.value for t in EntityType)

ANALYSIS_SYSTEM_PROMPT = f"""You are a specialized document analyzer for historical documents, particularly from the World War II era.

CRITICAL INSTRUCTIONS:
1. You MUST respond with ONLY a valid JSON object
2. Do NOT include any markdown formatting (no ```json or ```)
3. Do NOT include any text before or after the JSON
4. The JSON must be perfectly formatted and parseable

REQUIRED JSON STRUCTURE:
{{
  "title": "string - descriptive title for the document",
  "content": "string - detailed summary of document content (5-6 sentences)",
  "document_type": "must be exactly one of: {_DOCUMENT_TYPES}",
  "entities": [
    {{
      "name": "string - entity name (e.g., Winston Churchill, London, RAF)",
      "type": "must be exactly one of: {_ENTITY_TYPES}"
    }}
  ]
}}

EXAMPLE OF CORRECT OUTPUT (military letter):
{{
  "title": "Military Correspondence from Colonel Smith to High Command",
  "content": "This letter details troop movements in the European theater during 1944. Colonel Smith reports on the status of the 82nd Airborne Division and their preparations for upcoming operations. The correspondence includes strategic information about enemy positions and supply line concerns. Weather conditions and their impact on planned missions are discussed. The letter concludes with requests for additional ammunition and medical supplies.",
  "document_type": "letter",
  "entities": [
    {{"name": "Colonel Smith", "type": "person"}},
    {{"name": "82nd Airborne Division", "type": "unit"}},
    {{"name": "European theater", "type": "location"}},
    {{"name": "1944", "type": "date"}}
  ]
}}

ENTITY EXTRACTION RULES:
- Extract ALL relevant historical figures, places, military units, organizations, events, and dates
- For dates: Use YYYY-MM-DD format when possible, or YYYY-MM, or YYYY if less specific
- For military units: Include division numbers, regiment names, etc.
- For locations: Include cities, countries, regions, battlefields, etc.
- For organizations: Include military branches, government agencies, etc.
- For events: Include battles, operations, meetings, etc.

DOCUMENT TYPE SELECTION:
- letter: Personal or official correspondence
- report: Military or intelligence reports, situation reports
- photo: Photographs, images, pictures
- newspaper: Newspaper articles, clippings, press releases
- list: Lists of names, supplies, casualties, etc.
- diary_entry: Personal diary entries, journal entries
- book: Book pages, manual excerpts, published materials
- map: Maps, diagrams, tactical drawings
- biography: Biographical information, personnel records

Choose the most specific and appropriate type for the document and for each entity."""

ANALYSIS_USER_PROMPT = (
    "Analyze this historical document image and provide the structured JSON response. "
    "Remember: respond with ONLY the JSON object, no additional formatting or text."
)

# Deterministic decoding keeps the answer shape stable for the parser
DECODING_PARAMS: dict[str, Any] = {
    "temperature": 0.0,
    "top_p": 0.1,
    "max_tokens": 2048,
    "frequency_penalty": 0.0,
    "presence_penalty": 0.0,
}


def build_messages(image: ImagePayload) -> list[dict[str, Any]]:
    """Build the chat messages for one analysis request."""
    return [
        {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": ANALYSIS_USER_PROMPT},
                {"type": "image_url", "image_url": {"url": image.data_url}},
            ],
        },
    ]


def backoff_delay(attempt: int) -> float:
    """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
    return float(2**attempt)


async def request_analysis(image: ImagePayload, client: Any, model: str) -> str:
    """
    Perform a single analysis request.

    Args:
        image: Normalized document image.
        client: AsyncOpenAI client instance.
        model: Vision-capable model name.

    Returns:
        The raw text answer.

    Raises:
        AnalysisError: If the endpoint returns no content.
    """
    response = await client.chat.completions.create(
        model=model,
        messages=build_messages(image),
        **DECODING_PARAMS,
    )

    content = response.choices[0].message.content if response.choices else None
    if not content:
        raise AnalysisError("No content received from inference API")

    logger.debug("Inference response: %s", content[:500])
    return content


async def analyze_image(
    image: ImagePayload,
    client: Any,
    model: str,
    max_attempts: int = 3,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> str:
    """
    Analyze an image, retrying failed attempts with exponential backoff.

    Every failure (timeouts, server errors, empty answers) counts as one
    attempt. After attempt ``n`` fails, the next one starts after
    ``2 ** n`` seconds.

    Args:
        image: Normalized document image.
        client: AsyncOpenAI client instance.
        model: Vision-capable model name.
        max_attempts: Total number of attempts.
        sleep: Awaitable used for the backoff wait.

    Returns:
        The raw text answer of the first successful attempt.

    Raises:
        AnalysisError: After ``max_attempts`` consecutive failures, carrying
            the last underlying error.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: Exception | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            logger.info("Sending analysis request (attempt %d/%d)", attempt, max_attempts)
            content = await request_analysis(image, client, model)
            logger.info("Successfully received analysis response")
            return content

        except Exception as e:
            last_error = e
            logger.warning(
                "Analysis request failed (attempt %d/%d): %s", attempt, max_attempts, e
            )
            if attempt < max_attempts:
                delay = backoff_delay(attempt)
                logger.info("Retrying in %.0fs...", delay)
                await sleep(delay)

    logger.error("All %d analysis attempts failed: %s", max_attempts, last_error)
    raise AnalysisError(
        f"Failed to analyze image with AI after {max_attempts} attempts: {last_error}",
        attempts=max_attempts,
        last_error=last_error,
    )

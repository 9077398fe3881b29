"""
Validation and normalization of raw analysis responses.

Handles:
- Locating the JSON object inside free-form model output
- Schema validation that reports every violation at once
- Normalization (whitespace trimming, ISO dates for date entities)
"""

import json
import logging
import re
from datetime import datetime
from typing import Any

from dateutil import parser as date_parser

from ...models import AnalysisResult, DocumentType, Entity, EntityType
from ..exceptions import ParseError, ValidationError

logger = logging.getLogger(__name__)

VALID_DOCUMENT_TYPES = [t.value for t in DocumentType]
VALID_ENTITY_TYPES = [t.value for t in EntityType]

# YYYY, YYYY-MM or YYYY-MM-DD are kept as written
_PARTIAL_ISO_FORMATS = {4: "%Y", 7: "%Y-%m", 10: "%Y-%m-%d"}
_PARTIAL_ISO_PATTERN = re.compile(r"^\d{4}(-\d{2}(-\d{2})?)?$")

# Fills in missing parts for written dates such as "June 1944"
_DEFAULT_DATE = datetime(2000, 1, 1)


def extract_json_object(text: str) -> str:
    """
    Return the first balanced ``{...}`` substring of ``text``.

    Braces inside JSON strings are ignored, so the model may wrap its answer
    in prose or markdown fences.

    Raises:
        ParseError: If no balanced object is found.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False

        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue

            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]

        start = text.find("{", start + 1)

    raise ParseError("No valid JSON object found in AI response")


def parse_json_object(text: str) -> dict[str, Any]:
    """
    Locate and decode the JSON object in a model answer.

    Raises:
        ParseError: If there is no object or it is not valid JSON.
    """
    candidate = extract_json_object(text)
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.error("Failed to parse analysis response: %s", candidate[:500])
        raise ParseError(f"Invalid JSON in AI response: {e}") from e

    if not isinstance(data, dict):
        raise ParseError("AI response JSON is not an object")
    return data


def _is_non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def validate_analysis_response(data: dict[str, Any]) -> list[str]:
    """
    Check a decoded response against the analysis schema.

    Does not stop at the first problem; every violation is reported.

    Returns:
        Violation messages (field path and rule). Empty when valid.
    """
    errors: list[str] = []

    if not _is_non_empty_string(data.get("title")):
        errors.append("title must be a non-empty string")

    if not _is_non_empty_string(data.get("content")):
        errors.append("content must be a non-empty string")

    document_type = data.get("document_type")
    if not _is_non_empty_string(document_type):
        errors.append("document_type must be a non-empty string")
    elif document_type not in VALID_DOCUMENT_TYPES:
        errors.append(f"document_type must be one of: {', '.join(VALID_DOCUMENT_TYPES)}")

    entities = data.get("entities")
    if not isinstance(entities, list):
        errors.append("entities must be an array")
        return errors

    for index, entity in enumerate(entities):
        if not isinstance(entity, dict):
            errors.append(f"entities[{index}] must be an object")
            continue

        if not _is_non_empty_string(entity.get("name")):
            errors.append(f"entities[{index}].name must be a non-empty string")

        entity_type = entity.get("type")
        if not _is_non_empty_string(entity_type):
            errors.append(f"entities[{index}].type must be a non-empty string")
        elif entity_type not in VALID_ENTITY_TYPES:
            errors.append(
                f"entities[{index}].type must be one of: {', '.join(VALID_ENTITY_TYPES)}"
            )

    return errors


def parse_date(value: Any) -> str | None:
    """
    Normalize a date entity name to ISO-8601.

    ``YYYY``, ``YYYY-MM`` and ``YYYY-MM-DD`` are kept at their precision;
    written dates ("6 June 1944", "June 6, 1944") become YYYY-MM-DD.

    Returns None if parsing fails.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)

    value = value.strip()
    if not value:
        return None

    if _PARTIAL_ISO_PATTERN.match(value):
        try:
            datetime.strptime(value, _PARTIAL_ISO_FORMATS[len(value)])
        except ValueError:
            return None
        return value

    try:
        dt = date_parser.parse(value, default=_DEFAULT_DATE)
    except (ValueError, OverflowError):
        return None
    return dt.strftime("%Y-%m-%d")


def parse_analysis(raw_text: str) -> AnalysisResult:
    """
    Turn a raw model answer into a validated AnalysisResult.

    Validation runs to completion before anything is constructed, so the
    caller gets either a complete result or the full list of violations.

    Raises:
        ParseError: If the answer holds no JSON object.
        ValidationError: If the object violates the schema.
    """
    logger.info("Parsing AI analysis response")
    data = parse_json_object(raw_text)

    violations = validate_analysis_response(data)
    if violations:
        logger.error("AI response failed validation: %s", "; ".join(violations))
        raise ValidationError(violations)

    entities: list[Entity] = []
    for raw_entity in data["entities"]:
        name = raw_entity["name"].strip()
        entity_type = EntityType(raw_entity["type"])
        date = None
        if entity_type is EntityType.DATE:
            date = parse_date(name)
            if date is None:
                logger.warning("Could not normalize date entity: %s", name)
        entities.append(Entity(name=name, type=entity_type, date=date))

    result = AnalysisResult(
        document_type=DocumentType(data["document_type"]),
        title=data["title"].strip(),
        content=data["content"].strip(),
        entities=entities,
    )
    logger.info(
        "Successfully parsed AI analysis response (%s, %d entities)",
        result.document_type.value,
        len(entities),
    )
    return result

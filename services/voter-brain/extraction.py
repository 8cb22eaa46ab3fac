"""Extraction orchestrator: two model passes over one voter document image.

Pass 1 extracts structured fields as JSON; fields are validated locally and
the model's confidence is decayed for every missing field and validation
error. Pass 2 explains the result to the user in their language and falls
back to a templated sentence if the model call fails.
"""

import json
import logging
import re
import time

from pydantic import BaseModel, ConfigDict, ValidationError

from config import settings
from llm_client import LLMClient
from models import (
    DocumentType,
    ExtractedField,
    FieldValidationError,
    Locale,
    VisionExtractionResult,
)
from prompts import (
    EXTRACTION_PROMPT,
    EXTRACTION_SYSTEM_PROMPT,
    build_explanation_prompt,
    explanation_system_prompt,
)
from validators import validate_fields

logger = logging.getLogger(__name__)

MISSING_FIELD_PENALTY = 0.05
VALIDATION_ERROR_PENALTY = 0.1

SUPPORTED_IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif"}

# Expected field names per document type (must match prompts.py)
EXPECTED_FIELDS: dict[DocumentType, tuple[str, ...]] = {
    DocumentType.EPIC_CARD: (
        "epic_number", "name", "name_local", "relative_name", "relative_relation",
        "dob_or_age", "gender", "address", "constituency", "part_number",
        "serial_number", "photo_present",
    ),
    DocumentType.FORM_6: (
        "name", "surname", "relative_name", "relative_relation", "dob",
        "gender", "address", "constituency", "state", "phone", "email",
        "declaration_signed", "date",
    ),
    DocumentType.FORM_6A: (
        "name", "passport_number", "address_abroad", "address_india",
        "constituency", "date",
    ),
    DocumentType.FORM_7: (
        "objective", "name_to_delete", "epic_number", "reason",
        "objector_name", "objector_epic", "date",
    ),
    DocumentType.FORM_8: (
        "type_of_correction", "current_entry", "corrected_entry",
        "epic_number", "name", "date",
    ),
    DocumentType.AADHAAR: (
        "aadhaar_number", "name", "dob", "gender", "address",
    ),
    DocumentType.UNKNOWN: (),
}

PARSE_FAILURE_EXPLANATIONS: dict[str, str] = {
    "en": "Sorry, the document could not be read clearly. Please provide a clearer image.",
    "ml": "ക്ഷമിക്കണം, ഡോക്യുമെന്റ് വ്യക്തമായി വായിക്കാൻ കഴിഞ്ഞില്ല. ദയവായി വ്യക്തമായ ഒരു ചിത്രം നൽകുക.",
}


class InvalidInputError(ValueError):
    """Upload rejected before any pipeline stage runs."""

    def __init__(self, message: str, too_large: bool = False):
        super().__init__(message)
        self.too_large = too_large


class InvalidImageError(InvalidInputError):
    pass


class _RawField(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    name: str
    value: str | None = None
    confidence: float | None = None


class _RawExtraction(BaseModel):
    document_type: str | None = None
    fields: list[_RawField] | None = None
    overall_confidence: float | None = None
    notes: str | None = None


def validate_image_input(size: int, content_type: str | None = None) -> None:
    """Reject empty, oversized or unsupported uploads."""
    if size == 0:
        raise InvalidImageError("Empty image data")
    if size > settings.MAX_IMAGE_BYTES:
        limit_mb = settings.MAX_IMAGE_BYTES / 1024 / 1024
        raise InvalidImageError(
            f"Image exceeds {limit_mb:.0f}MB limit ({size / 1024 / 1024:.1f}MB)",
            too_large=True,
        )
    if content_type and content_type not in SUPPORTED_IMAGE_TYPES:
        raise InvalidImageError(f"Unsupported image format: {content_type}")


def expected_fields(doc_type: DocumentType) -> tuple[str, ...]:
    return EXPECTED_FIELDS.get(doc_type, ())


def decayed_confidence(raw: float, missing_count: int, error_count: int) -> float:
    """Apply the missing-field and validation-error penalties to a model confidence."""
    base = min(1.0, max(0.0, raw or 0.0))
    missing_factor = max(0.0, 1 - missing_count * MISSING_FIELD_PENALTY)
    error_factor = max(0.0, 1 - error_count * VALIDATION_ERROR_PENALTY)
    return round(min(1.0, base * missing_factor * error_factor), 2)


def extract_document_fields(
    image_base64: str,
    mime_type: str,
    locale: Locale,
    client: LLMClient,
) -> VisionExtractionResult:
    """Run extraction pipeline: extract JSON -> validate -> explain."""
    start = time.monotonic()

    # Pass 1: structured extraction
    messages = [
        {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": EXTRACTION_PROMPT},
                {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{image_base64}"}},
            ],
        },
    ]
    completion = client.generate(messages, max_tokens=800, temperature=0.1, top_p=0.95)

    parsed = parse_extraction(completion.text)
    if parsed is None:
        elapsed_ms = int((time.monotonic() - start) * 1000)
        return VisionExtractionResult(
            document_type=DocumentType.UNKNOWN,
            fields=[],
            confidence=0.0,
            missing_fields=[],
            validation_errors=[FieldValidationError(field="parse", error="Failed to parse extraction result")],
            explanation=PARSE_FAILURE_EXPLANATIONS.get(locale, PARSE_FAILURE_EXPLANATIONS["en"]),
            latency_ms=elapsed_ms,
            model=completion.model,
        )

    doc_type = _resolve_document_type(parsed.document_type)
    fields = [
        ExtractedField(
            name=f.name,
            value=f.value or "",
            confidence=min(1.0, max(0.0, f.confidence or 0.0)),
        )
        for f in parsed.fields or []
    ]

    # The model's own missing-field list is not trusted
    found = {f.name for f in fields}
    missing_fields = [name for name in expected_fields(doc_type) if name not in found]
    validation_errors = validate_fields(fields)
    confidence = decayed_confidence(
        parsed.overall_confidence or 0.0, len(missing_fields), len(validation_errors)
    )

    # Pass 2: user-facing explanation
    explanation = _explain(client, doc_type, fields, missing_fields, validation_errors, locale)

    elapsed_ms = int((time.monotonic() - start) * 1000)

    # Audit (counts only, no PII)
    logger.info(
        "vision_extraction document_type=%s fields=%d missing=%d validation_errors=%d "
        "confidence=%.2f locale=%s latency_ms=%d model=%s",
        doc_type.value, len(fields), len(missing_fields), len(validation_errors),
        confidence, locale, elapsed_ms, completion.model,
    )

    return VisionExtractionResult(
        document_type=doc_type,
        fields=fields,
        confidence=confidence,
        missing_fields=missing_fields,
        validation_errors=validation_errors,
        explanation=explanation,
        latency_ms=elapsed_ms,
        model=completion.model,
    )


def parse_extraction(raw: str) -> _RawExtraction | None:
    """Parse the Pass 1 reply; None if it is not JSON of the expected shape."""
    data = try_parse_json(raw)
    if data is None:
        return None
    try:
        return _RawExtraction.model_validate(data)
    except ValidationError as e:
        logger.warning("Extraction JSON has unexpected shape: %d errors", e.error_count())
        return None


def try_parse_json(raw: str) -> dict | None:
    """Extract a JSON object from possibly-wrapped model output.

    Handles: direct JSON, markdown fences, and <think>...</think> blocks
    emitted by thinking models.
    """
    if not raw:
        return None

    cleaned = re.sub(r"<think>.*?</think>", "", raw, flags=re.DOTALL).strip()

    match = re.search(r"```(?:json)?\s*(.*?)```", cleaned, re.DOTALL)
    if match:
        cleaned = match.group(1).strip()

    try:
        result = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.warning("Could not parse JSON from model response (%d chars)", len(cleaned))
        return None

    if not isinstance(result, dict):
        return None
    return result


def _resolve_document_type(value: str | None) -> DocumentType:
    try:
        return DocumentType(value)
    except ValueError:
        return DocumentType.UNKNOWN


def _explain(
    client: LLMClient,
    doc_type: DocumentType,
    fields: list[ExtractedField],
    missing_fields: list[str],
    validation_errors: list[FieldValidationError],
    locale: Locale,
) -> str:
    prompt = build_explanation_prompt(doc_type, fields, missing_fields, validation_errors, locale)
    try:
        result = client.generate(
            [
                {"role": "system", "content": explanation_system_prompt(locale)},
                {"role": "user", "content": prompt},
            ],
            max_tokens=300,
            temperature=0.4,
        )
    except Exception as e:
        logger.warning("Explanation pass failed, using template: %s", e)
        return template_explanation(doc_type, len(fields), locale)

    if not result.text.strip():
        return template_explanation(doc_type, len(fields), locale)
    return result.text.strip()


def template_explanation(doc_type: DocumentType, field_count: int, locale: Locale) -> str:
    label = doc_type.value.replace("_", " ", 1)
    if locale == "ml":
        prefix = "ഒരു" if doc_type is DocumentType.UNKNOWN else label
        return f"{prefix} ഡോക്യുമെന്റ് കണ്ടെത്തി. {field_count} ഫീൽഡുകൾ എക്സ്ട്രാക്ട് ചെയ്തു."
    if doc_type is DocumentType.UNKNOWN:
        return f"Detected a document. Extracted {field_count} fields."
    return f"Detected a {label} document. Extracted {field_count} fields."

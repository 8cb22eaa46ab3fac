"""Response synthesis, escalation and cache-eligibility decisions.

Collapses up to three candidate answers (a retrieval/generation result, a
vision explanation and a static apology) into one ChatResponse, applies the
safety override and decides whether the answer goes to a human reviewer
and whether it may be cached.
"""

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

import safety
from config import settings
from models import (
    ChatResponse,
    GenerationResult,
    Locale,
    Modality,
    SafetyResult,
    TraceEntry,
    VisionExtractionResult,
)

logger = logging.getLogger(__name__)

SUPPLEMENT_SEPARATOR = "\n\n---\n\n"

FALLBACK_TEXT: dict[str, str] = {
    "en": "Sorry, I could not process this request.",
    "ml": "ക്ഷമിക്കണം, എനിക്ക് ഈ അഭ്യർത്ഥന പ്രോസസ്സ് ചെയ്യാൻ കഴിഞ്ഞില്ല.",
}

_VISION_MODALITIES = {Modality.IMAGE, Modality.IMAGE_WITH_TEXT}


def decide_escalation(
    explicit: bool | None,
    confidence: float,
    safety_flagged: bool,
    threshold: float | None = None,
) -> bool:
    """An explicit flag wins over the confidence threshold; a safety flag always escalates."""
    threshold = threshold if threshold is not None else settings.ESCALATION_THRESHOLD
    if explicit is not None:
        return explicit or safety_flagged
    return confidence < threshold or safety_flagged


def should_cache(response: ChatResponse, min_confidence: float | None = None) -> bool:
    min_confidence = min_confidence if min_confidence is not None else settings.CACHE_MIN_CONFIDENCE
    return not response.escalate and response.confidence >= min_confidence


def compose(
    generation: GenerationResult | None,
    vision: VisionExtractionResult | None,
    modality: Modality,
    locale: Locale,
) -> tuple[str, float, list[TraceEntry]]:
    """Pick the primary answer text, its confidence and the retrieval trace to carry."""
    if vision is not None and modality in _VISION_MODALITIES:
        text = vision.explanation
        trace: list[TraceEntry] = []
        if generation is not None and generation.confidence > settings.SUPPLEMENT_MIN_CONFIDENCE:
            text = text + SUPPLEMENT_SEPARATOR + generation.text
            trace = list(generation.retrieval_trace)
        return text, vision.confidence, trace

    if generation is not None:
        return generation.text, generation.confidence, list(generation.retrieval_trace)

    return FALLBACK_TEXT.get(locale, FALLBACK_TEXT["en"]), settings.FALLBACK_CONFIDENCE, []


def synthesize_response(
    generation: GenerationResult | None,
    vision: VisionExtractionResult | None,
    *,
    modality: Modality,
    locale: Locale,
    query: str = "",
    router_type: str = "rag",
    safety_check: Callable[[str, str], SafetyResult] = safety.check,
) -> ChatResponse:
    """Merge candidate answers into the single response sent to the user."""
    text, confidence, trace = compose(generation, vision, modality, locale)

    verdict = safety_check(text, query)
    explicit = generation.escalate if generation is not None else None
    escalate = decide_escalation(explicit, confidence, verdict.flagged)

    if escalate:
        logger.info(
            "escalation reason=%s confidence=%.2f modality=%s",
            "safety_flag" if verdict.flagged else "low_confidence",
            confidence,
            modality.value,
        )

    extracted = None
    if vision is not None and vision.fields:
        extracted = {f.name: f.value for f in vision.fields}

    return ChatResponse(
        text=verdict.safe_text if verdict.flagged else text,
        confidence=confidence,
        sources=list(generation.sources) if generation is not None else [],
        retrieval_trace=trace,
        escalate=escalate,
        modality=modality,
        router_type=router_type,
        locale=locale,
        message_id=str(uuid.uuid4()),
        timestamp=datetime.now(timezone.utc).isoformat(),
        extracted_fields=extracted,
    )

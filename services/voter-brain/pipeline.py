"""Chat orchestration: one request in, one synthesized ChatResponse out.

Input handling order:
1. Validate the request and decode any attachments
2. Detect modality (audio wins; image + real question is multimodal)
3. Serve text-only queries from the answer cache when possible
4. Run the modality path: transcription, vision extraction, booth lookup, RAG
5. Synthesize, apply safety and escalation, then cache and audit
"""

import base64
import binascii
import logging
import re
import time
import uuid
from datetime import datetime, timezone

import booths
from cache import TTLCache, fingerprint
from extraction import InvalidInputError, extract_document_fields, validate_image_input
from llm_client import LLMClient
from memory import build_memory_context, store_memory
from models import ChatRequest, ChatResponse, GenerationResult, Locale, Modality, VisionExtractionResult
from preprocessing import prepare_document_image
from privacy import hash_identifier, redact_pii
from rag_client import RAGClient, RAGServiceError, RAGServiceUnavailable
from store import Store, StoreError
from synthesis import should_cache, synthesize_response
from voice import process_voice, validate_audio_input

logger = logging.getLogger(__name__)

# Placeholder labels the chat UI sends when a file is uploaded without a question
AUTO_UPLOAD_MESSAGES = {
    "extract information from this document",
    "analyze this file",
    "ഈ ഡോക്യുമെന്റിൽ നിന്ന് വിവരങ്ങൾ എക്‌സ്ട്രാക്ട് ചെയ്യുക",
    "ഈ ഫയൽ വിശകലനം ചെയ്യുക",
}

_DATA_URL_RE = re.compile(r"^data:([\w/+.-]+);base64,")
_MALAYALAM_RE = re.compile(r"[\u0D00-\u0D7F]")

QUERY_LOG_STREAM = "query_log"
AUDIT_LOG_STREAM = "audit_log"


def is_auto_upload_message(text: str | None) -> bool:
    if not text or not text.strip():
        return True
    return text.strip().lower() in AUTO_UPLOAD_MESSAGES


def detect_modality(request: ChatRequest) -> Modality:
    if request.audio_base64:
        return Modality.AUDIO
    if request.image_base64:
        if is_auto_upload_message(request.message):
            return Modality.IMAGE
        return Modality.IMAGE_WITH_TEXT
    return Modality.TEXT


def decode_attachment(data: str, default_mime: str) -> tuple[bytes, str]:
    """Decode base64, optionally wrapped in a data URL. Returns (bytes, mime type)."""
    mime = default_mime
    match = _DATA_URL_RE.match(data)
    if match:
        mime = match.group(1)
        data = data[match.end():]
    try:
        return base64.b64decode(data, validate=True), mime
    except (binascii.Error, ValueError) as e:
        raise InvalidInputError(f"Attachment is not valid base64: {e}") from e


class ChatPipeline:
    def __init__(
        self,
        llm_client: LLMClient,
        rag_client: RAGClient | None,
        cache: TTLCache[ChatResponse],
        store: Store,
    ):
        self._llm = llm_client
        self._rag = rag_client
        self._cache = cache
        self._store = store

    def handle(self, request: ChatRequest) -> ChatResponse:
        """Answer one chat request.

        Raises InvalidInputError for bad input before any model call. A failing
        primary model or RAG call propagates; the caller maps it to a 502.
        """
        message = request.message.strip()
        if not message and not request.image_base64 and not request.audio_base64:
            raise InvalidInputError("At least one input (message, image, or audio) is required")

        start = time.monotonic()
        modality = detect_modality(request)
        locale: Locale = "ml" if message and _MALAYALAM_RE.search(message) else request.locale

        if modality == Modality.TEXT:
            cached = self._cache.get(fingerprint(locale, message))
            if cached is not None:
                response = cached.model_copy(
                    update={
                        "message_id": str(uuid.uuid4()),
                        "timestamp": datetime.now(timezone.utc).isoformat(),
                    }
                )
                logger.info("cache_hit locale=%s", locale)
                self._audit(request, response, message, start, cached=True)
                return response

        generation: GenerationResult | None = None
        vision: VisionExtractionResult | None = None
        query = message

        if modality == Modality.AUDIO:
            audio_bytes, _ = decode_attachment(request.audio_base64, "audio/webm")
            validate_audio_input(len(audio_bytes))
            voice = process_voice(self._llm, audio_bytes, "upload.webm")
            query, locale = voice.transcript, voice.locale
            generation, router_type = self._answer_text(query, locale, request, "voice_then_rag")

        elif modality in (Modality.IMAGE, Modality.IMAGE_WITH_TEXT):
            vision = self._extract(request.image_base64, locale)
            self._remember_document(request.user_id, vision, locale)
            router_type = "vision"
            if modality == Modality.IMAGE_WITH_TEXT:
                router_type = "multimodal"
                generation = self._supplement(query, locale, request.user_id)

        else:
            generation, router_type = self._answer_text(query, locale, request, "rag")

        response = synthesize_response(
            generation,
            vision,
            modality=modality,
            locale=locale,
            query=query,
            router_type=router_type,
        )

        if modality == Modality.TEXT and should_cache(response):
            self._cache.set(fingerprint(locale, message), response)

        self._audit(request, response, query, start)
        return response

    def _answer_text(
        self, query: str, locale: Locale, request: ChatRequest, rag_router_type: str
    ) -> tuple[GenerationResult | None, str]:
        if booths.is_booth_query(query):
            answer = booths.booth_answer(query, locale)
            if answer is None and request.latitude is not None and request.longitude is not None:
                answer = booths.nearest_booth_answer(request.latitude, request.longitude, locale)
            if answer is not None:
                return answer, "structured_lookup"

        if self._rag is None:
            logger.warning("RAG service not configured, answering with fallback")
            return None, "fallback"

        memory_context = self._memory_context(request.user_id)
        return self._rag.answer(query, locale, memory_context), rag_router_type

    def _extract(self, image_base64: str, locale: Locale) -> VisionExtractionResult:
        image_bytes, mime = decode_attachment(image_base64, "image/jpeg")
        validate_image_input(len(image_bytes), mime)
        prepared, prepared_mime = prepare_document_image(image_bytes, mime)
        encoded = base64.b64encode(prepared).decode("ascii")
        return extract_document_fields(encoded, prepared_mime, locale, self._llm)

    def _supplement(self, query: str, locale: Locale, user_id: str | None) -> GenerationResult | None:
        """RAG context for a question asked alongside an image. Never fatal."""
        if self._rag is None:
            return None
        try:
            return self._rag.answer(query, locale, self._memory_context(user_id))
        except (RAGServiceUnavailable, RAGServiceError) as e:
            logger.warning("Supplementary RAG failed, answering from vision only: %s", e)
            return None

    def _remember_document(self, user_id: str | None, vision: VisionExtractionResult, locale: Locale) -> None:
        """Keep extracted fields for users who opted in to saved_docs memory."""
        if not user_id or not vision.fields:
            return
        summary = "; ".join(f"{f.name}={f.value}" for f in vision.fields)
        try:
            store_memory(self._store, user_id, "saved_docs", vision.document_type.value, summary, locale)
        except StoreError as e:
            logger.warning("Saving extracted document to memory failed: %s", e)

    def _memory_context(self, user_id: str | None) -> str:
        try:
            return build_memory_context(self._store, user_id)
        except StoreError as e:
            logger.warning("Memory lookup failed, continuing without it: %s", e)
            return ""

    def _audit(
        self,
        request: ChatRequest,
        response: ChatResponse,
        query: str,
        start: float,
        cached: bool = False,
    ) -> None:
        session_hash = hash_identifier(request.session_id or "anonymous")
        record = {
            "id": response.message_id,
            "session_hash": session_hash,
            "query": redact_pii(f"[{response.modality.value}] {query}".strip())[:500],
            "locale": response.locale,
            "confidence": response.confidence,
            "escalated": response.escalate,
            "router_type": response.router_type,
            "modality": response.modality.value,
            "cached": cached,
            "latency_ms": int((time.monotonic() - start) * 1000),
            "timestamp": response.timestamp,
        }
        try:
            self._store.append(QUERY_LOG_STREAM, record)
            if response.escalate:
                self._store.append(
                    AUDIT_LOG_STREAM,
                    {
                        "id": str(uuid.uuid4()),
                        "action": "escalation",
                        "actor_hash": session_hash,
                        "target_id": response.message_id,
                        "modality": response.modality.value,
                        "confidence": response.confidence,
                        "timestamp": response.timestamp,
                    },
                )
        except StoreError as e:
            logger.error("Audit write failed for message %s: %s", response.message_id, e)

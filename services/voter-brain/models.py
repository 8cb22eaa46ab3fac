"""Pydantic models shared by the extraction, booth and chat pipelines."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Locale = Literal["en", "ml"]


class DocumentType(str, Enum):
    EPIC_CARD = "epic_card"
    FORM_6 = "form_6"
    FORM_6A = "form_6a"
    FORM_7 = "form_7"
    FORM_8 = "form_8"
    AADHAAR = "aadhaar"
    UNKNOWN = "unknown"


class Modality(str, Enum):
    TEXT = "text"
    AUDIO = "audio"
    IMAGE = "image"
    IMAGE_WITH_TEXT = "image_with_text"


# ── Vision extraction ────────────────────────────────────────────


class ExtractedField(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    value: str
    confidence: float


class FieldValidationError(BaseModel):
    field: str
    error: str


class VisionExtractionResult(BaseModel):
    document_type: DocumentType
    fields: list[ExtractedField]
    confidence: float
    missing_fields: list[str] = []
    validation_errors: list[FieldValidationError] = []
    explanation: str
    latency_ms: int
    model: str


# ── Booths ───────────────────────────────────────────────────────


class BoothRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    station_number: int
    title: str
    content: str
    content_localized: str = ""
    landmark: str = ""
    area_localized: str = ""
    lat: float = 0.0
    lng: float = 0.0
    tags: tuple[str, ...] = ()
    source: str = ""
    source_url: str = ""


class ScoredBooth(BaseModel):
    booth: BoothRecord
    score: float


# ── Model service payloads ───────────────────────────────────────


class CompletionResult(BaseModel):
    text: str
    model: str


class TranscriptionResult(BaseModel):
    text: str
    language: str = "unknown"
    duration: float = 0.0
    model: str


# ── Answers ──────────────────────────────────────────────────────


class Source(BaseModel):
    title: str
    url: str
    last_updated: str = ""
    excerpt: str = ""


class TraceEntry(BaseModel):
    doc_id: str
    chunk_id: str
    similarity_score: float = 0.0
    reranker_score: float = 0.0


class GenerationResult(BaseModel):
    """A scored answer from retrieval/generation or a structured lookup."""

    text: str
    confidence: float
    sources: list[Source] = []
    retrieval_trace: list[TraceEntry] = []
    escalate: bool | None = None
    model: str = ""


class SafetyResult(BaseModel):
    flagged: bool
    safe_text: str
    reason: str | None = None


class ChatResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    confidence: float
    sources: list[Source] = []
    retrieval_trace: list[TraceEntry] = []
    escalate: bool
    modality: Modality
    router_type: str
    locale: Locale
    message_id: str
    timestamp: str
    extracted_fields: dict[str, str] | None = None


class ChatRequest(BaseModel):
    message: str = ""
    locale: Locale = "en"
    session_id: str | None = None
    user_id: str | None = None
    image_base64: str | None = None
    audio_base64: str | None = None
    latitude: float | None = None
    longitude: float | None = None


class VoiceResult(BaseModel):
    transcript: str
    locale: Locale
    duration: float
    model: str


class BoothSearchResponse(BaseModel):
    booths: list[BoothRecord]
    confidence: float
    source: Source


# ── Memory / consent ─────────────────────────────────────────────

MemoryType = Literal["profile", "preferences", "saved_docs"]


class ConsentRecord(BaseModel):
    memory_enabled: bool
    allowed_types: list[MemoryType] = []
    updated_at: str


class ConsentRequest(BaseModel):
    user_id: str
    enabled: bool
    allowed_types: list[MemoryType] = Field(default_factory=list)


class MemoryEntry(BaseModel):
    id: str
    user_id: str
    type: MemoryType
    key: str
    value: str
    locale: Locale = "en"
    created_at: str
    expires_at: str

"""Voice input: transcription, filler-word cleanup and locale detection."""

import logging
import re
import time

from config import settings
from extraction import InvalidInputError
from llm_client import LLMClient
from models import Locale, VoiceResult

logger = logging.getLogger(__name__)

SUPPORTED_AUDIO_TYPES = {
    "audio/webm",
    "audio/wav",
    "audio/mpeg",
    "audio/mp3",
    "audio/mp4",
    "audio/ogg",
    "audio/flac",
    "audio/x-m4a",
}

# Repeated discourse markers are dropped, keeping only the last occurrence
_FILLER_PATTERNS_EN = [
    re.compile(r"\b(um+|uh+|hmm+|ah+|er+|like,?\s*you know)\b", re.IGNORECASE),
    re.compile(
        r"\b(basically|actually|literally)\b(?=.*\b(basically|actually|literally)\b)",
        re.IGNORECASE,
    ),
]

# Malayalam vowel signs are not word characters, so \b is unreliable here
_FILLER_PATTERNS_ML = [
    re.compile(r"(?<!\S)(അത്|പിന്നെ|അതായത്)(?!\S)(?=.*(?<!\S)(അത്|പിന്നെ|അതായത്)(?!\S))"),
]

_MALAYALAM_CHAR_RE = re.compile(r"[\u0D00-\u0D7F]")
_WHITESPACE_RE = re.compile(r"\s+")
_MULTISPACE_RE = re.compile(r"\s{2,}")

MALAYALAM_RATIO_THRESHOLD = 0.3


class InvalidAudioError(InvalidInputError):
    pass


def validate_audio_input(size: int, content_type: str | None = None) -> None:
    if size == 0:
        raise InvalidAudioError("Empty audio data")
    if size > settings.MAX_AUDIO_BYTES:
        limit_mb = settings.MAX_AUDIO_BYTES / 1024 / 1024
        raise InvalidAudioError(
            f"Audio exceeds {limit_mb:.0f}MB limit ({size / 1024 / 1024:.1f}MB)",
            too_large=True,
        )
    if content_type and content_type not in SUPPORTED_AUDIO_TYPES:
        raise InvalidAudioError(f"Unsupported audio format: {content_type}")


def detect_locale(text: str, asr_language: str | None = None) -> Locale:
    """Trust the recognizer's language tag, else count Malayalam characters."""
    if asr_language in ("ml", "malayalam"):
        return "ml"
    if asr_language in ("en", "english"):
        return "en"

    ml_chars = len(_MALAYALAM_CHAR_RE.findall(text))
    total = len(_WHITESPACE_RE.sub("", text)) or 1
    return "ml" if ml_chars / total > MALAYALAM_RATIO_THRESHOLD else "en"


def remove_fillers(text: str, language: str = "en") -> str:
    patterns = list(_FILLER_PATTERNS_EN)
    if language.startswith("ml") or language == "malayalam":
        patterns += _FILLER_PATTERNS_ML

    for pattern in patterns:
        text = pattern.sub("", text)
    return _MULTISPACE_RE.sub(" ", text).strip()


def process_voice(client: LLMClient, audio_bytes: bytes, filename: str = "audio.webm") -> VoiceResult:
    """Transcribe, detect locale and normalize a voice query.

    Transcription errors propagate; the caller decides how to surface them.
    """
    start = time.monotonic()
    transcription = client.transcribe(audio_bytes, filename)

    locale = detect_locale(transcription.text, transcription.language)
    cleaned = remove_fillers(transcription.text, transcription.language)

    logger.info(
        "voice_transcription locale=%s asr_language=%s duration=%.1fs chars=%d fillers_removed=%s latency_ms=%d",
        locale,
        transcription.language,
        transcription.duration,
        len(cleaned),
        cleaned != transcription.text,
        int((time.monotonic() - start) * 1000),
    )

    return VoiceResult(
        transcript=cleaned,
        locale=locale,
        duration=transcription.duration,
        model=transcription.model,
    )

"""HTTP client for the hosted model service (chat completions + transcription).

Uses httpx with bounded timeouts, tenacity for retry with exponential
backoff on transient failures (429/502/503, connection errors, read
timeouts), and a small circuit breaker so a failing model is not hammered.
"""

import logging
import threading
import time

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config import settings
from models import CompletionResult, TranscriptionResult

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = {429, 502, 503}


class LLMServiceUnavailable(Exception):
    """Model service is temporarily unavailable (retryable: 429/502/503, connection error)."""


class LLMServiceError(Exception):
    """Model service returned a non-retryable error (400, 401, 500)."""


class CircuitOpenError(LLMServiceUnavailable):
    """Too many consecutive failures; calls are refused until the reset window passes."""


class CircuitBreaker:
    """Consecutive-failure breaker that half-opens after a reset window."""

    def __init__(self, threshold: int, reset_seconds: float, clock=time.monotonic):
        self._threshold = threshold
        self._reset_seconds = reset_seconds
        self._clock = clock
        self._failures = 0
        self._last_failure = 0.0
        self._open = False
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        with self._lock:
            if self._open and self._clock() - self._last_failure > self._reset_seconds:
                self._open = False
                self._failures = 0
            return self._open

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._open = False

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._last_failure = self._clock()
            if self._failures >= self._threshold:
                self._open = True


def raise_for_service_status(resp: httpx.Response, service: str, unavailable, error) -> None:
    """Map a non-200 response onto the caller's retryable/non-retryable exceptions."""
    if resp.status_code == 200:
        return

    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        detail = body.get("detail") or body.get("error") or f"HTTP {resp.status_code}"
    else:
        detail = resp.text[:200] or f"HTTP {resp.status_code}"
    if isinstance(detail, dict):
        detail = detail.get("message", str(detail))

    if resp.status_code in TRANSIENT_STATUS_CODES:
        logger.warning("%s returned %d: %s", service, resp.status_code, detail)
        raise unavailable(f"{service} {resp.status_code}: {detail}")

    logger.error("%s error %d: %s", service, resp.status_code, detail)
    raise error(f"{service} {resp.status_code}: {detail}")


def json_body(resp: httpx.Response, service: str, error) -> dict:
    """Decode a 200 reply, raising the caller's non-retryable error for a malformed body."""
    try:
        body = resp.json()
    except ValueError as e:
        logger.error("%s returned a non-JSON body: %s", service, resp.text[:200])
        raise error(f"{service} returned a non-JSON body") from e
    if not isinstance(body, dict):
        logger.error("%s returned %s instead of an object", service, type(body).__name__)
        raise error(f"{service} returned an unexpected body")
    return body


class LLMClient:
    """HTTP client for the model service with retry, backoff and circuit breaking."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        asr_model: str | None = None,
        transcribe_url: str | None = None,
        timeout: float | None = None,
        connect_timeout: float | None = None,
        retry_attempts: int | None = None,
        retry_delay: float | None = None,
        retry_backoff: float | None = None,
        circuit_threshold: int | None = None,
        circuit_reset_seconds: float | None = None,
    ):
        self._base_url = (base_url or settings.LLM_BASE_URL).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.LLM_API_KEY
        self.model = model or settings.GENERATOR_MODEL
        self.asr_model = asr_model or settings.ASR_MODEL
        self._transcribe_url = transcribe_url or settings.AUDIO_TRANSCRIBE_URL
        self._retry_attempts = retry_attempts if retry_attempts is not None else settings.LLM_RETRY_ATTEMPTS
        self._retry_delay = retry_delay if retry_delay is not None else settings.LLM_RETRY_DELAY
        self._retry_backoff = retry_backoff if retry_backoff is not None else settings.LLM_RETRY_BACKOFF

        read_timeout = timeout if timeout is not None else settings.LLM_TIMEOUT_SECONDS
        conn_timeout = connect_timeout if connect_timeout is not None else settings.LLM_CONNECT_TIMEOUT

        self._circuit = CircuitBreaker(
            threshold=circuit_threshold if circuit_threshold is not None else settings.CIRCUIT_FAILURE_THRESHOLD,
            reset_seconds=(
                circuit_reset_seconds if circuit_reset_seconds is not None else settings.CIRCUIT_RESET_SECONDS
            ),
        )

        self._client = httpx.Client(
            base_url=self._base_url,
            timeout=httpx.Timeout(
                connect=float(conn_timeout),
                read=float(read_timeout),
                write=30.0,
                pool=30.0,
            ),
        )

    def close(self):
        self._client.close()

    def _headers(self) -> dict[str, str]:
        if not self._api_key:
            raise LLMServiceError("LLM_API_KEY not configured")
        return {"Authorization": f"Bearer {self._api_key}"}

    def generate(
        self,
        messages: list[dict],
        max_tokens: int = 1800,
        temperature: float = 0.3,
        top_p: float = 0.9,
    ) -> CompletionResult:
        """Run a non-streaming chat completion.

        Raises LLMServiceUnavailable (retryable, after retries are exhausted)
        or LLMServiceError (non-retryable).
        """
        payload = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "top_p": top_p,
            "stream": False,
        }
        data = self._call_with_retry("chat completion", lambda: self._send_completion(payload))

        try:
            choices = data.get("choices") or [{}]
            text = (choices[0].get("message") or {}).get("content") or ""
        except (AttributeError, IndexError, KeyError, TypeError) as e:
            logger.error("Model service returned an unexpected completion shape: %s", e)
            raise LLMServiceError("Model service returned an unexpected completion shape") from e
        return CompletionResult(text=str(text), model=self.model)

    def transcribe(self, audio_bytes: bytes, filename: str = "audio.webm") -> TranscriptionResult:
        """Transcribe audio with the configured speech-to-text model."""
        data = self._call_with_retry(
            "transcription", lambda: self._send_transcription(audio_bytes, filename)
        )
        return TranscriptionResult(
            text=data.get("text") or "",
            language=data.get("language") or "unknown",
            duration=data.get("duration") or 0.0,
            model=self.asr_model,
        )

    def _call_with_retry(self, label: str, send) -> dict:
        """Circuit check plus tenacity retry around a single send callable."""
        if self._circuit.is_open:
            raise CircuitOpenError(f"Circuit breaker open for model service ({label})")

        @retry(
            retry=retry_if_exception_type(LLMServiceUnavailable),
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(
                multiplier=self._retry_delay,
                exp_base=self._retry_backoff,
                max=30,
            ),
            reraise=True,
            before_sleep=lambda state: logger.warning(
                "Model service unavailable during %s, retrying in %.1fs (attempt %d/%d)",
                label,
                state.next_action.sleep,  # type: ignore[union-attr]
                state.attempt_number,
                self._retry_attempts,
            ),
        )
        def _do_call() -> dict:
            return send()

        try:
            data = _do_call()
        except (LLMServiceUnavailable, LLMServiceError):
            self._circuit.record_failure()
            raise
        self._circuit.record_success()
        return data

    def _send_completion(self, payload: dict) -> dict:
        """Send a single chat completion request."""
        try:
            resp = self._client.post("/chat/completions", json=payload, headers=self._headers())
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            logger.warning("Model service connection failed: %s", e)
            raise LLMServiceUnavailable(f"Cannot connect to model service: {e}") from e
        except httpx.ReadTimeout as e:
            logger.warning("Model service read timeout: %s", e)
            raise LLMServiceUnavailable(f"Model service read timeout: {e}") from e
        except httpx.HTTPError as e:
            logger.error("Model service HTTP error: %s", e)
            raise LLMServiceError(f"Model service HTTP error: {e}") from e

        raise_for_service_status(resp, "Model service", LLMServiceUnavailable, LLMServiceError)
        return json_body(resp, "Model service", LLMServiceError)

    def _send_transcription(self, audio_bytes: bytes, filename: str) -> dict:
        """Send a single multipart transcription request."""
        files = {"file": (filename, audio_bytes, "audio/webm")}
        data = {"model": self.asr_model, "response_format": "verbose_json"}
        try:
            resp = self._client.post(self._transcribe_url, files=files, data=data, headers=self._headers())
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            logger.warning("Transcription service connection failed: %s", e)
            raise LLMServiceUnavailable(f"Cannot connect to transcription service: {e}") from e
        except httpx.ReadTimeout as e:
            logger.warning("Transcription service read timeout: %s", e)
            raise LLMServiceUnavailable(f"Transcription service read timeout: {e}") from e
        except httpx.HTTPError as e:
            logger.error("Transcription service HTTP error: %s", e)
            raise LLMServiceError(f"Transcription service HTTP error: {e}") from e

        raise_for_service_status(resp, "Transcription service", LLMServiceUnavailable, LLMServiceError)
        return json_body(resp, "Transcription service", LLMServiceError)

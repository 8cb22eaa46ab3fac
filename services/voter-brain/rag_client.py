"""HTTP client for the retrieval/generation (RAG) service.

The RAG service is a black box: it embeds, retrieves, reranks and
generates, returning a scored answer with its retrieval trace and an
optional explicit escalation flag.
"""

import logging

import httpx
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config import settings
from llm_client import raise_for_service_status
from models import GenerationResult, Locale

logger = logging.getLogger(__name__)


class RAGServiceUnavailable(Exception):
    """RAG service is temporarily unavailable (retryable)."""


class RAGServiceError(Exception):
    """RAG service failed or returned a malformed answer (non-retryable)."""


class RAGClient:
    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        retry_attempts: int = 2,
        retry_delay: float = 0.5,
    ):
        self._base_url = (base_url or settings.RAG_SERVICE_URL).rstrip("/")
        self._retry_attempts = retry_attempts
        self._retry_delay = retry_delay
        read_timeout = timeout if timeout is not None else settings.RAG_TIMEOUT_SECONDS

        self._client = httpx.Client(
            base_url=self._base_url,
            timeout=httpx.Timeout(connect=5.0, read=float(read_timeout), write=10.0, pool=10.0),
        )

    def close(self):
        self._client.close()

    def answer(self, query: str, locale: Locale, memory_context: str = "") -> GenerationResult:
        """Ask the RAG service for a grounded answer."""
        payload = {"query": query, "locale": locale, "memory_context": memory_context}

        @retry(
            retry=retry_if_exception_type(RAGServiceUnavailable),
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=self._retry_delay, max=5),
            reraise=True,
            before_sleep=lambda state: logger.warning(
                "RAG service unavailable, retrying (attempt %d/%d)",
                state.attempt_number,
                self._retry_attempts,
            ),
        )
        def _do_answer() -> GenerationResult:
            return self._send_answer(payload)

        return _do_answer()

    def _send_answer(self, payload: dict) -> GenerationResult:
        try:
            resp = self._client.post("/answer", json=payload)
        except (httpx.ConnectError, httpx.ConnectTimeout, httpx.ReadTimeout) as e:
            logger.warning("RAG service unreachable: %s", e)
            raise RAGServiceUnavailable(f"RAG service unreachable: {e}") from e
        except httpx.HTTPError as e:
            logger.error("RAG service HTTP error: %s", e)
            raise RAGServiceError(f"RAG service HTTP error: {e}") from e

        raise_for_service_status(resp, "RAG service", RAGServiceUnavailable, RAGServiceError)

        try:
            return GenerationResult.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise RAGServiceError(f"RAG service returned a malformed answer: {e}") from e

    def health(self) -> dict:
        try:
            resp = self._client.get("/health", timeout=5.0)
            return resp.json()
        except Exception as e:
            logger.warning("RAG health check failed: %s", e)
            return {"status": "unreachable", "error": str(e)}

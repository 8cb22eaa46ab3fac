"""Tests for model service retry, timeout and circuit breaker behavior."""

import sys
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from llm_client import (
    CircuitBreaker,
    CircuitOpenError,
    LLMClient,
    LLMServiceError,
    LLMServiceUnavailable,
)


def _completion(text: str = "ok") -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": text}}]})


@pytest.fixture
def llm_client():
    """Create a model client with fast retry settings for testing."""
    client = LLMClient(
        base_url="http://fake-llm/v1",
        api_key="test-key",
        model="test-model",
        asr_model="test-asr",
        transcribe_url="http://fake-asr/v1/audio/transcriptions",
        timeout=5,
        connect_timeout=2,
        retry_attempts=3,
        retry_delay=0.01,  # Fast retries for tests
        retry_backoff=1.0,  # No backoff for tests
        circuit_threshold=5,
        circuit_reset_seconds=60,
    )
    yield client
    client.close()


class TestGenerate:
    def test_successful_completion(self, llm_client: LLMClient):
        with patch.object(llm_client._client, "post", return_value=_completion("hello")) as post:
            result = llm_client.generate([{"role": "user", "content": "hi"}], max_tokens=50)

        assert result.text == "hello"
        assert result.model == "test-model"
        args, kwargs = post.call_args
        assert args[0] == "/chat/completions"
        assert kwargs["json"]["max_tokens"] == 50
        assert kwargs["json"]["model"] == "test-model"
        assert kwargs["headers"]["Authorization"] == "Bearer test-key"

    def test_empty_choices(self, llm_client: LLMClient):
        with patch.object(llm_client._client, "post", return_value=httpx.Response(200, json={"choices": []})):
            assert llm_client.generate([]).text == ""

    def test_non_json_body_is_error_no_retry(self, llm_client: LLMClient):
        resp = httpx.Response(200, text="<html>gateway hiccup</html>")

        with patch.object(llm_client._client, "post", return_value=resp) as post:
            with pytest.raises(LLMServiceError, match="non-JSON"):
                llm_client.generate([])
            assert post.call_count == 1

    def test_non_object_body_is_error(self, llm_client: LLMClient):
        with patch.object(llm_client._client, "post", return_value=httpx.Response(200, json=["ok"])):
            with pytest.raises(LLMServiceError, match="unexpected body"):
                llm_client.generate([])

    def test_malformed_choices_is_error(self, llm_client: LLMClient):
        with patch.object(llm_client._client, "post", return_value=httpx.Response(200, json={"choices": "ok"})):
            with pytest.raises(LLMServiceError, match="completion shape"):
                llm_client.generate([])

    def test_503_triggers_retry_then_succeeds(self, llm_client: LLMClient):
        responses = [httpx.Response(503, json={"detail": "overloaded"}), _completion("ok")]

        with patch.object(llm_client._client, "post", side_effect=responses) as post:
            assert llm_client.generate([]).text == "ok"
            assert post.call_count == 2

    def test_429_is_retryable(self, llm_client: LLMClient):
        responses = [httpx.Response(429, json={"error": "rate limited"}), _completion("ok")]

        with patch.object(llm_client._client, "post", side_effect=responses):
            assert llm_client.generate([]).text == "ok"

    def test_503_exhausts_retries(self, llm_client: LLMClient):
        with patch.object(llm_client._client, "post", return_value=httpx.Response(503, json={})) as post:
            with pytest.raises(LLMServiceUnavailable):
                llm_client.generate([])
            assert post.call_count == 3

    def test_500_raises_error_no_retry(self, llm_client: LLMClient):
        response_500 = httpx.Response(500, json={"detail": "Internal error"})

        with patch.object(llm_client._client, "post", return_value=response_500) as post:
            with pytest.raises(LLMServiceError, match="Internal error"):
                llm_client.generate([])
            assert post.call_count == 1

    def test_400_error_message_object(self, llm_client: LLMClient):
        response_400 = httpx.Response(400, json={"error": {"message": "bad image"}})

        with patch.object(llm_client._client, "post", return_value=response_400):
            with pytest.raises(LLMServiceError, match="bad image"):
                llm_client.generate([])

    def test_connection_error_triggers_retry(self, llm_client: LLMClient):
        side_effect = [httpx.ConnectError("refused"), httpx.ConnectError("refused"), _completion("ok")]

        with patch.object(llm_client._client, "post", side_effect=side_effect) as post:
            assert llm_client.generate([]).text == "ok"
            assert post.call_count == 3

    def test_read_timeout_triggers_retry(self, llm_client: LLMClient):
        with patch.object(llm_client._client, "post", side_effect=[httpx.ReadTimeout("slow"), _completion()]):
            assert llm_client.generate([]).text == "ok"

    def test_missing_api_key(self):
        client = LLMClient(base_url="http://fake-llm/v1", api_key="", retry_attempts=1)
        try:
            with pytest.raises(LLMServiceError, match="LLM_API_KEY"):
                client.generate([])
        finally:
            client.close()


class TestTranscribe:
    def test_successful_transcription(self, llm_client: LLMClient):
        body = {"text": "where is my booth", "language": "en", "duration": 2.5}

        with patch.object(llm_client._client, "post", return_value=httpx.Response(200, json=body)) as post:
            result = llm_client.transcribe(b"audio", "clip.webm")

        assert result.text == "where is my booth"
        assert result.language == "en"
        assert result.duration == 2.5
        assert result.model == "test-asr"
        args, kwargs = post.call_args
        assert args[0] == "http://fake-asr/v1/audio/transcriptions"
        assert kwargs["data"]["response_format"] == "verbose_json"
        assert kwargs["files"]["file"][0] == "clip.webm"

    def test_missing_language_defaults(self, llm_client: LLMClient):
        with patch.object(llm_client._client, "post", return_value=httpx.Response(200, json={"text": "hi"})):
            result = llm_client.transcribe(b"audio")
        assert result.language == "unknown"
        assert result.duration == 0.0

    def test_non_json_body_is_error(self, llm_client: LLMClient):
        with patch.object(llm_client._client, "post", return_value=httpx.Response(200, text="busy")):
            with pytest.raises(LLMServiceError):
                llm_client.transcribe(b"\x00\x01", "a.webm")


class TestCircuitBreaker:
    def test_opens_after_threshold(self):
        breaker = CircuitBreaker(threshold=2, reset_seconds=60, clock=lambda: 0.0)
        breaker.record_failure()
        assert not breaker.is_open
        breaker.record_failure()
        assert breaker.is_open

    def test_half_opens_after_reset_window(self):
        now = [0.0]
        breaker = CircuitBreaker(threshold=1, reset_seconds=60, clock=lambda: now[0])
        breaker.record_failure()
        assert breaker.is_open
        now[0] = 61.0
        assert not breaker.is_open

    def test_success_resets(self):
        breaker = CircuitBreaker(threshold=2, reset_seconds=60, clock=lambda: 0.0)
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        assert not breaker.is_open

    def test_open_circuit_refuses_calls(self, llm_client: LLMClient):
        llm_client._circuit = CircuitBreaker(threshold=1, reset_seconds=60)

        with patch.object(llm_client._client, "post", return_value=httpx.Response(500, json={})) as post:
            with pytest.raises(LLMServiceError):
                llm_client.generate([])
            with pytest.raises(CircuitOpenError):
                llm_client.generate([])
            assert post.call_count == 1

    def test_circuit_open_is_unavailable(self):
        assert issubclass(CircuitOpenError, LLMServiceUnavailable)

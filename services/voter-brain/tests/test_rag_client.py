"""Tests for the RAG service client."""

import sys
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from rag_client import RAGClient, RAGServiceError, RAGServiceUnavailable

ANSWER = {
    "text": "Use Form 6.",
    "confidence": 0.8,
    "sources": [{"title": "ECI", "url": "https://eci.gov.in"}],
    "retrieval_trace": [{"doc_id": "d1", "chunk_id": "c1", "similarity_score": 0.7, "reranker_score": 0.9}],
    "escalate": None,
    "model": "rag",
}


@pytest.fixture
def rag_client():
    client = RAGClient(base_url="http://fake-rag", timeout=5, retry_attempts=2, retry_delay=0.01)
    yield client
    client.close()


class TestAnswer:
    def test_successful_answer(self, rag_client: RAGClient):
        with patch.object(rag_client._client, "post", return_value=httpx.Response(200, json=ANSWER)) as post:
            result = rag_client.answer("how to register", "en", memory_context="[profile] name: Anil")

        assert result.text == "Use Form 6."
        assert result.escalate is None
        assert result.retrieval_trace[0].reranker_score == 0.9
        args, kwargs = post.call_args
        assert args[0] == "/answer"
        assert kwargs["json"] == {
            "query": "how to register",
            "locale": "en",
            "memory_context": "[profile] name: Anil",
        }

    def test_503_retried(self, rag_client: RAGClient):
        responses = [httpx.Response(503, json={}), httpx.Response(200, json=ANSWER)]
        with patch.object(rag_client._client, "post", side_effect=responses) as post:
            assert rag_client.answer("q", "en").confidence == 0.8
            assert post.call_count == 2

    def test_connect_error_exhausts_retries(self, rag_client: RAGClient):
        with patch.object(rag_client._client, "post", side_effect=httpx.ConnectError("refused")) as post:
            with pytest.raises(RAGServiceUnavailable):
                rag_client.answer("q", "en")
            assert post.call_count == 2

    def test_500_not_retried(self, rag_client: RAGClient):
        with patch.object(rag_client._client, "post", return_value=httpx.Response(500, json={})) as post:
            with pytest.raises(RAGServiceError):
                rag_client.answer("q", "en")
            assert post.call_count == 1

    def test_malformed_answer(self, rag_client: RAGClient):
        with patch.object(rag_client._client, "post", return_value=httpx.Response(200, json={"text": "x"})):
            with pytest.raises(RAGServiceError, match="malformed"):
                rag_client.answer("q", "en")


class TestHealth:
    def test_health_success(self, rag_client: RAGClient):
        with patch.object(rag_client._client, "get", return_value=httpx.Response(200, json={"status": "ok"})):
            assert rag_client.health() == {"status": "ok"}

    def test_health_unreachable(self, rag_client: RAGClient):
        with patch.object(rag_client._client, "get", side_effect=httpx.ConnectError("refused")):
            result = rag_client.health()
        assert result["status"] == "unreachable"

"""Shared test fixtures for voter brain tests."""

import json
import sys
from pathlib import Path
from unittest.mock import MagicMock

import numpy as np
import pytest

# Add parent directory to path so we can import the modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from models import CompletionResult, GenerationResult, Source, TraceEntry  # noqa: E402


@pytest.fixture
def sample_image_bytes() -> bytes:
    """A small valid JPEG with dark bars standing in for printed text."""
    import cv2

    img = np.full((300, 480, 3), 235, dtype=np.uint8)
    cv2.rectangle(img, (30, 40), (420, 60), (30, 30, 30), -1)
    cv2.rectangle(img, (30, 90), (380, 110), (30, 30, 30), -1)
    cv2.rectangle(img, (30, 140), (300, 160), (30, 30, 30), -1)

    _, buf = cv2.imencode(".jpg", img, [cv2.IMWRITE_JPEG_QUALITY, 90])
    return buf.tobytes()


@pytest.fixture
def large_image_bytes() -> bytes:
    """A landscape photo larger than the downscale limit."""
    import cv2

    img = np.full((2000, 3000, 3), 200, dtype=np.uint8)
    _, buf = cv2.imencode(".jpg", img)
    return buf.tobytes()


@pytest.fixture
def invalid_bytes() -> bytes:
    """Non-image bytes for testing graceful degradation."""
    return b"this is not an image file at all"


@pytest.fixture
def epic_extraction_json() -> str:
    """Pass 1 reply for a complete, valid EPIC card."""
    return json.dumps({
        "document_type": "epic_card",
        "fields": [
            {"name": "epic_number", "value": "KLA1234567", "confidence": 0.97},
            {"name": "name", "value": "Anil Kumar", "confidence": 0.95},
            {"name": "name_local", "value": "അനിൽ കുമാർ", "confidence": 0.9},
            {"name": "relative_name", "value": "Raghavan", "confidence": 0.9},
            {"name": "relative_relation", "value": "Father", "confidence": 0.9},
            {"name": "dob_or_age", "value": "15/08/1990", "confidence": 0.9},
            {"name": "gender", "value": "Male", "confidence": 0.95},
            {"name": "address", "value": "Thellakom, Kottayam", "confidence": 0.85},
            {"name": "constituency", "value": "97-Kottayam", "confidence": 0.9},
            {"name": "part_number", "value": "12", "confidence": 0.9},
            {"name": "serial_number", "value": "345", "confidence": 0.9},
            {"name": "photo_present", "value": "yes", "confidence": 0.99},
        ],
        "missing_fields": [],
        "overall_confidence": 0.9,
        "notes": "",
    })


@pytest.fixture
def fake_llm():
    """Model client double; tests set generate/transcribe behaviour."""
    client = MagicMock()
    client.generate.return_value = CompletionResult(text="", model="test-vl")
    return client


@pytest.fixture
def rag_answer() -> GenerationResult:
    return GenerationResult(
        text="You can register using Form 6 on voters.eci.gov.in.",
        confidence=0.82,
        sources=[
            Source(
                title="ECI Form 6 Guidelines",
                url="https://voters.eci.gov.in/",
                last_updated="2026-01-10",
                excerpt="Form 6 is used for new voter registration.",
            )
        ],
        retrieval_trace=[
            TraceEntry(doc_id="eci-form6", chunk_id="c1", similarity_score=0.81, reranker_score=0.92),
        ],
        escalate=None,
        model="rag-test",
    )

"""FastAPI voter brain service: multimodal voter-information assistant.

Answers text, voice and document-image queries about voter registration and
polling booths. Model and retrieval calls go to external services; images and
audio are processed in memory only and never logged.
"""

import base64
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Literal

from fastapi import FastAPI, File, Form, Header, Query, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response

import admin
import booths
import memory
from cache import TTLCache
from config import settings
from extraction import InvalidInputError, extract_document_fields, validate_image_input
from llm_client import LLMClient, LLMServiceError, LLMServiceUnavailable
from models import (
    BoothRecord,
    BoothSearchResponse,
    ChatRequest,
    ChatResponse,
    ConsentRecord,
    ConsentRequest,
    Locale,
    VisionExtractionResult,
)
from pipeline import AUDIT_LOG_STREAM, QUERY_LOG_STREAM, ChatPipeline
from preprocessing import prepare_document_image
from privacy import hash_identifier
from rag_client import RAGClient, RAGServiceError, RAGServiceUnavailable
from store import Store, StoreError, build_store

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

_llm_client: LLMClient | None = None
_rag_client: RAGClient | None = None
_store: Store | None = None
_pipeline: ChatPipeline | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create service clients, the store and the chat pipeline."""
    global _llm_client, _rag_client, _store, _pipeline

    if not settings.LLM_API_KEY:
        logger.warning("LLM_API_KEY is empty, model calls will fail until it is set")
    _llm_client = LLMClient()

    if settings.RAG_SERVICE_URL:
        logger.info("Using RAG service at %s", settings.RAG_SERVICE_URL)
        _rag_client = RAGClient()
    else:
        logger.info("RAG service not configured (RAG_SERVICE_URL is empty), text answers use the fallback")

    _store = build_store()
    logger.info("Store backend: %s", settings.STORE_BACKEND)

    booth_count = len(booths.get_all_booths())
    logger.info("Loaded %d polling booths", booth_count)

    _pipeline = ChatPipeline(_llm_client, _rag_client, TTLCache[ChatResponse](), _store)

    yield

    _llm_client.close()
    if _rag_client is not None:
        _rag_client.close()
    _store.close()


app = FastAPI(title="Voter Brain", version="1.0.0", lifespan=lifespan)


@app.exception_handler(InvalidInputError)
async def invalid_input_handler(request: Request, exc: InvalidInputError):
    return JSONResponse(status_code=413 if exc.too_large else 400, content={"detail": str(exc)})


@app.exception_handler(LLMServiceUnavailable)
@app.exception_handler(LLMServiceError)
@app.exception_handler(RAGServiceUnavailable)
@app.exception_handler(RAGServiceError)
async def upstream_error_handler(request: Request, exc: Exception):
    logger.error("Upstream failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": "Upstream service unavailable"})


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error("Store failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})


@app.exception_handler(admin.AdminAuthError)
async def admin_auth_handler(request: Request, exc: admin.AdminAuthError):
    logger.warning("Rejected admin request on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=401,
        content={"detail": "Unauthorized. Provide a valid x-admin-token header."},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.post("/api/v1/vision/extract", response_model=VisionExtractionResult)
async def vision_extract(
    file: UploadFile = File(...),
    locale: Locale = Form("en"),
):
    """Extract and explain the fields of an uploaded voter document."""
    image_bytes = await file.read()
    validate_image_input(len(image_bytes), file.content_type)

    # No image content in logs, byte count only
    logger.info("Processing extraction: type=%s size=%d bytes", file.content_type, len(image_bytes))

    prepared, mime = prepare_document_image(image_bytes, file.content_type or "image/jpeg")
    encoded = base64.b64encode(prepared).decode("ascii")
    return await run_in_threadpool(extract_document_fields, encoded, mime, locale, _llm_client)


@app.get("/api/v1/booths", response_model=BoothSearchResponse)
async def booth_search(
    q: str | None = None,
    station_number: int | None = Query(None, ge=1),
    lat: float | None = Query(None, ge=-90, le=90),
    lng: float | None = Query(None, ge=-180, le=180),
    limit: int = Query(5, ge=1, le=20),
):
    """Find booths by station number, free text or proximity."""
    results: list[BoothRecord]
    if station_number is not None:
        results = booths.search_booths(str(station_number), limit)
    elif lat is not None and lng is not None:
        results = [b for b, _ in booths.search_nearest_booths(lat, lng, limit)]
    elif q and q.strip():
        results = booths.search_booths(q, limit)
    else:
        return JSONResponse(
            status_code=400,
            content={"detail": "Provide q, station_number, or both lat and lng"},
        )

    return BoothSearchResponse(
        booths=results,
        confidence=0.95 if results else 0.0,
        source=booths.BOOTH_SOURCE,
    )


@app.post("/api/v1/chat", response_model=ChatResponse)
async def chat(request: ChatRequest):
    """Answer a text, voice or document-image query."""
    return await run_in_threadpool(_pipeline.handle, request)


@app.post("/api/v1/memory/consent", response_model=ConsentRecord)
async def memory_consent(request: ConsentRequest):
    return memory.set_consent(_store, request)


@app.get("/api/v1/memory/export")
async def memory_export(user_id: str = Query(..., min_length=1)):
    """Export everything stored for a user."""
    export = memory.export_user_memory(_store, user_id)
    _record_data_access(user_id, "memory_export", len(export["entries"]))
    return export


@app.delete("/api/v1/memory")
async def memory_delete(user_id: str = Query(..., min_length=1)):
    """Delete a user's consent and stored memory."""
    removed = memory.delete_user_memory(_store, user_id)
    _record_data_access(user_id, "memory_delete", removed)
    return {"deleted": True, "entries_removed": removed}


@app.get("/api/v1/admin/query-log")
async def admin_query_log(
    x_admin_token: str | None = Header(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    locale: Locale | None = None,
    min_confidence: float = Query(0.0, ge=0.0, le=1.0),
    max_confidence: float = Query(1.0, ge=0.0, le=1.0),
    escalated: bool = False,
    since: str | None = None,
    until: str | None = None,
    format: Literal["json", "csv"] = "json",
):
    """Paginated query log for review, newest first."""
    admin.check_admin_token(x_admin_token)
    records = await run_in_threadpool(_store.read_stream, QUERY_LOG_STREAM, settings.ADMIN_SCAN_LIMIT)
    filtered = admin.filter_query_logs(
        records,
        locale=locale,
        min_confidence=min_confidence,
        max_confidence=max_confidence,
        escalated_only=escalated,
        since=since,
        until=until,
    )
    data, pagination = admin.paginate(filtered, page, limit)

    if format == "csv":
        filename = f"query-log-{datetime.now(timezone.utc).date().isoformat()}.csv"
        return Response(
            content=admin.to_csv(data),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    return {
        "data": data,
        "pagination": pagination,
        "filters": {
            "locale": locale,
            "min_confidence": min_confidence,
            "max_confidence": max_confidence,
            "escalated_only": escalated,
            "since": since,
            "until": until,
        },
    }


@app.get("/api/v1/admin/escalations")
async def admin_escalations(
    x_admin_token: str | None = Header(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    since: str | None = None,
):
    """Escalated answers awaiting human review."""
    admin.check_admin_token(x_admin_token)
    records = await run_in_threadpool(_store.read_stream, QUERY_LOG_STREAM, settings.ADMIN_SCAN_LIMIT)
    escalated = admin.filter_query_logs(records, escalated_only=True, since=since)
    data, pagination = admin.paginate(escalated, page, limit)
    return {
        "data": data,
        "pagination": pagination,
        "summary": admin.escalation_summary(escalated),
    }


@app.get("/api/v1/admin/stats")
async def admin_stats(x_admin_token: str | None = Header(None)):
    admin.check_admin_token(x_admin_token)
    query_logs = await run_in_threadpool(_store.read_stream, QUERY_LOG_STREAM, settings.ADMIN_SCAN_LIMIT)
    audit_entries = await run_in_threadpool(_store.read_stream, AUDIT_LOG_STREAM, settings.ADMIN_SCAN_LIMIT)
    return admin.compute_stats(query_logs, len(audit_entries))


@app.get("/health")
async def health():
    """Return service status and collaborator availability."""
    base = {
        "status": "healthy",
        "booths_loaded": len(booths.get_all_booths()),
        "rag_configured": _rag_client is not None,
        "store_backend": settings.STORE_BACKEND,
    }

    if _rag_client is not None:
        base["rag_health"] = _rag_client.health()

    return base


def _record_data_access(user_id: str, kind: str, count: int) -> None:
    try:
        _store.append(
            AUDIT_LOG_STREAM,
            {
                "id": str(uuid.uuid4()),
                "action": "data_access",
                "actor_hash": hash_identifier(user_id),
                "type": kind,
                "entries": count,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )
    except StoreError as e:
        logger.error("Audit write failed for %s: %s", kind, e)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)

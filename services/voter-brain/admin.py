"""Review surface over the query and audit logs.

Escalated answers are queued for human review from the query log; the same
records feed the dashboard statistics. Records are the dicts the chat
pipeline appends, so queries are already PII-redacted and sessions hashed.
"""

import csv
import hmac
import io
import logging
import math
from collections import Counter
from datetime import datetime, timedelta, timezone

from config import settings

logger = logging.getLogger(__name__)

CSV_COLUMNS = (
    "id",
    "timestamp",
    "locale",
    "confidence",
    "escalated",
    "latency_ms",
    "router_type",
    "modality",
    "cached",
)


class AdminAuthError(Exception):
    """Missing or wrong admin token, or admin access not configured."""


def check_admin_token(token: str | None, expected: str | None = None) -> None:
    expected = settings.ADMIN_API_TOKEN if expected is None else expected
    if not expected:
        logger.warning("ADMIN_API_TOKEN not configured, admin endpoints disabled")
        raise AdminAuthError("Admin access is not configured")
    if not token or not hmac.compare_digest(token.encode(), expected.encode()):
        raise AdminAuthError("Invalid admin token")


def newest_first(records: list[dict]) -> list[dict]:
    return sorted(records, key=lambda r: r.get("timestamp") or "", reverse=True)


def filter_query_logs(
    records: list[dict],
    locale: str | None = None,
    min_confidence: float = 0.0,
    max_confidence: float = 1.0,
    escalated_only: bool = False,
    since: str | None = None,
    until: str | None = None,
) -> list[dict]:
    """Filter query-log records; ``since``/``until`` compare ISO timestamps as strings."""
    kept = []
    for record in records:
        timestamp = record.get("timestamp") or ""
        confidence = record.get("confidence", 0.0)
        if locale and record.get("locale") != locale:
            continue
        if confidence < min_confidence or confidence > max_confidence:
            continue
        if escalated_only and not record.get("escalated"):
            continue
        if since and timestamp < since:
            continue
        if until and timestamp > until:
            continue
        kept.append(record)
    return newest_first(kept)


def paginate(records: list[dict], page: int, limit: int) -> tuple[list[dict], dict]:
    page = max(1, page)
    limit = max(1, limit)
    offset = (page - 1) * limit
    total = len(records)
    return records[offset : offset + limit], {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": math.ceil(total / limit),
    }


def _average(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _by_locale(records: list[dict]) -> dict[str, int]:
    counts = Counter({"en": 0, "ml": 0})
    counts.update(r.get("locale") or "unknown" for r in records)
    return dict(counts)


def escalation_summary(escalated: list[dict]) -> dict:
    return {
        "total_escalations": len(escalated),
        "avg_confidence": round(_average([r.get("confidence", 0.0) for r in escalated]), 2),
        "by_locale": _by_locale(escalated),
    }


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def compute_stats(query_logs: list[dict], audit_entry_count: int, now: datetime | None = None) -> dict:
    """Dashboard aggregates. Escalation rate is a percentage with two decimals."""
    now = now or datetime.now(timezone.utc)
    total = len(query_logs)
    escalated = sum(1 for r in query_logs if r.get("escalated"))
    cutoff = now - timedelta(hours=24)

    last_24h = 0
    for record in query_logs:
        ts = _parse_timestamp(record.get("timestamp"))
        if ts is not None and ts > cutoff:
            last_24h += 1

    return {
        "total_queries": total,
        "total_escalations": escalated,
        "escalation_rate": round(escalated / total * 100, 2) if total else 0.0,
        "avg_confidence": round(_average([r.get("confidence", 0.0) for r in query_logs]), 2),
        "avg_latency_ms": round(_average([r.get("latency_ms", 0) for r in query_logs])),
        "by_locale": _by_locale(query_logs),
        "by_router_type": dict(Counter(r.get("router_type") or "unknown" for r in query_logs)),
        "queries_last_24h": last_24h,
        "audit_entries_count": audit_entry_count,
    }


def to_csv(records: list[dict]) -> str:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=CSV_COLUMNS, extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    for record in records:
        writer.writerow({col: record.get(col, "") for col in CSV_COLUMNS})
    return buf.getvalue()

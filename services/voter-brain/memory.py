"""Opt-in user memory.

Users choose which memory types (profile, preferences, saved_docs) may be
kept. User ids are hashed before they reach the store, entries expire after
MEMORY_RETENTION_DAYS, and a user can export or delete everything at any time.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone

from config import settings
from models import ConsentRecord, ConsentRequest, Locale, MemoryEntry, MemoryType
from privacy import hash_identifier
from store import Store

logger = logging.getLogger(__name__)

CONSENT_NAMESPACE = "memory_consent"
ENTRIES_NAMESPACE = "memory_entries"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def set_consent(store: Store, request: ConsentRequest) -> ConsentRecord:
    """Record a consent decision. Withdrawing consent wipes stored entries."""
    user_hash = hash_identifier(request.user_id)
    record = ConsentRecord(
        memory_enabled=request.enabled,
        allowed_types=request.allowed_types if request.enabled else [],
        updated_at=_now().isoformat(),
    )
    store.set(CONSENT_NAMESPACE, user_hash, record.model_dump())
    if not request.enabled:
        store.delete(ENTRIES_NAMESPACE, user_hash)

    logger.info(
        "memory_consent_update user=%s enabled=%s types=%s",
        user_hash,
        record.memory_enabled,
        ",".join(record.allowed_types),
    )
    return record


def get_consent(store: Store, user_id: str) -> ConsentRecord | None:
    raw = store.get(CONSENT_NAMESPACE, hash_identifier(user_id))
    return ConsentRecord.model_validate(raw) if raw else None


def is_type_allowed(store: Store, user_id: str, memory_type: MemoryType) -> bool:
    consent = get_consent(store, user_id)
    return consent is not None and consent.memory_enabled and memory_type in consent.allowed_types


def store_memory(
    store: Store,
    user_id: str,
    memory_type: MemoryType,
    key: str,
    value: str,
    locale: Locale = "en",
) -> MemoryEntry | None:
    """Upsert one entry by (type, key). Returns None without consent for the type."""
    if not is_type_allowed(store, user_id, memory_type):
        return None

    user_hash = hash_identifier(user_id)
    now = _now()
    entry = MemoryEntry(
        id=f"mem-{uuid.uuid4().hex[:12]}",
        user_id=user_hash,
        type=memory_type,
        key=key,
        value=value,
        locale=locale,
        created_at=now.isoformat(),
        expires_at=(now + timedelta(days=settings.MEMORY_RETENTION_DAYS)).isoformat(),
    )

    entries = [e for e in _load_entries(store, user_hash) if not (e.type == memory_type and e.key == key)]
    entries.append(entry)
    _save_entries(store, user_hash, entries)
    return entry


def get_memories(store: Store, user_id: str, memory_type: MemoryType | None = None) -> list[MemoryEntry]:
    """Unexpired entries for a user, optionally of one type. Expired ones are pruned."""
    user_hash = hash_identifier(user_id)
    entries = _load_entries(store, user_hash)
    now = _now()
    valid = [e for e in entries if datetime.fromisoformat(e.expires_at) > now]
    if len(valid) != len(entries):
        _save_entries(store, user_hash, valid)
    if memory_type is not None:
        return [e for e in valid if e.type == memory_type]
    return valid


def build_memory_context(store: Store, user_id: str | None) -> str:
    """Memory block passed to the RAG service, or an empty string."""
    if not user_id:
        return ""
    consent = get_consent(store, user_id)
    if consent is None or not consent.memory_enabled:
        return ""
    memories = get_memories(store, user_id)
    if not memories:
        return ""
    lines = "\n".join(f"[{m.type}] {m.key}: {m.value}" for m in memories)
    return f"\nUSER MEMORY (opt-in stored preferences):\n{lines}\n"


def export_user_memory(store: Store, user_id: str) -> dict:
    return {
        "user_id": hash_identifier(user_id),
        "exported_at": _now().isoformat(),
        "consent": get_consent(store, user_id),
        "entries": get_memories(store, user_id),
    }


def delete_user_memory(store: Store, user_id: str) -> int:
    """Remove consent and all entries. Returns the number of entries removed."""
    user_hash = hash_identifier(user_id)
    removed = len(_load_entries(store, user_hash))
    store.delete(ENTRIES_NAMESPACE, user_hash)
    store.delete(CONSENT_NAMESPACE, user_hash)
    logger.info("memory_deletion user=%s entries_removed=%d", user_hash, removed)
    return removed


def _load_entries(store: Store, user_hash: str) -> list[MemoryEntry]:
    raw = store.get(ENTRIES_NAMESPACE, user_hash) or []
    return [MemoryEntry.model_validate(e) for e in raw]


def _save_entries(store: Store, user_hash: str, entries: list[MemoryEntry]) -> None:
    if entries:
        store.set(ENTRIES_NAMESPACE, user_hash, [e.model_dump() for e in entries])
    else:
        store.delete(ENTRIES_NAMESPACE, user_hash)

"""Key-value and append-only persistence behind one interface.

The backend is chosen once at startup from STORE_BACKEND: an in-process
map for local development, or Supabase (PostgREST over httpx) in production.
Callers treat every store operation as able to fail independently.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict

import httpx

from config import settings

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """A persistence operation failed."""


class Store(ABC):
    @abstractmethod
    def get(self, namespace: str, key: str) -> dict | list | None: ...

    @abstractmethod
    def set(self, namespace: str, key: str, value: dict | list) -> None: ...

    @abstractmethod
    def delete(self, namespace: str, key: str) -> bool: ...

    @abstractmethod
    def append(self, stream: str, record: dict) -> None: ...

    @abstractmethod
    def read_stream(self, stream: str, limit: int) -> list[dict]:
        """Most recent ``limit`` records of a stream, newest first."""

    def close(self) -> None:
        pass


class InMemoryStore(Store):
    """Process-local store. Append streams are capped to bound memory."""

    def __init__(self, max_stream_length: int = 10_000):
        self._values: dict[tuple[str, str], dict | list] = {}
        self._streams: dict[str, list[dict]] = defaultdict(list)
        self._max_stream_length = max_stream_length
        self._lock = threading.Lock()

    def get(self, namespace: str, key: str) -> dict | list | None:
        with self._lock:
            return self._values.get((namespace, key))

    def set(self, namespace: str, key: str, value: dict | list) -> None:
        with self._lock:
            self._values[(namespace, key)] = value

    def delete(self, namespace: str, key: str) -> bool:
        with self._lock:
            return self._values.pop((namespace, key), None) is not None

    def append(self, stream: str, record: dict) -> None:
        with self._lock:
            records = self._streams[stream]
            records.append(record)
            if len(records) > self._max_stream_length:
                del records[: len(records) - self._max_stream_length]

    def read_stream(self, stream: str, limit: int) -> list[dict]:
        if limit <= 0:
            return []
        with self._lock:
            return list(reversed(self._streams.get(stream, [])[-limit:]))


class SupabaseStore(Store):
    """Supabase REST backend.

    Key-value pairs live in a ``kv_store(namespace, key, value jsonb)`` table
    with a unique (namespace, key) constraint; each append stream is its own
    table (``query_log``, ``audit_log``).
    """

    def __init__(self, url: str | None = None, service_key: str | None = None, timeout: float = 5.0):
        base_url = (url or settings.SUPABASE_URL).rstrip("/")
        key = service_key or settings.SUPABASE_SERVICE_KEY
        if not base_url or not key:
            raise StoreError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set for the supabase store")

        self._client = httpx.Client(
            base_url=f"{base_url}/rest/v1",
            headers={"apikey": key, "Authorization": f"Bearer {key}"},
            timeout=timeout,
        )

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            resp = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise StoreError(f"Supabase {method} {path} failed: {e}") from e
        if resp.status_code >= 300:
            raise StoreError(f"Supabase {method} {path} returned {resp.status_code}: {resp.text[:200]}")
        return resp

    def get(self, namespace: str, key: str) -> dict | list | None:
        resp = self._request(
            "GET",
            "/kv_store",
            params={"namespace": f"eq.{namespace}", "key": f"eq.{key}", "select": "value"},
        )
        rows = resp.json()
        return rows[0]["value"] if rows else None

    def set(self, namespace: str, key: str, value: dict | list) -> None:
        self._request(
            "POST",
            "/kv_store",
            params={"on_conflict": "namespace,key"},
            json={"namespace": namespace, "key": key, "value": value},
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )

    def delete(self, namespace: str, key: str) -> bool:
        resp = self._request(
            "DELETE",
            "/kv_store",
            params={"namespace": f"eq.{namespace}", "key": f"eq.{key}"},
            headers={"Prefer": "return=representation"},
        )
        return bool(resp.json())

    def append(self, stream: str, record: dict) -> None:
        self._request("POST", f"/{stream}", json=record, headers={"Prefer": "return=minimal"})

    def read_stream(self, stream: str, limit: int) -> list[dict]:
        if limit <= 0:
            return []
        resp = self._request(
            "GET",
            f"/{stream}",
            params={"select": "*", "order": "timestamp.desc", "limit": str(limit)},
        )
        try:
            rows = resp.json()
        except ValueError as e:
            raise StoreError(f"Supabase GET /{stream} returned a non-JSON body") from e
        if not isinstance(rows, list):
            raise StoreError(f"Supabase GET /{stream} returned {type(rows).__name__}, expected a list")
        return rows


def build_store(backend: str | None = None) -> Store:
    backend = (backend or settings.STORE_BACKEND).lower()
    if backend == "memory":
        return InMemoryStore()
    if backend == "supabase":
        return SupabaseStore()
    raise ValueError(f"Unknown STORE_BACKEND: {backend}")

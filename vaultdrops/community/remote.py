"""Remote submission stores.

The core needs exactly two operations from the shared store:

    upsert(table, record, conflict_key)  insert-or-replace, atomic per key
    select(table, filters)               every record matching equality filters

Two backends implement them:
    - JsonlRemoteStore: one JSONL file per table on a shared filesystem,
      serialised with filelock. Used by the bundled web service and tests.
    - SupabaseRemoteStore: PostgREST over httpx, the hosted deployment.

Ordering of selected records is not guaranteed by either backend.
"""

import asyncio
from collections.abc import Mapping, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

import httpx

from vaultdrops.common.api_exceptions import (
    raise_for_httpx_status_error,
    raise_for_transport_error,
)
from vaultdrops.common.config import Settings
from vaultdrops.common.logging import get_logger
from vaultdrops.common.persistence import JsonRecord, delete_jsonl, read_jsonl, upsert_jsonl

logger = get_logger(__name__)


class RemoteStoreError(Exception):
    """Base exception for remote store failures."""


class RemoteUnavailableError(RemoteStoreError):
    """Raised when the remote cannot be reached (connection error, timeout)."""


class RemoteAuthError(RemoteStoreError):
    """Raised when the remote rejects our credentials."""


class RemoteTransientError(RemoteStoreError):
    """Raised for 5xx and rate-limit responses."""


class RemoteNotFoundError(RemoteStoreError):
    """Raised when the table or endpoint does not exist."""


class StaleWriteError(RemoteStoreError):
    """Raised when an upsert is older than the record it would replace."""


_HTTPX_ERROR_MAP: dict[str, type[Exception]] = {
    "rate_limit": RemoteTransientError,
    "transient": RemoteTransientError,
    "auth": RemoteAuthError,
    "not_found": RemoteNotFoundError,
}


class RemoteStore(Protocol):
    async def upsert(
        self, table: str, record: JsonRecord, conflict_key: Sequence[str]
    ) -> None: ...

    async def select(
        self, table: str, filters: Mapping[str, Any] | None = None
    ) -> list[JsonRecord]: ...


def _reject_stale(existing: JsonRecord, incoming: JsonRecord) -> None:
    """Refuse to replace a record with one carrying an older submitted_at."""
    old_raw = existing.get("submitted_at")
    new_raw = incoming.get("submitted_at")
    if not old_raw or not new_raw:
        return
    try:
        old_ts = datetime.fromisoformat(str(old_raw))
        new_ts = datetime.fromisoformat(str(new_raw))
    except ValueError:
        return
    try:
        is_stale = new_ts < old_ts
    except TypeError:
        # naive vs aware timestamps cannot be ordered
        return
    if is_stale:
        raise StaleWriteError(
            f"Submission from {new_raw} is older than stored submission from {old_raw}"
        )


class JsonlRemoteStore:
    """File-backed store: <data_dir>/<table>.jsonl.

    Upserts rewrite the table under a file lock, which makes them atomic per
    key across processes sharing the directory.
    """

    def __init__(self, data_dir: str | Path) -> None:
        self._data_dir = Path(data_dir)

    def table_path(self, table: str) -> Path:
        return self._data_dir / f"{table}.jsonl"

    async def upsert(self, table: str, record: JsonRecord, conflict_key: Sequence[str]) -> None:
        missing = [k for k in conflict_key if k not in record]
        if missing:
            raise RemoteStoreError(f"Record is missing conflict key field(s): {missing}")
        try:
            created = await asyncio.to_thread(
                upsert_jsonl, self.table_path(table), record, conflict_key, _reject_stale
            )
        except OSError as e:
            raise RemoteUnavailableError(f"Could not write {self.table_path(table)}: {e}") from e
        except ValueError as e:
            raise RemoteStoreError(f"Corrupt table {self.table_path(table)}: {e}") from e
        logger.debug(
            "Upserted record",
            {"table": table, "created": created, **{k: record[k] for k in conflict_key}},
        )

    async def select(
        self, table: str, filters: Mapping[str, Any] | None = None
    ) -> list[JsonRecord]:
        try:
            return await asyncio.to_thread(read_jsonl, self.table_path(table), filters)
        except OSError as e:
            raise RemoteUnavailableError(f"Could not read {self.table_path(table)}: {e}") from e
        except ValueError as e:
            raise RemoteStoreError(f"Corrupt table {self.table_path(table)}: {e}") from e

    async def delete(self, table: str, filters: Mapping[str, Any]) -> int:
        if not filters:
            raise RemoteStoreError("Refusing to delete without filters")
        try:
            return await asyncio.to_thread(delete_jsonl, self.table_path(table), filters)
        except OSError as e:
            raise RemoteUnavailableError(f"Could not write {self.table_path(table)}: {e}") from e
        except ValueError as e:
            raise RemoteStoreError(f"Corrupt table {self.table_path(table)}: {e}") from e


class SupabaseRemoteStore:
    """PostgREST client for a Supabase project.

    Upserts use on_conflict with merge-duplicates resolution, which Postgres
    applies atomically per unique key. Only the anon key is used; there is
    no user session.
    """

    def __init__(
        self,
        url: str,
        anon_key: str,
        timeout: float = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = url.rstrip("/") + "/rest/v1"
        self.anon_key = anon_key
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.anon_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, table: str, **kwargs: Any) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.request(method, f"{self.base_url}/{table}", **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            raise_for_httpx_status_error(e, _HTTPX_ERROR_MAP, RemoteStoreError, context=table)
        except httpx.RequestError as e:
            raise_for_transport_error(e, RemoteUnavailableError, context=table)

    async def upsert(self, table: str, record: JsonRecord, conflict_key: Sequence[str]) -> None:
        headers = self._headers()
        headers["Prefer"] = "resolution=merge-duplicates,return=minimal"
        await self._request(
            "POST",
            table,
            params={"on_conflict": ",".join(conflict_key)},
            headers=headers,
            json=record,
        )

    async def select(
        self, table: str, filters: Mapping[str, Any] | None = None
    ) -> list[JsonRecord]:
        params = {"select": "*"}
        for key, value in (filters or {}).items():
            params[key] = f"eq.{value}"
        response = await self._request("GET", table, params=params, headers=self._headers())
        try:
            data = response.json()
        except ValueError as e:
            raise RemoteStoreError(f"Response from {table} is not valid JSON: {e}") from e
        if not isinstance(data, list):
            raise RemoteStoreError(f"Unexpected response shape from {table}: {type(data).__name__}")
        return data


def create_remote_store(settings: Settings) -> RemoteStore:
    """Build the configured remote store.

    Raises:
        ConfigError: If the supabase backend is selected without url/key
    """
    if settings.remote.backend == "supabase":
        url, anon_key = settings.require_supabase()
        return SupabaseRemoteStore(url, anon_key, timeout=settings.remote.timeout_seconds)
    return JsonlRemoteStore(settings.data_dir)

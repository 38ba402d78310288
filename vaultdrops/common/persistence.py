"""File persistence utilities: atomic JSON documents and keyed JSONL tables."""

import json
import tempfile
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Any

from filelock import FileLock

JsonRecord = dict[str, Any]


def lock_path_for(path: Path) -> Path:
    return path.with_suffix(path.suffix + ".lock")


def _write_atomic(path: Path, text: str) -> None:
    """Write text to path atomically (temp file in same dir, then rename).

    Caller must hold the lock for path.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path_str = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    temp_path = Path(temp_path_str)
    try:
        with open(fd, "w", encoding="utf-8") as f:
            f.write(text)
        temp_path.replace(path)
    finally:
        if temp_path.exists():
            temp_path.unlink()


def read_json(path: str | Path) -> Any:
    """Read a JSON document.

    Raises:
        FileNotFoundError: If the file doesn't exist
        json.JSONDecodeError: If the file is not valid JSON
    """
    path = Path(path)
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def write_json(path: str | Path, data: Any) -> None:
    """Write a JSON document atomically under a file lock."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with FileLock(lock_path_for(path)):
        _write_atomic(path, json.dumps(data, ensure_ascii=False))


def update_json(path: str | Path, mutate: Callable[[dict[str, Any]], None]) -> dict[str, Any]:
    """Read-modify-write a JSON object document under one lock.

    A missing or unreadable document is treated as an empty object.

    Args:
        path: Path to the JSON file
        mutate: Callback that edits the loaded dict in place

    Returns:
        The document as written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with FileLock(lock_path_for(path)):
        try:
            data = read_json(path)
        except (FileNotFoundError, json.JSONDecodeError):
            data = {}
        if not isinstance(data, dict):
            data = {}
        mutate(data)
        _write_atomic(path, json.dumps(data, ensure_ascii=False))
    return data


def _read_records(path: Path) -> list[JsonRecord]:
    results: list[JsonRecord] = []
    if not path.exists():
        return results
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            record = json.loads(line)
            if not isinstance(record, dict):
                raise ValueError(f"{path}: expected a JSON object per line, got {line[:40]!r}")
            results.append(record)
    return results


def _dump_records(records: Sequence[JsonRecord]) -> str:
    return "".join(json.dumps(r, ensure_ascii=False) + "\n" for r in records)


def _matches(record: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    return all(record.get(k) == v for k, v in filters.items())


def read_jsonl(path: str | Path, filters: Mapping[str, Any] | None = None) -> list[JsonRecord]:
    """Read JSON objects from a JSONL file, optionally filtered by equality.

    A missing file reads as an empty table.

    Args:
        path: Path to the JSONL file
        filters: Field/value pairs every returned record must match

    Returns:
        List of raw records in file order
    """
    path = Path(path)
    if not path.exists():
        return []
    with FileLock(lock_path_for(path)):
        records = _read_records(path)
    if filters:
        return [r for r in records if _matches(r, filters)]
    return records


def upsert_jsonl(
    path: str | Path,
    record: JsonRecord,
    conflict_key: Sequence[str],
    guard: Callable[[JsonRecord, JsonRecord], None] | None = None,
) -> bool:
    """Insert or replace a record keyed by conflict_key, atomically.

    The whole table is rewritten under the file lock, so concurrent writers
    for the same key serialise and the last one wins.

    Args:
        path: Path to the JSONL file
        record: Record to store
        conflict_key: Field names that identify a record
        guard: Optional callback (existing, incoming) that may raise to
            refuse the replacement

    Returns:
        True if a new record was created, False if one was replaced
    """
    path = Path(path)
    key = {k: record[k] for k in conflict_key}
    path.parent.mkdir(parents=True, exist_ok=True)
    with FileLock(lock_path_for(path)):
        records = _read_records(path)
        created = True
        for i, existing in enumerate(records):
            if _matches(existing, key):
                if guard is not None:
                    guard(existing, record)
                records[i] = dict(record)
                created = False
                break
        if created:
            records.append(dict(record))
        _write_atomic(path, _dump_records(records))
    return created


def delete_jsonl(path: str | Path, filters: Mapping[str, Any]) -> int:
    """Delete every record matching filters.

    Returns:
        Number of records removed
    """
    path = Path(path)
    if not path.exists():
        return 0
    with FileLock(lock_path_for(path)):
        records = _read_records(path)
        kept = [r for r in records if not _matches(r, filters)]
        removed = len(records) - len(kept)
        if removed:
            _write_atomic(path, _dump_records(kept))
    return removed

"""Local tally stores backed by a durable key-value store.

Each tracker owns one storage key and persists its whole counter set on
every write. Storage is best-effort: read failures and malformed payloads
load as an empty tracker, and write failures are logged and swallowed so
counting keeps working without durable storage.

Persisted payloads (JSON strings):
    boss tracker      {"counts": {"<column>": n}}
    class-mod tracker {"counts": {"<rarity>-<character>": n},
                       "activeColumn": int | null,
                       "matrix": [[n] * 4] * 4}
"""

import json
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, ValidationError, field_validator

from vaultdrops.analyst.stats import percent
from vaultdrops.common.catalog import slugify
from vaultdrops.common.logging import get_logger
from vaultdrops.common.models import (
    CHARACTERS,
    RARITIES,
    cell_key,
    is_index_key,
    parse_cell_key,
)
from vaultdrops.common.persistence import read_json, update_json

logger = get_logger(__name__)

BOSS_KEY_PREFIX = "bl4-bosstracker-"
CLASSMOD_KEY = "bl4-loot-tracker-classmods-v12"
MATRIX_SIZE = len(CHARACTERS)

_STORAGE_ERRORS = (OSError, ValueError, TypeError)


class KeyValueStore(Protocol):
    """String key -> string value store with localStorage semantics."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """In-process store; nothing survives the process."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._items: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class JsonFileKeyValueStore:
    """Key-value store kept as one JSON object file.

    Writes are read-modify-write under a file lock and replace the file
    atomically, so several processes can share one file.

    Raises (from every method):
        OSError: If the file or its lock cannot be accessed
        ValueError: If the file exists but is not valid JSON (reads only)
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def get_item(self, key: str) -> str | None:
        if not self._path.exists():
            return None
        data = read_json(self._path)
        if not isinstance(data, dict):
            raise ValueError(f"{self._path} does not contain a JSON object")
        value = data.get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        update_json(self._path, lambda data: data.__setitem__(key, value))

    def remove_item(self, key: str) -> None:
        update_json(self._path, lambda data: data.pop(key, None))


class BossTallyState(BaseModel):
    counts: dict[str, NonNegativeInt] = Field(default_factory=dict)


class ClassModTallyState(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    counts: dict[str, NonNegativeInt] = Field(default_factory=dict)
    active_column: int | None = Field(default=None, alias="activeColumn")
    matrix: list[list[NonNegativeInt]] = Field(
        default_factory=lambda: [[0] * MATRIX_SIZE for _ in range(MATRIX_SIZE)]
    )

    @field_validator("matrix")
    @classmethod
    def validate_matrix_shape(cls, v: list[list[int]]) -> list[list[int]]:
        if len(v) != MATRIX_SIZE or any(len(row) != MATRIX_SIZE for row in v):
            raise ValueError(f"matrix must be {MATRIX_SIZE}x{MATRIX_SIZE}")
        return v

    @field_validator("active_column")
    @classmethod
    def validate_active_column(cls, v: int | None) -> int | None:
        if v is not None and not 0 <= v < MATRIX_SIZE:
            raise ValueError(f"activeColumn must be between 0 and {MATRIX_SIZE - 1}")
        return v


class _PersistedTally:
    """Shared load/save plumbing for one storage key."""

    def __init__(self, store: KeyValueStore, storage_key: str) -> None:
        self._store = store
        self._storage_key = storage_key

    @property
    def storage_key(self) -> str:
        return self._storage_key

    def _read_raw(self) -> str | None:
        try:
            return self._store.get_item(self._storage_key)
        except _STORAGE_ERRORS as e:
            logger.warning(
                "Local storage read failed", {"key": self._storage_key, "error": str(e)}
            )
            return None

    def _write_raw(self, payload: str) -> None:
        try:
            self._store.set_item(self._storage_key, payload)
        except _STORAGE_ERRORS as e:
            logger.warning(
                "Local storage write failed", {"key": self._storage_key, "error": str(e)}
            )


class BossTallyStore(_PersistedTally):
    """Per-boss counters, one per outcome column.

    Column 0 is the "No drop" baseline; every other column is a dedicated
    drop. Counts never go below zero.

    Example:
        >>> store = BossTallyStore(MemoryKeyValueStore(), "splaszone", 4)
        >>> store.increment(1)
        1
        >>> store.increment(0, -1)
        0
        >>> store.total_trials
        1
    """

    def __init__(self, store: KeyValueStore, slug: str, column_count: int) -> None:
        if column_count < 1:
            raise ValueError("column_count must be at least 1")
        super().__init__(store, f"{BOSS_KEY_PREFIX}{slugify(slug)}")
        self._column_count = column_count
        self._counts: dict[int, int] = self.load()

    @property
    def column_count(self) -> int:
        return self._column_count

    def load(self) -> dict[int, int]:
        """Restore persisted counts; anything unreadable loads as empty."""
        raw = self._read_raw()
        if raw is None:
            return {}
        try:
            state = BossTallyState.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding malformed tally payload", {"key": self._storage_key})
            return {}

        counts: dict[int, int] = {}
        for key, value in state.counts.items():
            if is_index_key(key) and int(key) < self._column_count and value:
                counts[int(key)] = value
        return counts

    def _check_column(self, column: int) -> None:
        if not 0 <= column < self._column_count:
            raise IndexError(f"Column {column} out of range (0..{self._column_count - 1})")

    def count(self, column: int) -> int:
        self._check_column(column)
        return self._counts.get(column, 0)

    def increment(self, column: int, delta: int = 1) -> int:
        """Apply delta to a column, clamped at zero, and persist.

        Returns:
            The column's new count
        """
        self._check_column(column)
        new_value = max(0, self._counts.get(column, 0) + delta)
        self._counts[column] = new_value
        self._save()
        return new_value

    def reset(self) -> None:
        self._counts = {}
        self._save()

    def _save(self) -> None:
        state = BossTallyState(counts={str(k): v for k, v in self._counts.items()})
        self._write_raw(state.model_dump_json())

    @property
    def counts(self) -> list[int]:
        return [self._counts.get(i, 0) for i in range(self._column_count)]

    @property
    def total_trials(self) -> int:
        return sum(self._counts.values())

    @property
    def dedicated_total(self) -> int:
        """Trials that dropped any dedicated item (every column but 0)."""
        return sum(v for k, v in self._counts.items() if k != 0)

    def snapshot(self) -> dict[str, int]:
        """Cell-key -> count mapping in the wire format of a submission."""
        return {str(i): v for i, v in enumerate(self.counts)}


class ClassModTallyStore(_PersistedTally):
    """Class-mod tracker: rarity x character grid plus a played -> dropped matrix.

    When an active (played) character is set, each rarity tally for a
    dropped character also moves matrix[played][dropped] by the same delta.
    """

    def __init__(self, store: KeyValueStore) -> None:
        super().__init__(store, CLASSMOD_KEY)
        self._state = self.load()

    def load(self) -> ClassModTallyState:
        raw = self._read_raw()
        if raw is None:
            return ClassModTallyState()
        try:
            state = ClassModTallyState.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding malformed class-mod payload", {"key": self._storage_key})
            return ClassModTallyState()

        valid_counts: dict[str, int] = {}
        for key, value in state.counts.items():
            try:
                row, col = parse_cell_key(key)
            except ValueError:
                continue
            if row < len(RARITIES) and col < len(CHARACTERS):
                valid_counts[key] = value
        state.counts = valid_counts
        return state

    @staticmethod
    def _check(index: int, size: int, what: str) -> None:
        if not 0 <= index < size:
            raise IndexError(f"{what} {index} out of range (0..{size - 1})")

    @property
    def active_column(self) -> int | None:
        return self._state.active_column

    def set_active_column(self, column: int | None) -> None:
        if column is not None:
            self._check(column, len(CHARACTERS), "Character")
        self._state.active_column = column
        self._save()

    def count(self, rarity: int, character: int) -> int:
        self._check(rarity, len(RARITIES), "Rarity")
        self._check(character, len(CHARACTERS), "Character")
        return self._state.counts.get(cell_key(rarity, character), 0)

    def increment(self, rarity: int, character: int, delta: int = 1) -> int:
        """Apply delta to a rarity cell (and the active matrix cell), then persist.

        Returns:
            The rarity cell's new count
        """
        self._check(rarity, len(RARITIES), "Rarity")
        self._check(character, len(CHARACTERS), "Character")
        key = cell_key(rarity, character)
        new_value = max(0, self._state.counts.get(key, 0) + delta)
        self._state.counts[key] = new_value
        active = self._state.active_column
        if active is not None:
            row = self._state.matrix[active]
            row[character] = max(0, row[character] + delta)
        self._save()
        return new_value

    def increment_matrix(self, played: int, dropped: int, delta: int = 1) -> int:
        self._check(played, MATRIX_SIZE, "Character")
        self._check(dropped, MATRIX_SIZE, "Character")
        row = self._state.matrix[played]
        row[dropped] = max(0, row[dropped] + delta)
        self._save()
        return row[dropped]

    def reset(self) -> None:
        self._state = ClassModTallyState()
        self._save()

    def _save(self) -> None:
        self._write_raw(json.dumps(self._state.model_dump(by_alias=True)))

    def column_totals(self) -> list[int]:
        return [
            sum(self._state.counts.get(cell_key(r, c), 0) for r in range(len(RARITIES)))
            for c in range(len(CHARACTERS))
        ]

    @property
    def grand_total(self) -> int:
        return sum(self.column_totals())

    def rarity_mix(self, character: int) -> list[tuple[str, int]]:
        """(rarity, count) pairs for one dropped character."""
        self._check(character, len(CHARACTERS), "Character")
        return [
            (rarity, self._state.counts.get(cell_key(ri, character), 0))
            for ri, rarity in enumerate(RARITIES)
        ]

    def loot_share(self, character: int) -> float:
        """Percent of all logged class mods that dropped for one character."""
        self._check(character, len(CHARACTERS), "Character")
        return percent(self.column_totals()[character], self.grand_total)

    def matrix(self) -> list[list[int]]:
        return [list(row) for row in self._state.matrix]

    def matrix_snapshot(self) -> dict[str, int]:
        """Played -> dropped matrix in the "i-j" wire format of a submission."""
        return {
            cell_key(i, j): value
            for i, row in enumerate(self._state.matrix)
            for j, value in enumerate(row)
        }

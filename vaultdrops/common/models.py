from datetime import UTC, datetime
from functools import partial
from typing import Self

from pydantic import BaseModel, Field, NonNegativeInt, field_validator, model_validator

from vaultdrops.analyst.stats import ConfidenceEstimate

# Helper for timezone-aware timestamps
_utc_now = partial(datetime.now, tz=UTC)

NO_DROP = "No drop"
CHARACTERS = ["Vex", "Rafa", "Amon", "Harlowe"]
RARITIES = ["Common", "Uncommon", "Rare", "Epic", "Legendary"]
CLASSMOD_TRACKER_ID = "classmods"

SUBMISSION_CONFLICT_KEY = ("tracker_id", "client_id")


def is_index_key(key: str) -> bool:
    """True for keys made only of ASCII digits, the ones int() accepts."""
    return key.isascii() and key.isdigit()


def cell_key(row: int, column: int) -> str:
    """Key for a (row, column) cell, e.g. (2, 1) -> "2-1"."""
    return f"{row}-{column}"


def parse_cell_key(key: str) -> tuple[int, int]:
    """Inverse of cell_key.

    Raises:
        ValueError: If key is not "<row>-<column>" with non-negative ints
    """
    row_str, sep, col_str = key.partition("-")
    if not sep or not is_index_key(row_str) or not is_index_key(col_str):
        raise ValueError(f"Invalid cell key: {key!r}")
    return int(row_str), int(col_str)


class Boss(BaseModel):
    name: str
    slug: str
    drops: list[str]
    tracker_id: str | None = None

    @property
    def columns(self) -> list[str]:
        """Outcome columns with the "No drop" baseline at index 0."""
        return [NO_DROP, *self.drops]


class SubmissionRecord(BaseModel):
    """One client's published snapshot of a tracker.

    At most one live record exists per (tracker_id, client_id); each publish
    replaces the previous one.
    """

    tracker_id: str = Field(min_length=1)
    client_id: str = Field(min_length=1)
    counts_snapshot: dict[str, NonNegativeInt]
    total_trials: NonNegativeInt
    submitted_at: datetime = Field(default_factory=_utc_now)

    @field_validator("submitted_at")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        """Treat naive timestamps as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v

    @model_validator(mode="after")
    def check_total(self) -> Self:
        """total_trials is denormalized and must equal the snapshot sum."""
        expected = sum(self.counts_snapshot.values())
        if self.total_trials != expected:
            raise ValueError(
                f"total_trials ({self.total_trials}) does not match snapshot sum ({expected})"
            )
        return self

    @classmethod
    def from_counts(
        cls, tracker_id: str, client_id: str, counts: dict[str, int]
    ) -> "SubmissionRecord":
        return cls(
            tracker_id=tracker_id,
            client_id=client_id,
            counts_snapshot=dict(counts),
            total_trials=sum(counts.values()),
        )


class CellEstimate(BaseModel):
    label: str
    count: int
    trials: int
    estimate: ConfidenceEstimate


class BossAggregate(BaseModel):
    """Community totals for a boss tracker, re-derived from live records."""

    tracker_id: str
    columns: list[str]
    counts: list[int]
    total_trials: int
    cells: list[CellEstimate]
    dedicated: CellEstimate
    submitters: int
    skipped_records: int = 0


class MatrixRow(BaseModel):
    label: str
    trials: int
    cells: list[CellEstimate]


class MatrixAggregate(BaseModel):
    """Community played -> dropped matrix; rates are conditional on the row."""

    tracker_id: str
    labels: list[str]
    matrix: list[list[int]]
    rows: list[MatrixRow]
    total_trials: int
    submitters: int
    skipped_records: int = 0

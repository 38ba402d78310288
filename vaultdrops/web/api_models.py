"""Pydantic API models for the community service endpoints."""

from pydantic import BaseModel, Field, NonNegativeInt

from vaultdrops.common.models import BossAggregate, MatrixAggregate


class SubmissionRequest(BaseModel):
    """Request model for publishing a client's snapshot."""

    tracker_id: str = Field(min_length=1)
    client_id: str = Field(min_length=1)
    counts_snapshot: dict[str, NonNegativeInt]


class SubmissionResponse(BaseModel):
    tracker_id: str
    client_id: str
    counts_snapshot: dict[str, int]
    total_trials: int
    submitted_at: str


class DeleteResponse(BaseModel):
    removed: int


class BossResponse(BaseModel):
    name: str
    slug: str
    columns: list[str]
    tracker_id: str | None


class BossAggregateResponse(BaseModel):
    """Aggregate plus staleness; a failed refresh still returns the last good one."""

    aggregate: BossAggregate | None
    stale: bool = False
    error: str | None = None


class MatrixAggregateResponse(BaseModel):
    aggregate: MatrixAggregate | None
    stale: bool = False
    error: str | None = None

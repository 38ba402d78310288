"""Result values returned across the core boundary.

Remote-facing operations never raise to their caller; they return one of
these results carrying either a value or a CoreError.
"""

from dataclasses import dataclass
from enum import StrEnum

from vaultdrops.common.models import BossAggregate, MatrixAggregate, SubmissionRecord


class ErrorKind(StrEnum):
    EMPTY_SUBMISSION = "EmptySubmission"
    MISSING_TRACKER_ID = "MissingTrackerId"
    PUBLISH_FAILED = "PublishFailed"
    AGGREGATE_FETCH_FAILED = "AggregateFetchFailed"


@dataclass(frozen=True)
class CoreError:
    kind: ErrorKind
    message: str

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


@dataclass(frozen=True)
class PublishResult:
    record: SubmissionRecord | None = None
    error: CoreError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class AggregateResult:
    """Aggregate for one tracker.

    On a failed fetch, aggregate holds the last good aggregate for the
    tracker (or None) and stale is True.
    """

    aggregate: BossAggregate | MatrixAggregate | None = None
    error: CoreError | None = None
    stale: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

"""Community aggregation of Submission Records.

Every aggregate is re-derived from the records visible at fetch time: the
records are decoded, summed cell by cell, and each cell is run through the
Wilson estimator. Nothing is patched incrementally, so replacing or
removing a record is reflected on the next fetch.

Shapes:
    Boss tracker: columns ["No drop", *drops]. Each column's rate is its sum
        over the overall trial total; "any dedicated drop" sums every
        column except "No drop".
    Matrix tracker: rows are the character played, columns the character
        the class mod dropped for. Each cell's rate is conditional on its
        row total.

Records that fail validation are skipped and counted, never fatal.
"""

from collections.abc import Iterable, Sequence

import httpx
from pydantic import ValidationError

from vaultdrops.analyst.stats import DEFAULT_Z, wilson_interval
from vaultdrops.common.logging import get_logger
from vaultdrops.common.models import (
    CHARACTERS,
    BossAggregate,
    CellEstimate,
    MatrixAggregate,
    MatrixRow,
    SubmissionRecord,
    is_index_key,
    parse_cell_key,
)
from vaultdrops.community.remote import RemoteStore, RemoteStoreError
from vaultdrops.community.results import AggregateResult, CoreError, ErrorKind

logger = get_logger(__name__)

DEDICATED_LABEL = "Any dedicated drop"


def decode_records(
    raw_records: Iterable[dict], tracker_id: str
) -> tuple[list[SubmissionRecord], int]:
    """Validate raw remote records.

    Returns:
        (valid records for tracker_id, number skipped)
    """
    records: list[SubmissionRecord] = []
    skipped = 0
    for raw in raw_records:
        try:
            record = SubmissionRecord.model_validate(raw)
        except ValidationError as e:
            skipped += 1
            logger.warning(
                "Skipping invalid submission",
                {"tracker_id": tracker_id, "errors": e.error_count()},
            )
            continue
        if record.tracker_id != tracker_id:
            skipped += 1
            continue
        records.append(record)
    return records, skipped


def decode_matrix(record: SubmissionRecord, size: int) -> list[list[int]] | None:
    """Decode an "i-j" keyed snapshot into a dense size x size matrix.

    Returns:
        The matrix, or None if any key is malformed or out of range
    """
    matrix = [[0] * size for _ in range(size)]
    for key, value in record.counts_snapshot.items():
        try:
            row, col = parse_cell_key(key)
        except ValueError:
            return None
        if row >= size or col >= size:
            return None
        matrix[row][col] = value
    return matrix


def sum_boss_counts(
    records: Iterable[SubmissionRecord], column_count: int
) -> tuple[list[int], int]:
    """Sum column counts across records.

    Keys must be column indices; records with any other key are not this
    tracker's shape and should be filtered before calling.

    Returns:
        (per-column sums, summed total_trials)
    """
    totals = [0] * column_count
    trials = 0
    for record in records:
        for key, value in record.counts_snapshot.items():
            totals[int(key)] += value
        trials += record.total_trials
    return totals, trials


def sum_matrix_counts(matrices: Iterable[Sequence[Sequence[int]]], size: int) -> list[list[int]]:
    totals = [[0] * size for _ in range(size)]
    for matrix in matrices:
        for i in range(size):
            for j in range(size):
                totals[i][j] += matrix[i][j]
    return totals


def _fits_columns(record: SubmissionRecord, column_count: int) -> bool:
    return all(is_index_key(k) and int(k) < column_count for k in record.counts_snapshot)


class CommunityAggregator:
    """Computes community drop rates from every live submission.

    Keeps the last successful aggregate per tracker so a failed fetch can
    still hand back something to display.

    Args:
        remote: Store implementing upsert/select.
        table: Remote table holding submissions.
        z: Normal quantile for the Wilson intervals.
    """

    def __init__(self, remote: RemoteStore, table: str = "submissions", z: float = DEFAULT_Z):
        self._remote = remote
        self._table = table
        self._z = z
        self._last: dict[str, BossAggregate | MatrixAggregate] = {}

    def last_aggregate(self, tracker_id: str) -> BossAggregate | MatrixAggregate | None:
        return self._last.get(tracker_id)

    async def _fetch(self, tracker_id: str) -> list[dict] | CoreError:
        try:
            return await self._remote.select(self._table, {"tracker_id": tracker_id})
        except (RemoteStoreError, httpx.HTTPError) as e:
            logger.error("Aggregate fetch failed", {"tracker_id": tracker_id, "error": str(e)})
            return CoreError(ErrorKind.AGGREGATE_FETCH_FAILED, str(e))

    def _failed(self, tracker_id: str, error: CoreError) -> AggregateResult:
        return AggregateResult(aggregate=self._last.get(tracker_id), error=error, stale=True)

    def _cell(self, label: str, count: int, trials: int) -> CellEstimate:
        estimate = wilson_interval(count, trials, self._z)
        return CellEstimate(label=label, count=count, trials=trials, estimate=estimate)

    async def aggregate_boss(self, tracker_id: str, columns: Sequence[str]) -> AggregateResult:
        """Aggregate a boss tracker.

        Args:
            tracker_id: Remote tracker identity
            columns: Outcome labels, "No drop" first

        Returns:
            AggregateResult with a BossAggregate, or AggregateFetchFailed
            plus the previous aggregate
        """
        raw = await self._fetch(tracker_id)
        if isinstance(raw, CoreError):
            return self._failed(tracker_id, raw)

        records, skipped = decode_records(raw, tracker_id)
        usable = [r for r in records if _fits_columns(r, len(columns))]
        skipped += len(records) - len(usable)

        counts, trials = sum_boss_counts(usable, len(columns))
        dedicated = sum(counts[1:])
        aggregate = BossAggregate(
            tracker_id=tracker_id,
            columns=list(columns),
            counts=counts,
            total_trials=trials,
            cells=[self._cell(label, n, trials) for label, n in zip(columns, counts, strict=True)],
            dedicated=self._cell(DEDICATED_LABEL, dedicated, trials),
            submitters=len(usable),
            skipped_records=skipped,
        )
        self._last[tracker_id] = aggregate
        logger.debug(
            "Aggregated boss tracker",
            {"tracker_id": tracker_id, "submitters": len(usable), "total_trials": trials},
        )
        return AggregateResult(aggregate=aggregate)

    async def aggregate_matrix(
        self, tracker_id: str, labels: Sequence[str] = tuple(CHARACTERS)
    ) -> AggregateResult:
        """Aggregate a played -> dropped matrix tracker.

        Args:
            tracker_id: Remote tracker identity
            labels: Row/column labels; the matrix is len(labels) square

        Returns:
            AggregateResult with a MatrixAggregate, or AggregateFetchFailed
            plus the previous aggregate
        """
        raw = await self._fetch(tracker_id)
        if isinstance(raw, CoreError):
            return self._failed(tracker_id, raw)

        size = len(labels)
        records, skipped = decode_records(raw, tracker_id)
        matrices = []
        for record in records:
            matrix = decode_matrix(record, size)
            if matrix is None:
                skipped += 1
                logger.warning(
                    "Skipping submission with invalid matrix shape",
                    {"tracker_id": tracker_id, "client_id": record.client_id},
                )
                continue
            matrices.append(matrix)

        totals = sum_matrix_counts(matrices, size)
        rows = []
        for i, label in enumerate(labels):
            row_trials = sum(totals[i])
            rows.append(
                MatrixRow(
                    label=label,
                    trials=row_trials,
                    cells=[
                        self._cell(labels[j], totals[i][j], row_trials) for j in range(size)
                    ],
                )
            )

        aggregate = MatrixAggregate(
            tracker_id=tracker_id,
            labels=list(labels),
            matrix=totals,
            rows=rows,
            total_trials=sum(r.trials for r in rows),
            submitters=len(matrices),
            skipped_records=skipped,
        )
        self._last[tracker_id] = aggregate
        return AggregateResult(aggregate=aggregate)

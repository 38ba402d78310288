"""FastAPI application for the VaultDrops community service.

Hosts the shared submission table and serves community aggregates:

- Submission upsert, listing and removal
- Boss catalog
- Community drop rates per boss and for the class-mod matrix

Architecture:
    Services are created once in the lifespan handler and stored on
    app.state:
    - RemoteStore: where submissions live (JSONL table or Supabase)
    - PublishService: validates and upserts submissions
    - CommunityAggregator: re-derives aggregates from live submissions

Data flow:
    1. A client POSTs its snapshot; it replaces that client's earlier one
    2. Aggregate endpoints fetch every live submission for the tracker
    3. Each cell is summed and run through the Wilson estimator
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query, Request
from starlette.middleware.base import BaseHTTPMiddleware

from vaultdrops.common.catalog import find_boss, load_catalog
from vaultdrops.common.config import Settings
from vaultdrops.common.logging import generate_id, get_logger, set_request_id
from vaultdrops.common.models import CLASSMOD_TRACKER_ID, Boss
from vaultdrops.common.observability import init_logfire, is_logfire_enabled
from vaultdrops.community.aggregator import CommunityAggregator, decode_records
from vaultdrops.community.publish import PublishService
from vaultdrops.community.remote import RemoteStoreError, create_remote_store
from vaultdrops.community.results import AggregateResult, ErrorKind
from vaultdrops.web.api_models import (
    BossAggregateResponse,
    BossResponse,
    DeleteResponse,
    MatrixAggregateResponse,
    SubmissionRequest,
    SubmissionResponse,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize settings, catalog and services on startup."""
    settings = Settings()
    app.state.settings = settings
    init_logfire(settings)

    app.state.bosses = load_catalog(settings.catalog_path)
    app.state.remote = create_remote_store(settings)
    app.state.publish_service = PublishService(app.state.remote, table=settings.remote.table)
    app.state.aggregator = CommunityAggregator(
        app.state.remote, table=settings.remote.table, z=settings.confidence_z
    )
    logger.info(
        "Community service started",
        {
            "backend": settings.remote.backend,
            "bosses": len(app.state.bosses),
            "logfire": is_logfire_enabled(),
        },
    )

    yield


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        set_request_id(request.headers.get("x-request-id") or generate_id())
        try:
            return await call_next(request)
        finally:
            set_request_id(None)


app = FastAPI(title="VaultDrops Community", lifespan=lifespan)
app.add_middleware(RequestIdMiddleware)


def _get_boss(request: Request, slug: str) -> Boss:
    boss = find_boss(request.app.state.bosses, slug)
    if boss is None:
        raise HTTPException(status_code=404, detail=f"No boss with slug '{slug}'")
    return boss


def _raise_if_unavailable(result: AggregateResult) -> None:
    if result.error is not None and result.aggregate is None:
        raise HTTPException(status_code=502, detail=str(result.error))


@app.post("/api/submissions", response_model=SubmissionResponse)
async def submit(submission: SubmissionRequest, request: Request) -> SubmissionResponse:
    """Upsert a client's snapshot for a tracker.

    Raises:
        HTTPException: 400 if the snapshot has no runs
        HTTPException: 502 if the store rejects the write
    """
    result = await request.app.state.publish_service.publish(
        submission.tracker_id, submission.counts_snapshot, submission.client_id
    )
    if result.error is not None:
        status = 502 if result.error.kind == ErrorKind.PUBLISH_FAILED else 400
        raise HTTPException(status_code=status, detail=str(result.error))

    record = result.record
    return SubmissionResponse(
        tracker_id=record.tracker_id,
        client_id=record.client_id,
        counts_snapshot=record.counts_snapshot,
        total_trials=record.total_trials,
        submitted_at=record.submitted_at.isoformat(),
    )


@app.get("/api/submissions", response_model=list[SubmissionResponse])
async def list_submissions(
    request: Request, tracker_id: str = Query(min_length=1)
) -> list[SubmissionResponse]:
    """List live submissions for one tracker, skipping invalid records."""
    settings = request.app.state.settings
    try:
        raw = await request.app.state.remote.select(
            settings.remote.table, {"tracker_id": tracker_id}
        )
    except RemoteStoreError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e

    records, _ = decode_records(raw, tracker_id)
    return [
        SubmissionResponse(
            tracker_id=r.tracker_id,
            client_id=r.client_id,
            counts_snapshot=r.counts_snapshot,
            total_trials=r.total_trials,
            submitted_at=r.submitted_at.isoformat(),
        )
        for r in records
    ]


@app.delete("/api/submissions/{tracker_id}/{client_id}", response_model=DeleteResponse)
async def delete_submission(tracker_id: str, client_id: str, request: Request) -> DeleteResponse:
    """Remove a client's submission; the next aggregate no longer includes it."""
    remote = request.app.state.remote
    if not hasattr(remote, "delete"):
        raise HTTPException(status_code=405, detail="Configured store does not support deletes")
    try:
        removed = await remote.delete(
            request.app.state.settings.remote.table,
            {"tracker_id": tracker_id, "client_id": client_id},
        )
    except RemoteStoreError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e
    if removed == 0:
        raise HTTPException(status_code=404, detail="Submission not found")
    logger.info("Deleted submission", {"tracker_id": tracker_id, "client_id": client_id})
    return DeleteResponse(removed=removed)


@app.get("/api/bosses", response_model=list[BossResponse])
async def list_bosses(request: Request) -> list[BossResponse]:
    return [
        BossResponse(name=b.name, slug=b.slug, columns=b.columns, tracker_id=b.tracker_id)
        for b in request.app.state.bosses
    ]


@app.get("/api/bosses/{slug}/aggregate", response_model=BossAggregateResponse)
async def boss_aggregate(slug: str, request: Request) -> BossAggregateResponse:
    """Community drop rates for one boss.

    Raises:
        HTTPException: 404 if the boss is unknown
        HTTPException: 400 if the boss has no tracker id
        HTTPException: 502 if the fetch failed and nothing was cached
    """
    boss = _get_boss(request, slug)
    if not boss.tracker_id:
        raise HTTPException(
            status_code=400, detail=f"{ErrorKind.MISSING_TRACKER_ID}: {boss.name}"
        )
    result = await request.app.state.aggregator.aggregate_boss(boss.tracker_id, boss.columns)
    _raise_if_unavailable(result)
    return BossAggregateResponse(
        aggregate=result.aggregate,
        stale=result.stale,
        error=str(result.error) if result.error else None,
    )


@app.get("/api/classmods/aggregate", response_model=MatrixAggregateResponse)
async def classmods_aggregate(request: Request) -> MatrixAggregateResponse:
    result = await request.app.state.aggregator.aggregate_matrix(CLASSMOD_TRACKER_ID)
    _raise_if_unavailable(result)
    return MatrixAggregateResponse(
        aggregate=result.aggregate,
        stale=result.stale,
        error=str(result.error) if result.error else None,
    )

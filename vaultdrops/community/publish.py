"""Publish protocol: push a local snapshot as this client's one submission.

publish() only reads local counts. It returns a PublishResult and never
triggers a re-fetch itself; callers that want fresh community numbers call
CommunityAggregator next.
"""

import httpx
from pydantic import ValidationError

from vaultdrops.common.logging import get_logger
from vaultdrops.common.models import (
    CLASSMOD_TRACKER_ID,
    SUBMISSION_CONFLICT_KEY,
    Boss,
    SubmissionRecord,
)
from vaultdrops.community.remote import RemoteStore, RemoteStoreError
from vaultdrops.community.results import CoreError, ErrorKind, PublishResult
from vaultdrops.tracker.local_store import BossTallyStore, ClassModTallyStore

logger = get_logger(__name__)


class PublishService:
    """Upserts Submission Records keyed by (tracker_id, client_id).

    Args:
        remote: Store implementing upsert/select.
        table: Remote table holding submissions.

    Example:
        >>> service = PublishService(JsonlRemoteStore("data"))
        >>> result = await service.publish("splaszone", {"0": 7, "1": 2}, client_id)
        >>> result.ok
        True
    """

    def __init__(self, remote: RemoteStore, table: str = "submissions") -> None:
        self._remote = remote
        self._table = table

    async def publish(
        self, tracker_id: str | None, local_counts: dict[str, int], client_id: str
    ) -> PublishResult:
        """Publish a snapshot, replacing this client's previous one.

        Args:
            tracker_id: Remote identity of the tracker (None if not wired)
            local_counts: Cell key -> count snapshot
            client_id: Stable client identifier

        Returns:
            PublishResult with the stored record, or an error of kind
            EmptySubmission, MissingTrackerId or PublishFailed
        """
        if sum(local_counts.values()) == 0:
            return PublishResult(
                error=CoreError(ErrorKind.EMPTY_SUBMISSION, "No runs recorded yet")
            )
        if not tracker_id:
            return PublishResult(
                error=CoreError(
                    ErrorKind.MISSING_TRACKER_ID, "Tracker has no remote identity configured"
                )
            )

        try:
            record = SubmissionRecord.from_counts(tracker_id, client_id, local_counts)
        except ValidationError as e:
            return PublishResult(error=CoreError(ErrorKind.PUBLISH_FAILED, str(e)))

        try:
            await self._remote.upsert(
                self._table, record.model_dump(mode="json"), SUBMISSION_CONFLICT_KEY
            )
        except (RemoteStoreError, httpx.HTTPError) as e:
            logger.error(
                "Publish failed",
                {"tracker_id": tracker_id, "client_id": client_id, "error": str(e)},
            )
            return PublishResult(error=CoreError(ErrorKind.PUBLISH_FAILED, str(e)))

        logger.info(
            "Published submission",
            {
                "tracker_id": tracker_id,
                "client_id": client_id,
                "total_trials": record.total_trials,
            },
        )
        return PublishResult(record=record)

    async def publish_boss(
        self, boss: Boss, store: BossTallyStore, client_id: str
    ) -> PublishResult:
        return await self.publish(boss.tracker_id, store.snapshot(), client_id)

    async def publish_class_mods(self, store: ClassModTallyStore, client_id: str) -> PublishResult:
        return await self.publish(CLASSMOD_TRACKER_ID, store.matrix_snapshot(), client_id)

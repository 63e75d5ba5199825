import logging
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from productsync.models.sync_progress import SyncProgress
from productsync.schemas.sync import SyncJob

logger = logging.getLogger(__name__)

PROGRESS_KEY = "product_sync"
_MAX_MERGE_ATTEMPTS = 5


class StaleProgressError(Exception):
    """The persisted job no longer matches what the caller expected to merge into."""

    def __init__(self, field: str, expected: Any, actual: Any):
        super().__init__(f"Sync progress {field} is {actual!r}, expected {expected!r}")
        self.field = field
        self.expected = expected
        self.actual = actual


def _check_expectations(job: SyncJob, expect: Optional[Dict[str, Any]]) -> None:
    if not expect:
        return
    current = job.model_dump(mode="json")
    for field, expected in expect.items():
        if isinstance(expected, Enum):
            expected = expected.value
        if current.get(field) != expected:
            raise StaleProgressError(field, expected, current.get(field))


class ProgressStore:
    """Durable SyncJob record in the control database.

    `merge()` shallow-merges fields into the stored job and is an optimistic
    compare-and-swap on the row version, so two concurrent merges never lose each
    other's fields. With `expect`, the merge only applies if the named fields still
    hold the given values, otherwise StaleProgressError is raised.
    """

    def __init__(self, session_factory: async_sessionmaker, key: str = PROGRESS_KEY):
        self._session_factory = session_factory
        self.key = key

    async def read(self) -> SyncJob:
        async with self._session_factory() as db:
            row = await db.get(SyncProgress, self.key)
            return SyncJob.model_validate(row.data) if row else SyncJob()

    async def merge(self, partial: Dict[str, Any], expect: Optional[Dict[str, Any]] = None) -> SyncJob:
        for attempt in range(1, _MAX_MERGE_ATTEMPTS + 1):
            async with self._session_factory() as db:
                row = await db.get(SyncProgress, self.key)
                current = SyncJob.model_validate(row.data) if row else SyncJob()
                _check_expectations(current, expect)

                merged = SyncJob.model_validate({**current.model_dump(), **partial})
                data = merged.model_dump(mode="json")

                if row is None:
                    db.add(SyncProgress(key=self.key, version=1, data=data))
                    try:
                        await db.commit()
                        return merged
                    except IntegrityError:
                        await db.rollback()
                else:
                    result = await db.execute(
                        update(SyncProgress)
                        .where(SyncProgress.key == self.key, SyncProgress.version == row.version)
                        .values(data=data, version=row.version + 1)
                    )
                    if result.rowcount == 1:
                        await db.commit()
                        return merged
                    await db.rollback()
            logger.debug("Sync progress version conflict on %s (attempt %d), retrying", self.key, attempt)
        raise RuntimeError(f"Could not merge sync progress after {_MAX_MERGE_ATTEMPTS} attempts")

    async def replace(self, job: SyncJob) -> SyncJob:
        return await self.merge(job.model_dump())

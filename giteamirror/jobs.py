"""Persistence for MirrorJob audit and checkpoint records.

Every unit transition into or out of an in-flight state writes a job row.
Batch runs additionally carry ``item_ids`` and an append-only
``completed_item_ids`` list so that an interrupted batch can resume with
exactly the items it had not finished.
"""

from __future__ import annotations

import asyncio
import dataclasses as dc
import datetime as dt
import typing as typ

from sqlalchemy import or_, select, update

from giteamirror.common.time import utcnow
from giteamirror.logging import get_logger, log_info, log_warning
from giteamirror.storage import MirrorJob

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)

type Clock = typ.Callable[[], dt.datetime]

STALE_CHECKPOINT: typ.Final = dt.timedelta(minutes=10)
MAX_JOB_AGE: typ.Final = dt.timedelta(hours=2)

INTERRUPTED_MESSAGE = "Job interrupted and could not be resumed"
COMPLETED_AFTER_RESUME_MESSAGE = "Job completed after resuming"


@dc.dataclass(frozen=True, slots=True)
class ResumePlan:
    """What recovery should do with one interrupted job."""

    job_id: str
    job_type: str
    user_id: str
    remaining_item_ids: tuple[str, ...]

    @property
    def has_work(self) -> bool:
        """Return whether any item still needs processing."""
        return bool(self.remaining_item_ids)


class JobStore:
    """Create and update MirrorJob rows.

    Checkpoint writes are serialised through an :class:`asyncio.Lock` so that
    concurrent executor tasks never lose each other's completed item ids.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Clock = utcnow,
    ) -> None:
        """Store the session factory and clock used for timestamps."""
        self._session_factory = session_factory
        self._clock = clock
        self._lock = asyncio.Lock()

    async def create_job(  # noqa: PLR0913
        self,
        *,
        user_id: str,
        status: str,
        message: str,
        details: str | None = None,
        job_type: str = "mirror",
        repository_id: str | None = None,
        repository_name: str | None = None,
        organization_id: str | None = None,
        organization_name: str | None = None,
        batch_id: str | None = None,
        total_items: int | None = None,
        item_ids: list[str] | None = None,
        in_progress: bool = False,
    ) -> str:
        """Insert a job row and return its id.

        In-progress jobs start with an empty ``completed_item_ids`` list and
        a checkpoint at creation time.
        """
        now = self._clock()
        job = MirrorJob(
            user_id=user_id,
            status=status,
            message=message,
            details=details,
            job_type=job_type,
            repository_id=repository_id,
            repository_name=repository_name,
            organization_id=organization_id,
            organization_name=organization_name,
            batch_id=batch_id,
            total_items=total_items,
            completed_items=0,
            item_ids=item_ids,
            completed_item_ids=[] if in_progress else None,
            in_progress=in_progress,
            started_at=now if in_progress else None,
            last_checkpoint=now if in_progress else None,
            timestamp=now,
        )
        async with self._session_factory() as session, session.begin():
            session.add(job)
            await session.flush()
            return job.id

    async def get(self, job_id: str) -> MirrorJob | None:
        """Return the job with ``job_id``, if any."""
        async with self._session_factory() as session:
            return await session.get(MirrorJob, job_id)

    async def list_jobs(
        self,
        user_id: str,
        *,
        repository_id: str | None = None,
        organization_id: str | None = None,
    ) -> list[MirrorJob]:
        """Return jobs for ``user_id`` oldest first, optionally per unit."""
        stmt = select(MirrorJob).where(MirrorJob.user_id == user_id)
        if repository_id is not None:
            stmt = stmt.where(MirrorJob.repository_id == repository_id)
        if organization_id is not None:
            stmt = stmt.where(MirrorJob.organization_id == organization_id)
        async with self._session_factory() as session:
            rows = await session.scalars(
                stmt.order_by(MirrorJob.timestamp, MirrorJob.id)
            )
            return list(rows.all())

    async def update_progress(  # noqa: PLR0913
        self,
        job_id: str,
        *,
        completed_item_id: str | None = None,
        status: str | None = None,
        message: str | None = None,
        details: str | None = None,
        in_progress: bool | None = None,
        is_completed: bool = False,
    ) -> MirrorJob | None:
        """Checkpoint a job.

        Parameters
        ----------
        job_id
            Job to update.
        completed_item_id
            Item finished since the last checkpoint; appended once.
        status, message, details
            Replacement values, left untouched when ``None``.
        in_progress
            New value for the in-progress flag.
        is_completed
            Stamp ``completed_at`` and clear ``in_progress``.

        Returns
        -------
        MirrorJob | None
            The updated row, or ``None`` when the job does not exist.

        """
        async with self._lock, self._session_factory() as session, session.begin():
            job = await session.get(MirrorJob, job_id)
            if job is None:
                log_warning(logger, "Cannot checkpoint unknown job %s", job_id)
                return None
            now = self._clock()
            if completed_item_id is not None:
                completed = list(job.completed_item_ids or [])
                if completed_item_id not in completed:
                    completed.append(completed_item_id)
                job.completed_item_ids = completed
                job.completed_items = len(completed)
            if status is not None:
                job.status = status
            if message is not None:
                job.message = message
            if details is not None:
                job.details = details
            if in_progress is not None:
                job.in_progress = in_progress
            if is_completed:
                job.in_progress = False
                job.completed_at = now
            job.last_checkpoint = now
            job.timestamp = now
            return job

    async def find_interrupted_jobs(
        self,
        *,
        stale_after: dt.timedelta = STALE_CHECKPOINT,
        max_age: dt.timedelta = MAX_JOB_AGE,
    ) -> list[MirrorJob]:
        """Return in-progress jobs that look abandoned.

        A job is interrupted when it has no checkpoint, its last checkpoint
        is older than ``stale_after``, or it started more than ``max_age``
        ago.
        """
        now = self._clock()
        stmt = (
            select(MirrorJob)
            .where(
                MirrorJob.in_progress.is_(True),
                or_(
                    MirrorJob.last_checkpoint.is_(None),
                    MirrorJob.last_checkpoint < now - stale_after,
                    MirrorJob.started_at < now - max_age,
                ),
            )
            .order_by(MirrorJob.started_at)
        )
        async with self._session_factory() as session:
            return list((await session.scalars(stmt)).all())

    async def resume_interrupted_job(self, job: MirrorJob) -> ResumePlan | None:
        """Decide and record the fate of an interrupted job.

        Returns ``None`` when the job cannot be resumed (it is marked failed),
        a plan without work when every item had already finished (the job is
        marked completed), or a plan listing the remaining item ids.
        """
        if job.item_ids is None or job.completed_item_ids is None:
            await self.update_progress(
                job.id,
                status="failed",
                message=INTERRUPTED_MESSAGE,
                is_completed=True,
            )
            log_warning(logger, "Job %s lacks checkpoint data; marked failed", job.id)
            return None

        done = set(job.completed_item_ids)
        remaining = tuple(item for item in job.item_ids if item not in done)
        plan = ResumePlan(
            job_id=job.id,
            job_type=job.job_type,
            user_id=job.user_id,
            remaining_item_ids=remaining,
        )
        if not remaining:
            await self.update_progress(
                job.id,
                status="mirrored",
                message=COMPLETED_AFTER_RESUME_MESSAGE,
                is_completed=True,
            )
            return plan

        await self.update_progress(
            job.id,
            message=f"Resuming job with {len(remaining)} remaining items",
            in_progress=True,
        )
        log_info(
            logger, "Job %s resumable with %d remaining items", job.id, len(remaining)
        )
        return plan

    async def mark_all_in_progress_failed(
        self, message: str = INTERRUPTED_MESSAGE
    ) -> int:
        """Fail every in-progress job and return how many were changed."""
        now = self._clock()
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(MirrorJob)
                .where(MirrorJob.in_progress.is_(True))
                .values(
                    status="failed",
                    message=message,
                    in_progress=False,
                    completed_at=now,
                    last_checkpoint=now,
                )
            )
        return result.rowcount or 0


__all__ = [
    "COMPLETED_AFTER_RESUME_MESSAGE",
    "INTERRUPTED_MESSAGE",
    "MAX_JOB_AGE",
    "STALE_CHECKPOINT",
    "JobStore",
    "ResumePlan",
]

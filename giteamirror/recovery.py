"""Resume or fail batch jobs abandoned by a previous process.

On start-up (and on demand through the Dramatiq actor) the manager scans
for in-progress jobs that stopped checkpointing, decides each job's fate via
:meth:`~giteamirror.jobs.JobStore.resume_interrupted_job`, and re-enters
:func:`~giteamirror.executor.process_with_resilience` with exactly the items
that had not completed.
"""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import typing as typ

from giteamirror.config import ConfigurationStore
from giteamirror.executor import RetryPolicy, process_with_resilience
from giteamirror.jobs import INTERRUPTED_MESSAGE, STALE_CHECKPOINT
from giteamirror.logging import get_logger, log_info, log_warning
from giteamirror.observability import MirrorEventLogger

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from giteamirror.jobs import ResumePlan
    from giteamirror.operations import ClientFactory, MirrorService
    from giteamirror.storage import Repository

logger = get_logger(__name__)

MIRROR_RECOVERY_POLICY: typ.Final = RetryPolicy(
    concurrency_limit=3, max_retries=2, retry_delay_s=2.0
)
SYNC_RECOVERY_POLICY: typ.Final = RetryPolicy(
    concurrency_limit=5, max_retries=2, retry_delay_s=2.0
)


class JobNotResumableError(RuntimeError):
    """Raised when a specific job cannot be resumed."""

    @classmethod
    def not_found(cls, job_id: str) -> JobNotResumableError:
        """Return an error for an unknown job id."""
        return cls(f"Job {job_id} does not exist")

    @classmethod
    def not_in_progress(cls, job_id: str) -> JobNotResumableError:
        """Return an error for a job that already finished."""
        return cls(f"Job {job_id} is not in progress")

    @classmethod
    def missing_checkpoint(cls, job_id: str) -> JobNotResumableError:
        """Return an error for a job without item checkpoint data."""
        return cls(f"Job {job_id} has no checkpoint data and was marked failed")

    @classmethod
    def missing_configuration(cls, job_id: str, user_id: str) -> JobNotResumableError:
        """Return an error for a job whose owner has no usable configuration."""
        return cls(
            f"Job {job_id} cannot resume: user {user_id} has no active "
            "configuration with credentials"
        )


@dc.dataclass(frozen=True, slots=True)
class RecoveryResult:
    """Outcome of one recovery run."""

    found: int = 0
    resumed: int = 0
    completed: int = 0
    failed: int = 0
    skipped: bool = False


class RecoveryManager:
    """Find interrupted jobs and finish their remaining work.

    A manager-level ``in_progress`` guard prevents overlapping runs inside
    one process.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        service: MirrorService,
        client_factory: ClientFactory,
        stale_after: dt.timedelta = STALE_CHECKPOINT,
    ) -> None:
        """Store collaborators used to resume jobs."""
        self._jobs = service.jobs
        self._configs = ConfigurationStore(session_factory)
        self._service = service
        self._client_factory = client_factory
        self._stale_after = stale_after
        self._events = MirrorEventLogger()
        self.in_progress = False

    async def recover(self) -> RecoveryResult:
        """Resolve every interrupted job once.

        Returns
        -------
        RecoveryResult
            Counts of jobs found, resumed, completed without work and failed.
            ``skipped`` is set when another recovery run was still active.

        """
        if self.in_progress:
            log_info(logger, "Recovery already in progress; skipping")
            return RecoveryResult(skipped=True)

        self.in_progress = True
        try:
            return await self._recover_all()
        finally:
            self.in_progress = False

    async def resume_job(self, job_id: str) -> int:
        """Resume one in-progress job and return how many items were processed.

        Raises
        ------
        JobNotResumableError
            If the job is unknown, finished, lacks checkpoint data or its
            owner has no usable configuration.

        """
        job = await self._jobs.get(job_id)
        if job is None:
            raise JobNotResumableError.not_found(job_id)
        if not job.in_progress:
            raise JobNotResumableError.not_in_progress(job_id)
        plan = await self._jobs.resume_interrupted_job(job)
        if plan is None:
            raise JobNotResumableError.missing_checkpoint(job_id)
        if not plan.has_work:
            return 0
        return await self._resume(plan)

    async def _recover_all(self) -> RecoveryResult:
        jobs = await self._jobs.find_interrupted_jobs(stale_after=self._stale_after)
        resumed = completed = failed = 0
        for job in jobs:
            plan = await self._jobs.resume_interrupted_job(job)
            if plan is None:
                failed += 1
                continue
            if not plan.has_work:
                completed += 1
                continue
            try:
                await self._resume(plan)
            except JobNotResumableError as exc:
                log_warning(logger, "%s", exc)
                await self._jobs.update_progress(
                    plan.job_id,
                    status="failed",
                    message=INTERRUPTED_MESSAGE,
                    details=str(exc),
                    is_completed=True,
                )
                failed += 1
            else:
                resumed += 1

        self._events.log_recovery_completed(len(jobs), resumed, failed)
        return RecoveryResult(
            found=len(jobs), resumed=resumed, completed=completed, failed=failed
        )

    async def _resume(self, plan: ResumePlan) -> int:
        config = await self._configs.get_for_user(plan.user_id)
        if config is None or not config.has_credentials:
            raise JobNotResumableError.missing_configuration(plan.job_id, plan.user_id)

        units = await self._service.repositories.get_many(plan.remaining_item_ids)
        is_sync = plan.job_type == "sync"
        policy = SYNC_RECOVERY_POLICY if is_sync else MIRROR_RECOVERY_POLICY

        async with self._client_factory(config) as ctx:

            async def operation(unit: Repository) -> Repository:
                if is_sync:
                    return await self._service.sync_repository(ctx, unit.id)
                return await self._service.mirror_repository(ctx, unit.id)

            outcomes = await process_with_resilience(
                units,
                operation,
                job_store=self._jobs,
                user_id=plan.user_id,
                job_type=plan.job_type,
                get_item_id=lambda unit: unit.id,
                get_item_name=lambda unit: unit.full_name,
                policy=policy,
                resume_job_id=plan.job_id,
            )
        log_info(
            logger,
            "Resumed job %s: %d items processed, %d failed",
            plan.job_id,
            len(outcomes),
            sum(1 for outcome in outcomes if not outcome.ok),
        )
        return len(outcomes)


__all__ = [
    "MIRROR_RECOVERY_POLICY",
    "SYNC_RECOVERY_POLICY",
    "JobNotResumableError",
    "RecoveryManager",
    "RecoveryResult",
]

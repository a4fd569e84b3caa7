"""Bounded-concurrency map-with-retry over a collection of work items.

Every retrying call site in the engine (units, organizations, issues,
comments, organization creation races) goes through
:func:`process_with_retry` with a :class:`RetryPolicy` instead of a bespoke
loop. Failures are isolated per item: one item exhausting its retries never
aborts or blocks its siblings.

Usage
-----
Mirror a batch of units, three at a time, retrying each failure twice::

    outcomes = await process_with_retry(
        repositories,
        mirror_one,
        policy=RetryPolicy(concurrency_limit=3, max_retries=2, retry_delay_s=2.0),
    )
    failed = [outcome for outcome in outcomes if not outcome.ok]

"""

from __future__ import annotations

import asyncio
import dataclasses as dc
import typing as typ

from giteamirror.logging import get_logger, log_warning
from giteamirror.observability import is_retryable

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from giteamirror.jobs import JobStore

logger = get_logger(__name__)

type Sleeper = typ.Callable[[float], typ.Awaitable[None]]


@dc.dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Concurrency and retry settings for one executor run.

    Attributes
    ----------
    concurrency_limit
        Maximum number of operations in flight at once.
    max_retries
        Additional attempts after the first failure of an item.
    retry_delay_s
        Delay before the first retry.
    backoff
        Double the delay on every further retry.
    retryable
        Predicate deciding whether an error is worth another attempt.

    """

    concurrency_limit: int = 5
    max_retries: int = 3
    retry_delay_s: float = 1.0
    backoff: bool = True
    retryable: typ.Callable[[BaseException], bool] = is_retryable

    def delay_for(self, attempt: int) -> float:
        """Return the delay before re-attempt ``attempt`` (1-based)."""
        if not self.backoff:
            return self.retry_delay_s
        return self.retry_delay_s * 2 ** (attempt - 1)


@dc.dataclass(frozen=True, slots=True)
class ItemOutcome[T, R]:
    """Settled result of one item."""

    item: T
    result: R | None = None
    error: Exception | None = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        """Return whether the item eventually succeeded."""
        return self.error is None


type ProgressCallback[T, R] = typ.Callable[
    [int, int, ItemOutcome[T, R]], typ.Awaitable[None] | None
]
type RetryCallback[T] = typ.Callable[
    [T, Exception, int], typ.Awaitable[None] | None
]
type CheckpointCallback = typ.Callable[[str], typ.Awaitable[None]]


async def _maybe_await(value: typ.Awaitable[None] | None) -> None:
    if value is not None:
        await value


async def _run_hook(
    kind: str, hook: typ.Callable[..., typ.Awaitable[None] | None], *args: object
) -> None:
    """Run a checkpoint, progress or retry hook; failures are only logged."""
    try:
        await _maybe_await(hook(*args))
    except Exception as exc:  # noqa: BLE001 - hooks never fail an item
        log_warning(logger, "Executor %s hook failed: %s", kind, exc, exc_info=exc)


async def process_with_retry[T, R](  # noqa: PLR0913
    items: cabc.Sequence[T],
    operation: typ.Callable[[T], typ.Awaitable[R]],
    *,
    policy: RetryPolicy | None = None,
    on_progress: ProgressCallback[T, R] | None = None,
    on_retry: RetryCallback[T] | None = None,
    get_item_id: typ.Callable[[T], str] | None = None,
    on_checkpoint: CheckpointCallback | None = None,
    sleep: Sleeper = asyncio.sleep,
) -> list[ItemOutcome[T, R]]:
    """Run ``operation`` over ``items`` with bounded concurrency and retries.

    Parameters
    ----------
    items
        Work items, processed in order of submission.
    operation
        Async callable applied to each item.
    policy
        Concurrency and retry settings; defaults to :class:`RetryPolicy()`.
    on_progress
        Called after each item settles with ``(completed, total, outcome)``.
    on_retry
        Called before each re-attempt with ``(item, error, attempt)``.
    get_item_id, on_checkpoint
        When both are given, ``on_checkpoint(item_id)`` runs after each
        successful item so progress survives a restart.
    sleep
        Injected for tests.

    Returns
    -------
    list[ItemOutcome]
        One outcome per item, in input order.

    Notes
    -----
    A hook that raises is logged and ignored; its item keeps its outcome.

    """
    policy = policy or RetryPolicy()
    total = len(items)
    semaphore = asyncio.Semaphore(max(1, policy.concurrency_limit))
    completed = 0

    async def run_item(item: T) -> ItemOutcome[T, R]:
        nonlocal completed
        async with semaphore:
            outcome = await _attempt(item, operation, policy, on_retry, sleep)
            if outcome.ok and get_item_id is not None and on_checkpoint is not None:
                await _run_hook("checkpoint", on_checkpoint, get_item_id(item))
            completed += 1
            if on_progress is not None:
                await _run_hook("progress", on_progress, completed, total, outcome)
            return outcome

    return list(await asyncio.gather(*(run_item(item) for item in items)))


async def _attempt[T, R](
    item: T,
    operation: typ.Callable[[T], typ.Awaitable[R]],
    policy: RetryPolicy,
    on_retry: RetryCallback[T] | None,
    sleep: Sleeper,
) -> ItemOutcome[T, R]:
    attempt = 0
    while True:
        attempt += 1
        try:
            result = await operation(item)
        except Exception as exc:  # noqa: BLE001 - isolate per-item failures
            if attempt > policy.max_retries or not policy.retryable(exc):
                return ItemOutcome(item=item, error=exc, attempts=attempt)
            if on_retry is not None:
                await _run_hook("retry", on_retry, item, exc, attempt)
            log_warning(
                logger,
                "Attempt %d failed (%s: %s); retrying",
                attempt,
                type(exc).__name__,
                exc,
            )
            await sleep(policy.delay_for(attempt))
        else:
            return ItemOutcome(item=item, result=result, attempts=attempt)


def iter_batches[T](items: cabc.Sequence[T], size: int) -> cabc.Iterator[list[T]]:
    """Yield consecutive slices of ``items`` holding at most ``size`` entries."""
    step = max(1, size)
    for start in range(0, len(items), step):
        yield list(items[start : start + step])


async def process_with_resilience[T, R](  # noqa: PLR0913
    items: cabc.Sequence[T],
    operation: typ.Callable[[T], typ.Awaitable[R]],
    *,
    job_store: JobStore,
    user_id: str,
    job_type: str,
    get_item_id: typ.Callable[[T], str],
    get_item_name: typ.Callable[[T], str],
    policy: RetryPolicy | None = None,
    resume_job_id: str | None = None,
    batch_id: str | None = None,
    on_progress: ProgressCallback[T, R] | None = None,
    sleep: Sleeper = asyncio.sleep,
) -> list[ItemOutcome[T, R]]:
    """Run :func:`process_with_retry` under a checkpointed batch job.

    A new in-progress job records every item id; each success appends to the
    job's completed ids. When ``resume_job_id`` is given the job's completed
    items are skipped, so a resumed batch never reprocesses finished work.
    The job is marked completed at the end, or failed (and the error
    re-raised) if the executor itself breaks.
    """
    names = {get_item_id(item): get_item_name(item) for item in items}
    to_process: list[T] = list(items)

    if resume_job_id is not None:
        job_id = resume_job_id
        job = await job_store.get(job_id)
        done = set(job.completed_item_ids or []) if job is not None else set()
        to_process = [item for item in items if get_item_id(item) not in done]
        await job_store.update_progress(
            job_id,
            message=f"Resuming job with {len(to_process)} remaining items",
            details=(
                f"{len(done)} of {len(items)} items were already processed "
                "before the interruption."
            ),
            in_progress=True,
        )
    else:
        job_id = await job_store.create_job(
            user_id=user_id,
            status="mirroring" if job_type != "sync" else "syncing",
            message=f"Started {job_type} job with {len(items)} items",
            details=f"Processing {len(items)} items with checkpointing",
            job_type=job_type,
            batch_id=batch_id,
            total_items=len(items),
            item_ids=list(names),
            in_progress=True,
        )

    async def checkpoint(item_id: str) -> None:
        await job_store.update_progress(
            job_id,
            completed_item_id=item_id,
            message=f"Processed item: {names.get(item_id, 'unknown')}",
        )

    try:
        outcomes = await process_with_retry(
            to_process,
            operation,
            policy=policy,
            on_progress=on_progress,
            get_item_id=get_item_id,
            on_checkpoint=checkpoint,
            sleep=sleep,
        )
    except Exception as exc:
        await job_store.update_progress(
            job_id,
            status="failed",
            message=f"Failed {job_type} job: {exc}",
            in_progress=False,
            is_completed=True,
        )
        raise

    failures = sum(1 for outcome in outcomes if not outcome.ok)
    details = None
    if failures:
        details = f"{failures} of {len(to_process)} items failed"
    await job_store.update_progress(
        job_id,
        status="mirrored" if job_type != "sync" else "synced",
        message=f"Completed {job_type} job with {len(items)} items",
        details=details,
        in_progress=False,
        is_completed=True,
    )
    return outcomes


__all__ = [
    "ItemOutcome",
    "RetryPolicy",
    "iter_batches",
    "process_with_resilience",
    "process_with_retry",
]

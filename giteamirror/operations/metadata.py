"""Best-effort mirroring of issues and releases.

Git content is mirrored by the destination itself; issues, labels, comments
and releases are copied through the REST APIs. Failures here never fail the
unit: they are logged and the component is left out of ``metadata_state``.
"""

from __future__ import annotations

import asyncio
import typing as typ

from giteamirror.common import utcnow
from giteamirror.executor import RetryPolicy, process_with_retry
from giteamirror.logging import get_logger, log_info, log_warning

if typ.TYPE_CHECKING:
    from giteamirror.github import GitHubComment, GitHubIssue
    from giteamirror.storage import Repository

    from .context import MirrorContext

logger = get_logger(__name__)

DEFAULT_LABEL_COLOR = "#ededed"

ISSUE_POLICY: typ.Final = RetryPolicy(
    concurrency_limit=3, max_retries=2, retry_delay_s=1.0
)
# Comments keep their chronological order.
COMMENT_POLICY: typ.Final = RetryPolicy(
    concurrency_limit=1, max_retries=2, retry_delay_s=1.0
)

type Sleeper = typ.Callable[[float], typ.Awaitable[None]]


def _source_parts(repo: Repository) -> tuple[str, str]:
    owner, _, name = repo.full_name.partition("/")
    return owner, name


def issue_body(issue: GitHubIssue) -> str:
    """Return the destination body for ``issue`` with an attribution header."""
    header = (
        f"Originally created by @{issue.author} on GitHub "
        f"({issue.created_at.date().isoformat()})."
    )
    if not issue.body:
        return header
    return f"{header}\n\n{issue.body}"


def comment_body(comment: GitHubComment) -> str:
    """Return the destination body for ``comment`` with an attribution header."""
    header = (
        f"@{comment.author} commented on GitHub "
        f"({comment.created_at.date().isoformat()}):"
    )
    return f"{header}\n\n{comment.body or ''}".rstrip()


class _LabelResolver:
    """Map label names to destination ids, creating missing labels once."""

    def __init__(self, ctx: MirrorContext, owner: str, repo: str) -> None:
        self._ctx = ctx
        self._owner = owner
        self._repo = repo
        self._ids: dict[str, int] | None = None
        self._lock = asyncio.Lock()

    async def resolve(self, names: list[str]) -> list[int]:
        async with self._lock:
            if self._ids is None:
                labels = await self._ctx.destination.list_labels(self._owner, self._repo)
                self._ids = {label.name: label.id for label in labels}
            ids: list[int] = []
            for name in names:
                if name not in self._ids:
                    label = await self._ctx.destination.create_label(
                        self._owner,
                        self._repo,
                        name=name,
                        color=DEFAULT_LABEL_COLOR,
                    )
                    self._ids[name] = label.id
                ids.append(self._ids[name])
            return ids


async def mirror_issues(
    ctx: MirrorContext,
    repo: Repository,
    owner: str,
    *,
    sleep: Sleeper = asyncio.sleep,
) -> int:
    """Copy issues with their labels and comments; return how many completed.

    Pull requests returned by the issues endpoint are skipped and closed
    issues are closed explicitly after creation. A retry never creates the
    same issue twice.
    """
    src_owner, src_name = _source_parts(repo)
    issues = [
        issue
        for issue in await ctx.source.list_issues(src_owner, src_name)
        if not issue.is_pull_request
    ]
    if not issues:
        return 0
    labels = _LabelResolver(ctx, owner, repo.name)
    # Source issue number to destination number, and issues whose comments
    # are done. A retried copy resumes after its last finished step.
    created_numbers: dict[int, int] = {}
    commented: set[int] = set()

    async def copy_issue(issue: GitHubIssue) -> None:
        number = created_numbers.get(issue.number)
        if number is None:
            label_ids = await labels.resolve([label.name for label in issue.labels])
            destination_issue = await ctx.destination.create_issue(
                owner,
                repo.name,
                title=issue.title,
                body=issue_body(issue),
                labels=label_ids,
            )
            number = created_numbers[issue.number] = destination_issue.number
        if issue.comments and issue.number not in commented:
            comments = await ctx.source.list_issue_comments(
                src_owner, src_name, issue.number
            )

            async def copy_comment(comment: GitHubComment) -> None:
                await ctx.destination.create_issue_comment(
                    owner, repo.name, number, body=comment_body(comment)
                )

            await process_with_retry(
                comments, copy_comment, policy=COMMENT_POLICY, sleep=sleep
            )
            commented.add(issue.number)
        if issue.state == "closed":
            await ctx.destination.edit_issue(owner, repo.name, number, state="closed")

    outcomes = await process_with_retry(
        issues, copy_issue, policy=ISSUE_POLICY, sleep=sleep
    )
    created = sum(1 for outcome in outcomes if outcome.ok)
    if created < len(issues):
        log_warning(
            logger,
            "Mirrored %d of %d issues for %s",
            created,
            len(issues),
            repo.full_name,
        )
    return created


async def mirror_releases(ctx: MirrorContext, repo: Repository, owner: str) -> int:
    """Copy the latest releases whose tags are not yet released on the destination."""
    src_owner, src_name = _source_parts(repo)
    releases = await ctx.source.list_releases(
        src_owner, src_name, limit=ctx.config.mirror.release_limit
    )
    existing = {
        release.tag_name
        for release in await ctx.destination.list_releases(owner, repo.name)
    }
    created = 0
    # Oldest first so the destination lists them in the same order.
    for release in reversed(releases):
        if release.tag_name in existing:
            continue
        await ctx.destination.create_release(
            owner,
            repo.name,
            tag_name=release.tag_name,
            name=release.name or release.tag_name,
            body=release.body or "",
            draft=release.draft,
            prerelease=release.prerelease,
            target_commitish=release.target_commitish,
        )
        created += 1
    return created


async def mirror_metadata(
    ctx: MirrorContext,
    repo: Repository,
    owner: str,
    *,
    sleep: Sleeper = asyncio.sleep,
) -> dict[str, typ.Any]:
    """Mirror the metadata components enabled for ``repo``.

    Returns the updated ``metadata_state``. Issues are copied once per unit;
    releases are reconciled on every call.
    """
    options = ctx.config.mirror
    state: dict[str, typ.Any] = dict(repo.metadata_state or {})

    if options.mirror_releases:
        try:
            count = await mirror_releases(ctx, repo, owner)
        except Exception as exc:  # noqa: BLE001 - metadata is best effort
            log_warning(
                logger, "Release mirroring failed for %s: %s", repo.full_name, exc
            )
        else:
            state["releases"] = {
                "mirrored_at": utcnow().isoformat(),
                "created": count,
            }

    wants_issues = options.mirror_issues and repo.has_issues
    if repo.is_starred and options.skip_starred_issues:
        wants_issues = False
    if wants_issues and "issues" not in state:
        try:
            count = await mirror_issues(ctx, repo, owner, sleep=sleep)
        except Exception as exc:  # noqa: BLE001 - metadata is best effort
            log_warning(
                logger, "Issue mirroring failed for %s: %s", repo.full_name, exc
            )
        else:
            state["issues"] = {"mirrored_at": utcnow().isoformat(), "created": count}
            log_info(logger, "Mirrored %d issues for %s", count, repo.full_name)

    return state


__all__ = [
    "COMMENT_POLICY",
    "DEFAULT_LABEL_COLOR",
    "ISSUE_POLICY",
    "comment_body",
    "issue_body",
    "mirror_issues",
    "mirror_metadata",
    "mirror_releases",
]

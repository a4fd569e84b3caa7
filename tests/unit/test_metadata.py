"""Unit tests for issue and release mirroring."""

from __future__ import annotations

import datetime as dt

import pytest

from giteamirror.config import MirrorOptions
from giteamirror.gitea import GiteaAPIError, GiteaRelease
from giteamirror.github import (
    GitHubAccount,
    GitHubComment,
    GitHubIssue,
    GitHubLabel,
    GitHubRelease,
)
from giteamirror.operations import (
    MirrorContext,
    mirror_issues,
    mirror_metadata,
    mirror_releases,
    repository_values,
)
from giteamirror.operations.metadata import comment_body, issue_body
from giteamirror.storage import Repository
from tests.helpers.fakes import (
    FakeDestination,
    FakeSource,
    github_repo,
    make_config,
    no_sleep,
)

CREATED = dt.datetime(2024, 3, 1, 9, 30, tzinfo=dt.UTC)


def _issue(number: int, *, state: str = "open", **fields: object) -> GitHubIssue:
    return GitHubIssue(
        number=number,
        title=f"Issue {number}",
        state=state,
        user=GitHubAccount(login="alice"),
        created_at=CREATED,
        **fields,
    )


def _unit(*, starred: bool = False, **state: object) -> Repository:
    values = repository_values(make_config(), github_repo("octo/reef"), starred=starred)
    values["metadata_state"] = dict(state)
    return Repository(**values)


def _ctx(
    source: FakeSource, destination: FakeDestination, **options: object
) -> MirrorContext:
    config = make_config(mirror=MirrorOptions(**options))  # type: ignore[arg-type]
    return MirrorContext(config=config, source=source, destination=destination)


class TestBodies:
    """Tests for attribution headers."""

    def test_issue_body_with_text(self) -> None:
        """Issue bodies keep the original text under the header."""
        body = issue_body(_issue(1, body="Steps to reproduce"))
        assert body == (
            "Originally created by @alice on GitHub (2024-03-01).\n\n"
            "Steps to reproduce"
        )

    def test_issue_body_for_deleted_author(self) -> None:
        """Deleted accounts are attributed to ghost."""
        issue = GitHubIssue(number=1, title="t", state="open", created_at=CREATED)
        assert issue_body(issue) == (
            "Originally created by @ghost on GitHub (2024-03-01)."
        )

    def test_comment_body(self) -> None:
        """Comments are prefixed with their author and date."""
        comment = GitHubComment(
            id=1, body="Fixed", user=GitHubAccount(login="bob"), created_at=CREATED
        )
        assert comment_body(comment) == "@bob commented on GitHub (2024-03-01):\n\nFixed"


class TestMirrorIssues:
    """Tests for mirror_issues."""

    @pytest.mark.asyncio
    async def test_copies_issues_labels_and_comments(self) -> None:
        """Issues are recreated, pull requests skipped and closed ones closed."""
        source = FakeSource(
            issues={
                "octo/reef": [
                    _issue(1, labels=[GitHubLabel(name="bug")], comments=2),
                    _issue(2, state="closed", labels=[GitHubLabel(name="bug")]),
                    _issue(3, pull_request={"url": "https://example.test/pr/3"}),
                ]
            },
            comments={
                ("octo/reef", 1): [
                    GitHubComment(id=10, body="first", created_at=CREATED),
                    GitHubComment(id=11, body="second", created_at=CREATED),
                ]
            },
        )
        destination = FakeDestination()
        ctx = _ctx(source, destination, mirror_issues=True)

        created = await mirror_issues(ctx, _unit(), "mirror-bot", sleep=no_sleep)

        assert created == 2
        issues = destination.issues["mirror-bot/reef"]
        assert sorted(issue["title"] for issue in issues) == ["Issue 1", "Issue 2"]
        states = {issue["title"]: issue["state"] for issue in issues}
        assert states == {"Issue 1": "open", "Issue 2": "closed"}
        assert [label.name for label in destination.labels["mirror-bot/reef"]] == [
            "bug"
        ]
        bodies = [body.rsplit("\n\n", 1)[-1] for _, _, body in destination.comments]
        assert bodies == ["first", "second"]

    @pytest.mark.asyncio
    async def test_retry_after_a_failed_close_does_not_duplicate(self) -> None:
        """A transient close failure retries the close, not the creation."""
        source = FakeSource(
            issues={"octo/reef": [_issue(1, state="closed", comments=1)]},
            comments={
                ("octo/reef", 1): [
                    GitHubComment(id=10, body="won't fix", created_at=CREATED)
                ]
            },
        )
        destination = FakeDestination()
        destination.failures["edit_issue"] = [GiteaAPIError.timeout()]
        ctx = _ctx(source, destination, mirror_issues=True)

        created = await mirror_issues(ctx, _unit(), "mirror-bot", sleep=no_sleep)

        assert created == 1
        (issue,) = destination.issues["mirror-bot/reef"]
        assert issue["state"] == "closed"
        assert len(destination.comments) == 1

    @pytest.mark.asyncio
    async def test_no_issues_creates_nothing(self) -> None:
        """Repositories without issues make no destination calls."""
        destination = FakeDestination()
        ctx = _ctx(FakeSource(), destination, mirror_issues=True)

        assert await mirror_issues(ctx, _unit(), "mirror-bot") == 0
        assert destination.issues == {}


@pytest.mark.asyncio
async def test_mirror_releases_oldest_first_skipping_existing() -> None:
    """Only missing tags are created, oldest first, within the limit."""
    source = FakeSource(
        releases={
            "octo/reef": [
                GitHubRelease(tag_name="v4"),
                GitHubRelease(tag_name="v3", name="Third"),
                GitHubRelease(tag_name="v2"),
                GitHubRelease(tag_name="v1"),
            ]
        }
    )
    destination = FakeDestination(
        releases={"mirror-bot/reef": [GiteaRelease(id=1, tag_name="v2")]}
    )
    ctx = _ctx(source, destination, mirror_releases=True, release_limit=3)

    assert await mirror_releases(ctx, _unit(), "mirror-bot") == 2
    assert [r.tag_name for r in destination.releases["mirror-bot/reef"]] == [
        "v2",
        "v3",
        "v4",
    ]
    assert destination.releases["mirror-bot/reef"][1].name == "Third"


class TestMirrorMetadata:
    """Tests for mirror_metadata."""

    @pytest.mark.asyncio
    async def test_disabled_components_leave_state_untouched(self) -> None:
        """Nothing is mirrored unless enabled."""
        ctx = _ctx(FakeSource(issues={"octo/reef": [_issue(1)]}), FakeDestination())

        assert await mirror_metadata(ctx, _unit(), "mirror-bot") == {}

    @pytest.mark.asyncio
    async def test_issues_are_copied_once(self) -> None:
        """A unit whose issues were mirrored is not copied again."""
        destination = FakeDestination()
        source = FakeSource(issues={"octo/reef": [_issue(1)]})
        ctx = _ctx(source, destination, mirror_issues=True)

        state = await mirror_metadata(ctx, _unit(), "mirror-bot", sleep=no_sleep)
        assert state["issues"]["created"] == 1

        again = await mirror_metadata(
            ctx, _unit(**state), "mirror-bot", sleep=no_sleep
        )
        assert again["issues"] == state["issues"]
        assert len(destination.issues["mirror-bot/reef"]) == 1

    @pytest.mark.asyncio
    async def test_starred_issues_can_be_skipped(self) -> None:
        """skip_starred_issues suppresses issue copying for starred units."""
        destination = FakeDestination()
        source = FakeSource(issues={"octo/reef": [_issue(1)]})
        ctx = _ctx(source, destination, mirror_issues=True, skip_starred_issues=True)

        assert await mirror_metadata(ctx, _unit(starred=True), "starred") == {}
        assert destination.issues == {}

    @pytest.mark.asyncio
    async def test_failures_are_best_effort(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A release failure is logged and the issue component still runs."""
        destination = FakeDestination()

        async def broken(owner: str, repo: str) -> list[GiteaRelease]:
            del owner, repo
            msg = "releases unavailable"
            raise RuntimeError(msg)

        monkeypatch.setattr(destination, "list_releases", broken)
        source = FakeSource(
            issues={"octo/reef": [_issue(1)]},
            releases={"octo/reef": [GitHubRelease(tag_name="v1")]},
        )
        ctx = _ctx(source, destination, mirror_issues=True, mirror_releases=True)

        state = await mirror_metadata(ctx, _unit(), "mirror-bot", sleep=no_sleep)

        assert "releases" not in state
        assert state["issues"]["created"] == 1

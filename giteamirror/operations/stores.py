"""Row-level persistence for mirror units and source organizations.

All status writes go through :meth:`RepositoryStore.set_status` or
:meth:`OrganizationStore.set_status`, which validate the transition against
the row's current status inside the same transaction.
"""

from __future__ import annotations

import typing as typ
import uuid

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError

from giteamirror.common import normalize_full_name, utcnow
from giteamirror.logging import get_logger, log_debug
from giteamirror.status import RepositoryStatus, ensure_transition
from giteamirror.storage import Organization, Repository

from .errors import OrganizationNotFoundError, RepositoryNotFoundError

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from giteamirror.config import MirrorConfig
    from giteamirror.github import GitHubMembership, GitHubRepository

logger = get_logger(__name__)

# SQLite's historical bound-parameter ceiling.
MAX_BOUND_PARAMETERS = 999

_REPOSITORY_CONFLICT_COLUMNS = ("user_id", "normalized_full_name")
_ORGANIZATION_CONFLICT_COLUMNS = ("user_id", "normalized_name")


def calc_batch_size_for_insert(
    column_count: int, max_params: int = MAX_BOUND_PARAMETERS
) -> int:
    """Return how many rows fit in one multi-row INSERT.

    Examples
    --------
    >>> calc_batch_size_for_insert(27)
    36
    >>> calc_batch_size_for_insert(5000)
    1
    >>> calc_batch_size_for_insert(0)
    1

    """
    if column_count <= 0:
        return 1
    return max(1, max_params // column_count)


def repository_values(
    config: MirrorConfig, repo: GitHubRepository, *, starred: bool = False
) -> dict[str, typ.Any]:
    """Return the column values for a newly discovered unit."""
    now = utcnow()
    return {
        "id": str(uuid.uuid4()),
        "user_id": config.user_id,
        "config_id": config.id,
        "name": repo.name,
        "full_name": repo.full_name,
        "normalized_full_name": normalize_full_name(repo.full_name),
        "url": repo.html_url,
        "clone_url": repo.clone_url,
        "owner": repo.owner.login,
        "organization": repo.organization,
        "destination_org": None,
        "is_private": repo.private,
        "is_fork": repo.fork,
        "forked_from": repo.parent.full_name if repo.parent is not None else None,
        "is_archived": repo.archived,
        "is_starred": starred,
        "is_disabled": repo.disabled,
        "has_issues": repo.has_issues,
        "size": repo.size,
        "default_branch": repo.default_branch,
        "description": repo.description,
        "language": repo.language,
        "visibility": repo.effective_visibility,
        "status": RepositoryStatus.IMPORTED.value,
        "mirrored_location": "",
        "metadata_state": {},
        "source_updated_at": repo.pushed_at or repo.updated_at,
        "created_at": now,
        "updated_at": now,
    }


def _conflict_ignoring_insert(
    dialect: str,
    model: type[Repository] | type[Organization],
    rows: list[dict[str, typ.Any]],
    conflict_columns: tuple[str, ...],
) -> typ.Any | None:  # noqa: ANN401 - dialect-specific Insert
    match dialect:
        case "sqlite":
            return (
                sqlite_insert(model)
                .values(rows)
                .on_conflict_do_nothing(index_elements=list(conflict_columns))
            )
        case "postgresql":
            return (
                postgresql_insert(model)
                .values(rows)
                .on_conflict_do_nothing(index_elements=list(conflict_columns))
            )
        case _:
            return None


async def _insert_rows(
    session: AsyncSession,
    model: type[Repository] | type[Organization],
    rows: list[dict[str, typ.Any]],
    conflict_columns: tuple[str, ...],
) -> None:
    """Insert ``rows`` in bounded batches, ignoring uniqueness conflicts."""
    if not rows:
        return
    dialect = session.get_bind().dialect.name
    batch_size = calc_batch_size_for_insert(len(rows[0]))
    for start in range(0, len(rows), batch_size):
        batch = rows[start : start + batch_size]
        stmt = _conflict_ignoring_insert(dialect, model, batch, conflict_columns)
        if stmt is not None:
            await session.execute(stmt)
            continue
        for row in batch:
            try:
                async with session.begin_nested():
                    session.add(model(**row))
            except IntegrityError:
                log_debug(logger, "Skipping already tracked row %s", row["id"])


class RepositoryStore:
    """Read and update tracked units."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Store the session factory used for unit access."""
        self._session_factory = session_factory

    async def get(self, repository_id: str) -> Repository | None:
        """Return the unit with ``repository_id``, if tracked."""
        async with self._session_factory() as session:
            return await session.get(Repository, repository_id)

    async def require(self, repository_id: str) -> Repository:
        """Return the unit or raise :class:`RepositoryNotFoundError`."""
        repo = await self.get(repository_id)
        if repo is None:
            raise RepositoryNotFoundError.for_id(repository_id)
        return repo

    async def get_many(self, repository_ids: cabc.Sequence[str]) -> list[Repository]:
        """Return the tracked units among ``repository_ids`` in input order."""
        if not repository_ids:
            return []
        async with self._session_factory() as session:
            rows = await session.scalars(
                select(Repository).where(Repository.id.in_(list(repository_ids)))
            )
            by_id = {row.id: row for row in rows.all()}
        return [by_id[rid] for rid in repository_ids if rid in by_id]

    async def list_for_user(
        self,
        user_id: str,
        *,
        statuses: cabc.Iterable[str] | None = None,
        config_id: str | None = None,
    ) -> list[Repository]:
        """Return the user's units ordered by full name."""
        stmt = select(Repository).where(Repository.user_id == user_id)
        if statuses is not None:
            stmt = stmt.where(Repository.status.in_([str(s) for s in statuses]))
        if config_id is not None:
            stmt = stmt.where(Repository.config_id == config_id)
        async with self._session_factory() as session:
            rows = await session.scalars(stmt.order_by(Repository.normalized_full_name))
            return list(rows.all())

    async def list_by_status(self, statuses: cabc.Iterable[str]) -> list[Repository]:
        """Return every user's units currently in one of ``statuses``."""
        async with self._session_factory() as session:
            rows = await session.scalars(
                select(Repository)
                .where(Repository.status.in_([str(s) for s in statuses]))
                .order_by(Repository.user_id, Repository.normalized_full_name)
            )
            return list(rows.all())

    async def list_for_organization(
        self, user_id: str, organization: str
    ) -> list[Repository]:
        """Return the user's units owned by a source organization."""
        async with self._session_factory() as session:
            rows = await session.scalars(
                select(Repository)
                .where(
                    Repository.user_id == user_id,
                    func.lower(Repository.organization) == organization.lower(),
                )
                .order_by(Repository.normalized_full_name)
            )
            return list(rows.all())

    async def known_full_names(self, user_id: str) -> set[str]:
        """Return the normalized full names tracked for ``user_id``."""
        async with self._session_factory() as session:
            names = await session.scalars(
                select(Repository.normalized_full_name).where(
                    Repository.user_id == user_id
                )
            )
            return set(names.all())

    async def insert_new(
        self,
        config: MirrorConfig,
        repositories: cabc.Sequence[GitHubRepository],
        *,
        starred: cabc.Container[str] = frozenset(),
    ) -> int:
        """Insert untracked units with status ``imported``.

        Parameters
        ----------
        config
            Configuration the units belong to.
        repositories
            Source repositories; already tracked ones are ignored.
        starred
            Normalized full names to flag as starred.

        Returns
        -------
        int
            Number of rows actually inserted.

        """
        rows = [
            repository_values(
                config,
                repo,
                starred=normalize_full_name(repo.full_name) in starred,
            )
            for repo in repositories
        ]
        count_stmt = select(func.count()).where(Repository.user_id == config.user_id)
        async with self._session_factory() as session, session.begin():
            before = await session.scalar(count_stmt.select_from(Repository)) or 0
            await _insert_rows(session, Repository, rows, _REPOSITORY_CONFLICT_COLUMNS)
            after = await session.scalar(count_stmt.select_from(Repository)) or 0
        return after - before

    async def set_status(  # noqa: PLR0913
        self,
        repository_id: str,
        target: RepositoryStatus,
        *,
        error_message: str | None = None,
        mirrored_location: str | None = None,
        last_mirrored: dt.datetime | None = None,
        metadata_state: dict[str, typ.Any] | None = None,
    ) -> Repository:
        """Move a unit to ``target`` after validating the transition.

        ``error_message`` is always written, so passing ``None`` clears a
        previous failure.

        Raises
        ------
        RepositoryNotFoundError
            If the unit is not tracked.
        IllegalStatusTransitionError
            If the current status cannot move to ``target``.

        """
        async with self._session_factory() as session, session.begin():
            repo = await session.get(Repository, repository_id)
            if repo is None:
                raise RepositoryNotFoundError.for_id(repository_id)
            repo.status = ensure_transition(repo.status, target).value
            repo.error_message = error_message
            if mirrored_location is not None:
                repo.mirrored_location = mirrored_location
            if last_mirrored is not None:
                repo.last_mirrored = last_mirrored
            if metadata_state is not None:
                repo.metadata_state = metadata_state
            repo.updated_at = utcnow()
            return repo

    async def record_error(self, repository_id: str, message: str) -> None:
        """Store ``message`` without touching the unit's status."""
        async with self._session_factory() as session, session.begin():
            repo = await session.get(Repository, repository_id)
            if repo is None:
                raise RepositoryNotFoundError.for_id(repository_id)
            repo.error_message = message
            repo.updated_at = utcnow()

    async def delete(self, repository_id: str) -> None:
        """Stop tracking a unit."""
        async with self._session_factory() as session, session.begin():
            await session.execute(
                delete(Repository).where(Repository.id == repository_id)
            )


class OrganizationStore:
    """Read and update tracked source organizations."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Store the session factory used for organization access."""
        self._session_factory = session_factory

    async def require(self, organization_id: str) -> Organization:
        """Return the organization or raise :class:`OrganizationNotFoundError`."""
        async with self._session_factory() as session:
            org = await session.get(Organization, organization_id)
        if org is None:
            raise OrganizationNotFoundError.for_id(organization_id)
        return org

    async def list_for_user(
        self, user_id: str, *, included_only: bool = False
    ) -> list[Organization]:
        """Return the user's organizations ordered by name."""
        stmt = select(Organization).where(Organization.user_id == user_id)
        if included_only:
            stmt = stmt.where(Organization.is_included.is_(True))
        async with self._session_factory() as session:
            rows = await session.scalars(stmt.order_by(Organization.normalized_name))
            return list(rows.all())

    async def insert_new(
        self, config: MirrorConfig, memberships: cabc.Sequence[GitHubMembership]
    ) -> int:
        """Track new source organizations, excluded from mirroring by default."""
        now = utcnow()
        rows = [
            {
                "id": str(uuid.uuid4()),
                "user_id": config.user_id,
                "config_id": config.id,
                "name": membership.organization.login,
                "normalized_name": membership.organization.login.lower(),
                "membership_role": membership.role,
                "is_included": False,
                "destination_org": None,
                "status": RepositoryStatus.IMPORTED.value,
                "repository_count": 0,
                "created_at": now,
                "updated_at": now,
            }
            for membership in memberships
        ]
        count_stmt = select(func.count()).where(Organization.user_id == config.user_id)
        async with self._session_factory() as session, session.begin():
            before = await session.scalar(count_stmt.select_from(Organization)) or 0
            await _insert_rows(
                session, Organization, rows, _ORGANIZATION_CONFLICT_COLUMNS
            )
            after = await session.scalar(count_stmt.select_from(Organization)) or 0
        return after - before

    async def set_status(
        self,
        organization_id: str,
        target: RepositoryStatus,
        *,
        error_message: str | None = None,
        repository_count: int | None = None,
        last_mirrored: dt.datetime | None = None,
    ) -> Organization:
        """Move an organization to ``target`` after validating the transition."""
        async with self._session_factory() as session, session.begin():
            org = await session.get(Organization, organization_id)
            if org is None:
                raise OrganizationNotFoundError.for_id(organization_id)
            org.status = ensure_transition(org.status, target).value
            org.error_message = error_message
            if repository_count is not None:
                org.repository_count = repository_count
            if last_mirrored is not None:
                org.last_mirrored = last_mirrored
            org.updated_at = utcnow()
            return org


__all__ = [
    "MAX_BOUND_PARAMETERS",
    "OrganizationStore",
    "RepositoryStore",
    "calc_batch_size_for_insert",
    "repository_values",
]

"""Request-shaped operations over the forgegate core.

Each mutating operation follows the same path: load the current snapshots,
check access, validate the requested fields, run the pure transition and
commit the result against the version that was read. Route handlers map
the raised :class:`~forgegate.errors.ForgeError` subclasses to responses.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from .config import Settings
from .core import access, issues, lifecycle, pulls
from .core.fields import apply_update, invalid_fields
from .core.models import (
    Comment,
    Issue,
    IssueState,
    LifecycleResource,
    LockReason,
    PullRequest,
    PullRequestState,
    ReactionType,
    Repository,
    ResourceKind,
    ReviewStatus,
    Role,
    evolve,
    kind_of,
    utcnow,
)
from .core.reactions import toggle_member
from .data.store import ForgeStore
from .errors import (
    AccessDenied,
    ConcurrentModification,
    InvalidCollaborator,
    InvalidFieldsError,
    RepositoryArchived,
)
from .logging_config import setup_logging

log = logging.getLogger(__name__)

T = TypeVar("T")
E = TypeVar("E", bound=Enum)
R = TypeVar("R", bound=BaseModel)

_STATE_ENUMS: dict[ResourceKind, type[Enum]] = {
    ResourceKind.ISSUE: IssueState,
    ResourceKind.PULL_REQUEST: PullRequestState,
}


def _coerce(enum_cls: type[E], value: Any, field: str) -> E:
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidFieldsError([field], message=f"Invalid {field}: {value!r}") from None


def _lifecycle_kind(kind: ResourceKind | str) -> ResourceKind:
    kind = _coerce(ResourceKind, kind, "kind")
    if kind not in _STATE_ENUMS:
        raise InvalidFieldsError(["kind"], message="Expected an issue or pull request")
    return kind


@dataclass(frozen=True)
class Page:
    items: list[BaseModel]
    total_pages: int
    current_page: int


def _paginate(items: list[BaseModel], page: int, limit: int) -> Page:
    if page < 1 or limit < 1:
        raise InvalidFieldsError(
            [f for f, v in (("page", page), ("limit", limit)) if v < 1],
            message="page and limit must be positive",
        )
    start = (page - 1) * limit
    return Page(
        items=items[start : start + limit],
        total_pages=math.ceil(len(items) / limit),
        current_page=page,
    )


class ForgeService:
    """Authorization-checked operations on repositories, issues and pull requests.

    ``principal_id`` is ``None`` for anonymous requests. Reads of public
    repositories are open to everyone; every mutation needs an
    authenticated principal.
    """

    def __init__(self, store: ForgeStore, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or Settings()

    @classmethod
    def from_settings(cls, settings: Settings) -> ForgeService:
        setup_logging()
        return cls(ForgeStore(path=settings.data_path), settings)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _require(
        self,
        allowed: bool,
        action: str,
        repository: Repository,
        principal_id: str | None,
    ) -> None:
        if allowed:
            return
        log.warning(
            "Denied %s on repository %s to %s",
            action,
            repository.id,
            principal_id or "anonymous",
        )
        raise AccessDenied(f"Access denied: you may not {action} in this repository")

    def _require_principal(self, principal_id: str | None) -> str:
        if principal_id is None:
            raise AccessDenied("Please authenticate.")
        return principal_id

    def _repository(self, repository_id: str) -> Repository:
        return self.store.get(ResourceKind.REPOSITORY, repository_id)

    def _load(
        self, kind: ResourceKind | str, resource_id: str
    ) -> tuple[Repository, LifecycleResource]:
        resource = self.store.get(_lifecycle_kind(kind), resource_id)
        return self._repository(resource.repository_id), resource

    def _commit(
        self,
        current: R,
        updated: R,
        action: str,
        principal_id: str | None,
        if_version: int | None = None,
    ) -> R:
        kind = kind_of(current)
        if if_version is not None and if_version != current.version:
            raise ConcurrentModification(kind.value, current.id, if_version, current.version)
        stored = self.store.commit(updated)
        log.info(
            "%s %s %s by %s (version %d)",
            action,
            kind.value,
            stored.id,
            principal_id,
            stored.version,
        )
        return stored

    def with_retry(self, operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``operation``, re-running it when a concurrent commit won the race.

        Only :class:`ConcurrentModification` is retried, at most
        ``settings.conflict_retries`` times. Passing ``if_version`` makes a
        retry pointless since the expected version never changes.
        """
        retries = self.settings.conflict_retries
        while True:
            try:
                return operation(*args, **kwargs)
            except ConcurrentModification as exc:
                if retries <= 0:
                    raise
                retries -= 1
                log.warning("Retrying after conflict: %s", exc.message)

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------
    def create_repository(
        self,
        principal_id: str | None,
        name: str,
        *,
        description: str | None = None,
        is_private: bool = False,
        license: str = "None",
        topics: Iterable[str] = (),
    ) -> Repository:
        owner = self._require_principal(principal_id)
        try:
            repository = Repository(
                name=name,
                owner=owner,
                description=description,
                is_private=is_private,
                license=license,
                topics=tuple(topics),
            )
        except ValidationError as exc:
            raise invalid_fields(exc, ["name"]) from exc
        stored = self.store.insert(repository)
        log.info("Created repository %s/%s (%s)", owner, name, stored.id)
        return stored

    def get_repository(self, repository_id: str, principal_id: str | None) -> Repository:
        repository = self._repository(repository_id)
        self._require(access.can_read(repository, principal_id), "read", repository, principal_id)
        return repository

    def list_repositories(
        self,
        principal_id: str | None,
        owner: str | None = None,
        topic: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> Page:
        """One page of the repositories ``principal_id`` may read, newest first.

        Private repositories only show up for their owner and collaborators,
        including when listing a single owner's repositories.
        """
        visible = [
            r
            for r in self.store.list_repositories(owner=owner, topic=topic)
            if access.can_read(r, principal_id)
        ]
        return _paginate(visible, page, limit)

    def update_repository(
        self,
        repository_id: str,
        principal_id: str | None,
        changes: Mapping[str, Any],
        if_version: int | None = None,
    ) -> Repository:
        repository = self._repository(repository_id)
        self._require(
            access.can_admin(repository, principal_id),
            "change settings",
            repository,
            principal_id,
        )
        updated = apply_update(repository, changes, ResourceKind.REPOSITORY)
        return self._commit(repository, updated, "Updated", principal_id, if_version)

    def set_collaborator(
        self,
        repository_id: str,
        principal_id: str | None,
        collaborator_id: str,
        role: Role | str,
    ) -> Repository:
        """Grant ``collaborator_id`` a role, replacing any role they already had."""
        repository = self._repository(repository_id)
        self._require(
            access.can_admin(repository, principal_id),
            "manage collaborators",
            repository,
            principal_id,
        )
        if collaborator_id == repository.owner:
            raise InvalidCollaborator("The repository owner is always an admin")
        role = _coerce(Role, role, "role")
        updated = evolve(
            repository,
            collaborators={**repository.collaborators, collaborator_id: role},
            updated_at=utcnow(),
        )
        return self._commit(repository, updated, f"Granted {role.value} on", principal_id)

    def remove_collaborator(
        self,
        repository_id: str,
        principal_id: str | None,
        collaborator_id: str,
    ) -> Repository:
        repository = self._repository(repository_id)
        self._require(
            access.can_admin(repository, principal_id),
            "manage collaborators",
            repository,
            principal_id,
        )
        if collaborator_id not in repository.collaborators:
            return repository
        collaborators = {
            pid: role
            for pid, role in repository.collaborators.items()
            if pid != collaborator_id
        }
        updated = evolve(repository, collaborators=collaborators, updated_at=utcnow())
        return self._commit(repository, updated, "Revoked access to", principal_id)

    def toggle_star(
        self, repository_id: str, principal_id: str | None
    ) -> tuple[Repository, bool]:
        """Star or unstar a repository; returns the snapshot and the new star state."""
        principal_id = self._require_principal(principal_id)
        repository = self._repository(repository_id)
        self._require(access.can_read(repository, principal_id), "star", repository, principal_id)
        updated = evolve(repository, stars=toggle_member(repository.stars, principal_id))
        stored = self._commit(repository, updated, "Toggled star on", principal_id)
        return stored, principal_id in stored.stars

    # ------------------------------------------------------------------
    # Creating and reading issues and pull requests
    # ------------------------------------------------------------------
    def _check_can_open(self, repository: Repository, principal_id: str | None) -> str:
        principal_id = self._require_principal(principal_id)
        self._require(access.can_read(repository, principal_id), "open", repository, principal_id)
        if repository.is_archived:
            raise RepositoryArchived("open", "archived", "Repository is archived")
        return principal_id

    def open_issue(
        self,
        repository_id: str,
        principal_id: str | None,
        title: str,
        description: str = "",
        *,
        assignees: Iterable[str] = (),
        labels: Iterable[str] = (),
        milestone: str | None = None,
    ) -> Issue:
        repository = self._repository(repository_id)
        author = self._check_can_open(repository, principal_id)
        try:
            issue = Issue(
                repository_id=repository.id,
                title=title,
                description=description,
                author=author,
                assignees=tuple(assignees),
                labels=tuple(labels),
                milestone=milestone,
            )
        except ValidationError as exc:
            raise invalid_fields(exc, ["title"]) from exc
        stored = self.store.insert(issue)
        log.info("Opened issue #%d in %s by %s", stored.number, repository.id, author)
        return stored

    def open_pull_request(
        self,
        repository_id: str,
        principal_id: str | None,
        title: str,
        source_branch: str,
        target_branch: str,
        description: str = "",
        *,
        is_draft: bool = False,
        assignees: Iterable[str] = (),
        labels: Iterable[str] = (),
        milestone: str | None = None,
    ) -> PullRequest:
        repository = self._repository(repository_id)
        author = self._check_can_open(repository, principal_id)
        try:
            pull = PullRequest(
                repository_id=repository.id,
                title=title,
                description=description,
                author=author,
                source_branch=source_branch,
                target_branch=target_branch,
                is_draft=is_draft,
                assignees=tuple(assignees),
                labels=tuple(labels),
                milestone=milestone,
            )
        except ValidationError as exc:
            raise invalid_fields(exc, ["title"]) from exc
        stored = self.store.insert(pull)
        log.info("Opened pull request #%d in %s by %s", stored.number, repository.id, author)
        return stored

    def get(
        self, kind: ResourceKind | str, resource_id: str, principal_id: str | None
    ) -> LifecycleResource:
        repository, resource = self._load(kind, resource_id)
        self._require(access.can_read(repository, principal_id), "read", repository, principal_id)
        return resource

    def get_issue(self, issue_id: str, principal_id: str | None) -> Issue:
        return self.get(ResourceKind.ISSUE, issue_id, principal_id)

    def get_pull_request(self, pull_id: str, principal_id: str | None) -> PullRequest:
        return self.get(ResourceKind.PULL_REQUEST, pull_id, principal_id)

    def list(
        self,
        kind: ResourceKind | str,
        repository_id: str,
        principal_id: str | None,
        state: str | None = "open",
        page: int = 1,
        limit: int = 10,
    ) -> Page:
        """One page of a repository's issues or pull requests, newest first.

        ``state=None`` lists every state.
        """
        kind = _lifecycle_kind(kind)
        repository = self._repository(repository_id)
        self._require(access.can_read(repository, principal_id), "read", repository, principal_id)
        if state is not None:
            state = _coerce(_STATE_ENUMS[kind], state, "state").value
        items = self.store.list_resources(kind, repository.id, state)
        return _paginate(items, page, limit)

    def list_issues(self, repository_id: str, principal_id: str | None, **kwargs: Any) -> Page:
        return self.list(ResourceKind.ISSUE, repository_id, principal_id, **kwargs)

    def list_pull_requests(
        self, repository_id: str, principal_id: str | None, **kwargs: Any
    ) -> Page:
        return self.list(ResourceKind.PULL_REQUEST, repository_id, principal_id, **kwargs)

    # ------------------------------------------------------------------
    # Edits and state transitions
    # ------------------------------------------------------------------
    def update(
        self,
        kind: ResourceKind | str,
        resource_id: str,
        principal_id: str | None,
        changes: Mapping[str, Any],
        if_version: int | None = None,
    ) -> LifecycleResource:
        repository, resource = self._load(kind, resource_id)
        self._require(
            access.can_modify(repository, principal_id, resource),
            "edit",
            repository,
            principal_id,
        )
        updated = apply_update(resource, changes, kind_of(resource))
        return self._commit(resource, updated, "Updated", principal_id, if_version)

    def update_issue(
        self, issue_id: str, principal_id: str | None, changes: Mapping[str, Any], **kwargs: Any
    ) -> Issue:
        return self.update(ResourceKind.ISSUE, issue_id, principal_id, changes, **kwargs)

    def update_pull_request(
        self, pull_id: str, principal_id: str | None, changes: Mapping[str, Any], **kwargs: Any
    ) -> PullRequest:
        return self.update(ResourceKind.PULL_REQUEST, pull_id, principal_id, changes, **kwargs)

    def close_issue(self, issue_id: str, principal_id: str | None) -> Issue:
        repository, issue = self._load(ResourceKind.ISSUE, issue_id)
        self._require(
            access.can_modify(repository, principal_id, issue), "close", repository, principal_id
        )
        return self._commit(issue, issues.close_issue(issue, by=principal_id), "Closed", principal_id)

    def reopen_issue(self, issue_id: str, principal_id: str | None) -> Issue:
        repository, issue = self._load(ResourceKind.ISSUE, issue_id)
        self._require(
            access.can_modify(repository, principal_id, issue), "reopen", repository, principal_id
        )
        return self._commit(issue, issues.reopen_issue(issue), "Reopened", principal_id)

    def close_pull_request(self, pull_id: str, principal_id: str | None) -> PullRequest:
        repository, pull = self._load(ResourceKind.PULL_REQUEST, pull_id)
        self._require(
            access.can_modify(repository, principal_id, pull), "close", repository, principal_id
        )
        updated = pulls.close_pull_request(pull, by=principal_id)
        return self._commit(pull, updated, "Closed", principal_id)

    def reopen_pull_request(self, pull_id: str, principal_id: str | None) -> PullRequest:
        repository, pull = self._load(ResourceKind.PULL_REQUEST, pull_id)
        self._require(
            access.can_modify(repository, principal_id, pull), "reopen", repository, principal_id
        )
        return self._commit(pull, pulls.reopen_pull_request(pull), "Reopened", principal_id)

    def review_pull_request(
        self,
        pull_id: str,
        principal_id: str | None,
        status: ReviewStatus | str,
        comment: str | None = None,
    ) -> PullRequest:
        reviewer = self._require_principal(principal_id)
        repository, pull = self._load(ResourceKind.PULL_REQUEST, pull_id)
        self._require(access.can_read(repository, reviewer), "review", repository, reviewer)
        status = _coerce(ReviewStatus, status, "status")
        updated = pulls.add_review(pull, reviewer, status, comment)
        return self._commit(pull, updated, f"Reviewed ({status.value})", reviewer)

    def merge_pull_request(self, pull_id: str, principal_id: str | None) -> PullRequest:
        repository, pull = self._load(ResourceKind.PULL_REQUEST, pull_id)
        self._require(access.can_write(repository, principal_id), "merge", repository, principal_id)
        required = repository.required_approvals or self.settings.default_required_approvals
        updated = pulls.merge(pull, by=principal_id, required_approvals=required)
        return self._commit(pull, updated, "Merged", principal_id)

    def lock(
        self,
        kind: ResourceKind | str,
        resource_id: str,
        principal_id: str | None,
        reason: LockReason | str | None = None,
    ) -> LifecycleResource:
        repository, resource = self._load(kind, resource_id)
        self._require(access.can_write(repository, principal_id), "lock", repository, principal_id)
        if reason is not None:
            reason = _coerce(LockReason, reason, "lock_reason")
        return self._commit(resource, lifecycle.lock(resource, reason), "Locked", principal_id)

    def unlock(
        self, kind: ResourceKind | str, resource_id: str, principal_id: str | None
    ) -> LifecycleResource:
        repository, resource = self._load(kind, resource_id)
        self._require(
            access.can_write(repository, principal_id), "unlock", repository, principal_id
        )
        return self._commit(resource, lifecycle.unlock(resource), "Unlocked", principal_id)

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------
    def comment(
        self,
        kind: ResourceKind | str,
        resource_id: str,
        principal_id: str | None,
        body: str,
    ) -> tuple[LifecycleResource, Comment]:
        author = self._require_principal(principal_id)
        repository, resource = self._load(kind, resource_id)
        self._require(access.can_read(repository, author), "comment", repository, author)
        allow_when_locked = self.settings.locked_comments_allow_writers and access.can_write(
            repository, author
        )
        try:
            updated, comment = lifecycle.add_comment(
                resource, author, body, allow_when_locked=allow_when_locked
            )
        except ValidationError as exc:
            raise invalid_fields(exc, ["body"]) from exc
        stored = self._commit(resource, updated, "Commented on", author)
        return stored, stored.comments[comment.id]

    def react(
        self,
        kind: ResourceKind | str,
        resource_id: str,
        principal_id: str | None,
        reaction_type: ReactionType | str,
        comment_id: str | None = None,
    ) -> LifecycleResource:
        """Toggle a reaction on an issue, a pull request or one of their comments."""
        principal_id = self._require_principal(principal_id)
        repository, resource = self._load(kind, resource_id)
        self._require(access.can_read(repository, principal_id), "react", repository, principal_id)
        reaction_type = _coerce(ReactionType, reaction_type, "type")
        if comment_id is None:
            updated = lifecycle.react(resource, principal_id, reaction_type)
        else:
            updated = lifecycle.react_to_comment(
                resource, comment_id, principal_id, reaction_type
            )
        return self._commit(resource, updated, f"Toggled {reaction_type.value} on", principal_id)

"""Data models for forgegate's core entities.

The models are implemented using :mod:`pydantic` so that they provide
runtime validation and convenient serialisation to and from dictionaries.
Every model is frozen: transitions build a new snapshot with :func:`evolve`
instead of assigning onto an existing one, which re-runs validation and
keeps the invariants below enforced on every change. Freezing does not
reach into ``dict`` fields such as ``collaborators``; the store hands out
its own copies so a write into one never reaches stored state.
"""

from __future__ import annotations

import datetime
import uuid
from abc import ABC, abstractmethod
from datetime import UTC
from enum import Enum
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

M = TypeVar("M", bound=BaseModel)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(tz=UTC)


def _new_id() -> str:
    return uuid.uuid4().hex


def evolve(model: M, **changes: Any) -> M:
    """Return a copy of ``model`` with ``changes`` applied and re-validated.

    ``BaseModel.model_copy`` skips validation, so it would let a transition
    produce a snapshot that breaks a model invariant. Building the copy
    through ``model_validate`` keeps nested models as they are while still
    running every field and model validator.
    """
    return type(model).model_validate({**dict(model), **changes})


# ----------------------------------------------------------------------
# Enumerations
# ----------------------------------------------------------------------
class Role(str, Enum):
    """Permission level of a collaborator, ordered ``read < write < admin``."""

    READ = "read"
    WRITE = "write"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def meets_or_above(self, other: Role) -> bool:
        return self.rank >= Role(other).rank

    # ``str`` would otherwise compare alphabetically ("admin" < "read"), both
    # against another member and against a raw wire value such as "write".
    def __lt__(self, other: object) -> bool:
        if not isinstance(other, str):
            return NotImplemented
        return self.rank < Role(other).rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, str):
            return NotImplemented
        return self.rank <= Role(other).rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, str):
            return NotImplemented
        return self.rank > Role(other).rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, str):
            return NotImplemented
        return self.rank >= Role(other).rank


_ROLE_RANK = {Role.READ: 1, Role.WRITE: 2, Role.ADMIN: 3}


class IssueState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class PullRequestState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    MERGED = "merged"


class LockReason(str, Enum):
    OFF_TOPIC = "off-topic"
    TOO_HEATED = "too heated"
    RESOLVED = "resolved"
    SPAM = "spam"


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"


class ReactionType(str, Enum):
    PLUS_ONE = "+1"
    MINUS_ONE = "-1"
    LAUGH = "laugh"
    HOORAY = "hooray"
    CONFUSED = "confused"
    HEART = "heart"
    ROCKET = "rocket"
    EYES = "eyes"


class ResourceKind(str, Enum):
    REPOSITORY = "repository"
    ISSUE = "issue"
    PULL_REQUEST = "pull_request"


License = Literal["MIT", "Apache-2.0", "GPL-3.0", "BSD-3-Clause", "None"]


# ----------------------------------------------------------------------
# Repository
# ----------------------------------------------------------------------
class Repository(BaseModel):
    """A repository owned by exactly one principal.

    Attributes
    ----------
    owner:
        Principal id of the creator. Implicitly holds the ``admin`` role and
        is never listed in ``collaborators``.
    collaborators:
        Mapping of principal id to :class:`Role`.
    stars:
        Principal ids that starred the repository.
    required_approvals:
        Approvals needed before a pull request may be merged. ``None`` means
        the configured default applies.
    version:
        Incremented by the store on every committed change.

    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    name: str = Field(min_length=1, max_length=100)
    owner: str
    description: str | None = Field(default=None, max_length=500)
    is_private: bool = False
    is_archived: bool = False
    license: License = "None"
    topics: tuple[str, ...] = ()
    collaborators: dict[str, Role] = Field(default_factory=dict)
    stars: frozenset[str] = frozenset()
    required_approvals: int | None = Field(default=None, ge=1)
    created_at: datetime.datetime = Field(default_factory=utcnow)
    updated_at: datetime.datetime = Field(default_factory=utcnow)
    version: int = 0

    @model_validator(mode="after")
    def _owner_is_not_a_collaborator(self) -> Repository:
        if self.owner in self.collaborators:
            raise ValueError("the repository owner cannot be listed as a collaborator")
        return self


# ----------------------------------------------------------------------
# Conversation pieces
# ----------------------------------------------------------------------
class Reaction(BaseModel):
    """A single ``(principal_id, type)`` reaction; the pair is the identity."""

    model_config = ConfigDict(frozen=True)

    principal_id: str
    type: ReactionType


class Comment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    author: str
    body: str = Field(min_length=1)
    created_at: datetime.datetime = Field(default_factory=utcnow)
    updated_at: datetime.datetime = Field(default_factory=utcnow)
    reactions: frozenset[Reaction] = frozenset()


class Review(BaseModel):
    """The latest review a reviewer left on a pull request."""

    model_config = ConfigDict(frozen=True)

    status: ReviewStatus = ReviewStatus.PENDING
    comment: str | None = None
    reviewed_at: datetime.datetime = Field(default_factory=utcnow)


# ----------------------------------------------------------------------
# Lifecycle resources
# ----------------------------------------------------------------------
class LifecycleResource(BaseModel, ABC):
    """Fields shared by issues and pull requests.

    Only :class:`Issue` and :class:`PullRequest` are instantiated; each
    derives :attr:`is_closed` from its own ``state`` enum.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    repository_id: str
    number: int = 0  # assigned by the store on insert
    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    author: str
    assignees: tuple[str, ...] = ()
    labels: tuple[str, ...] = ()
    milestone: str | None = None
    is_locked: bool = False
    lock_reason: LockReason | None = None
    closed_at: datetime.datetime | None = None
    closed_by: str | None = None
    comments: dict[str, Comment] = Field(default_factory=dict)
    reactions: frozenset[Reaction] = frozenset()
    created_at: datetime.datetime = Field(default_factory=utcnow)
    updated_at: datetime.datetime = Field(default_factory=utcnow)
    version: int = 0

    @property
    @abstractmethod
    def is_closed(self) -> bool: ...

    @model_validator(mode="after")
    def _check_lock_and_close_fields(self) -> LifecycleResource:
        if not self.is_locked and self.lock_reason is not None:
            raise ValueError("lock_reason is only meaningful while locked")
        closed_fields = (self.closed_at is not None, self.closed_by is not None)
        if self.is_closed and not all(closed_fields):
            raise ValueError("closed_at and closed_by must be set while closed")
        if not self.is_closed and any(closed_fields):
            raise ValueError("closed_at and closed_by must be cleared unless closed")
        return self


class Issue(LifecycleResource):
    state: IssueState = IssueState.OPEN

    @property
    def is_closed(self) -> bool:
        return self.state is IssueState.CLOSED


class PullRequest(LifecycleResource):
    state: PullRequestState = PullRequestState.OPEN
    source_branch: str = Field(min_length=1)
    target_branch: str = Field(min_length=1)
    is_draft: bool = False
    reviewers: dict[str, Review] = Field(default_factory=dict)
    merged_at: datetime.datetime | None = None
    merged_by: str | None = None

    @property
    def is_closed(self) -> bool:
        return self.state is PullRequestState.CLOSED

    @model_validator(mode="after")
    def _check_merge_fields(self) -> PullRequest:
        merged_fields = (self.merged_at is not None, self.merged_by is not None)
        if self.state is PullRequestState.MERGED and not all(merged_fields):
            raise ValueError("merged_at and merged_by must be set once merged")
        if self.state is not PullRequestState.MERGED and any(merged_fields):
            raise ValueError("merged_at and merged_by are only set once merged")
        return self


MODEL_FOR_KIND: dict[ResourceKind, type[BaseModel]] = {
    ResourceKind.REPOSITORY: Repository,
    ResourceKind.ISSUE: Issue,
    ResourceKind.PULL_REQUEST: PullRequest,
}


def kind_of(model: BaseModel) -> ResourceKind:
    for kind, cls in MODEL_FOR_KIND.items():
        if type(model) is cls:
            return kind
    raise TypeError(f"{type(model).__name__} is not a stored resource")

"""Core package for forgegate.

This module exposes the data models, the persistence layer and the service
so that consumers of the package can simply import them from ``forgegate``.
"""

from .core.models import (
    Comment,
    Issue,
    IssueState,
    LockReason,
    PullRequest,
    PullRequestState,
    Reaction,
    ReactionType,
    Repository,
    ResourceKind,
    Review,
    ReviewStatus,
    Role,
)
from .data.store import ForgeStore
from .service import ForgeService

__all__ = [
    "Comment",
    "ForgeService",
    "ForgeStore",
    "Issue",
    "IssueState",
    "LockReason",
    "PullRequest",
    "PullRequestState",
    "Reaction",
    "ReactionType",
    "Repository",
    "ResourceKind",
    "Review",
    "ReviewStatus",
    "Role",
]

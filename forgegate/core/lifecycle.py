"""Transitions shared by issues and pull requests.

Locking is an axis independent of the open/closed state: nothing here
touches ``state`` and the state machines in :mod:`.issues` and
:mod:`.pulls` never touch ``is_locked``.
"""

from __future__ import annotations

import datetime
from typing import TypeVar

from ..errors import NotFoundError, ResourceLocked
from . import reactions as ledger
from .models import Comment, LifecycleResource, LockReason, ReactionType, evolve, utcnow

R = TypeVar("R", bound=LifecycleResource)


def lock(
    resource: R,
    reason: LockReason | str | None = None,
    now: datetime.datetime | None = None,
) -> R:
    """Lock the conversation; locking again only replaces the reason."""
    return evolve(
        resource,
        is_locked=True,
        lock_reason=LockReason(reason) if reason is not None else None,
        updated_at=now or utcnow(),
    )


def unlock(resource: R, now: datetime.datetime | None = None) -> R:
    return evolve(
        resource,
        is_locked=False,
        lock_reason=None,
        updated_at=now or utcnow(),
    )


def add_comment(
    resource: R,
    author: str,
    body: str,
    *,
    allow_when_locked: bool = False,
    now: datetime.datetime | None = None,
) -> tuple[R, Comment]:
    """Append a comment and return the new snapshot together with the comment.

    Locked conversations reject comments unless the caller decided that this
    author may still post (``allow_when_locked``).
    """
    if resource.is_locked and not allow_when_locked:
        raise ResourceLocked("comment", "locked", "Conversation is locked")
    now = now or utcnow()
    comment = Comment(author=author, body=body, created_at=now, updated_at=now)
    comments = {**resource.comments, comment.id: comment}
    return evolve(resource, comments=comments, updated_at=now), comment


def react(resource: R, principal_id: str, reaction_type: ReactionType | str) -> R:
    return evolve(
        resource,
        reactions=ledger.toggle(resource.reactions, principal_id, reaction_type),
    )


def react_to_comment(
    resource: R,
    comment_id: str,
    principal_id: str,
    reaction_type: ReactionType | str,
) -> R:
    comment = resource.comments.get(comment_id)
    if comment is None:
        raise NotFoundError("Comment not found")
    updated = evolve(
        comment,
        reactions=ledger.toggle(comment.reactions, principal_id, reaction_type),
    )
    return evolve(resource, comments={**resource.comments, comment_id: updated})

"""Open/closed/merged state machine for pull requests.

``merged`` is terminal: a merged pull request can be neither closed nor
reopened. Merging is gated on the number of approving reviews present in
the snapshot handed to :func:`merge`; because the store only commits a
snapshot whose version is still current, a review that lands after that
snapshot was read makes the merge commit fail instead of being lost.
"""

from __future__ import annotations

import datetime

from ..config import Settings
from ..errors import InsufficientApprovals, InvalidTransition
from .models import PullRequest, PullRequestState, Review, ReviewStatus, evolve, utcnow


def close_pull_request(
    pull: PullRequest, by: str, now: datetime.datetime | None = None
) -> PullRequest:
    if pull.state is not PullRequestState.OPEN:
        raise InvalidTransition("close", pull.state.value)
    now = now or utcnow()
    return evolve(
        pull,
        state=PullRequestState.CLOSED,
        closed_at=now,
        closed_by=by,
        updated_at=now,
    )


def reopen_pull_request(
    pull: PullRequest, now: datetime.datetime | None = None
) -> PullRequest:
    if pull.state is not PullRequestState.CLOSED:
        raise InvalidTransition("reopen", pull.state.value)
    return evolve(
        pull,
        state=PullRequestState.OPEN,
        closed_at=None,
        closed_by=None,
        updated_at=now or utcnow(),
    )


def add_review(
    pull: PullRequest,
    reviewer_id: str,
    status: ReviewStatus | str,
    comment: str | None = None,
    now: datetime.datetime | None = None,
) -> PullRequest:
    """Record ``reviewer_id``'s review, replacing any earlier one."""
    if pull.state is not PullRequestState.OPEN:
        raise InvalidTransition("review", pull.state.value)
    now = now or utcnow()
    review = Review(status=ReviewStatus(status), comment=comment, reviewed_at=now)
    return evolve(
        pull,
        reviewers={**pull.reviewers, reviewer_id: review},
        updated_at=now,
    )


def count_approvals(pull: PullRequest) -> int:
    return sum(1 for r in pull.reviewers.values() if r.status is ReviewStatus.APPROVED)


def merge(
    pull: PullRequest,
    by: str,
    required_approvals: int | None = None,
    now: datetime.datetime | None = None,
) -> PullRequest:
    """Merge ``pull`` once it has ``required_approvals`` approving reviews.

    ``None`` falls back to the default in :class:`~forgegate.config.Settings`.
    """
    if required_approvals is None:
        required_approvals = Settings.default_required_approvals
    if required_approvals < 1:
        raise ValueError(f"required_approvals must be at least 1, got {required_approvals}")
    if pull.state is not PullRequestState.OPEN:
        raise InvalidTransition("merge", pull.state.value)
    if pull.is_draft:
        raise InvalidTransition("merge", "draft", "Draft pull requests cannot be merged")
    have = count_approvals(pull)
    if have < required_approvals:
        raise InsufficientApprovals(have=have, required=required_approvals)
    now = now or utcnow()
    return evolve(
        pull,
        state=PullRequestState.MERGED,
        merged_at=now,
        merged_by=by,
        updated_at=now,
    )

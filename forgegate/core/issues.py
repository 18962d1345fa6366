"""Open/closed state machine for issues.

The functions trust their caller to have checked permissions; they only
enforce which transitions are legal from the current state.
"""

from __future__ import annotations

import datetime

from ..errors import InvalidTransition
from .models import Issue, IssueState, evolve, utcnow


def close_issue(issue: Issue, by: str, now: datetime.datetime | None = None) -> Issue:
    if issue.state is not IssueState.OPEN:
        raise InvalidTransition("close", issue.state.value)
    now = now or utcnow()
    return evolve(
        issue,
        state=IssueState.CLOSED,
        closed_at=now,
        closed_by=by,
        updated_at=now,
    )


def reopen_issue(issue: Issue, now: datetime.datetime | None = None) -> Issue:
    if issue.state is not IssueState.CLOSED:
        raise InvalidTransition("reopen", issue.state.value)
    return evolve(
        issue,
        state=IssueState.OPEN,
        closed_at=None,
        closed_by=None,
        updated_at=now or utcnow(),
    )

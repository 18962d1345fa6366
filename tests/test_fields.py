"""Tests for whitelisted partial updates."""

import pytest

from forgegate.core.fields import ALLOWED_FIELDS, apply_update, validate_update
from forgegate.core.models import Issue, PullRequest, Repository, ResourceKind
from forgegate.errors import InvalidFieldsError


def make_issue() -> Issue:
    return Issue(repository_id="repo", title="Bug", author="alice")


def test_validate_update_lists_offending_fields() -> None:
    with pytest.raises(InvalidFieldsError) as exc:
        validate_update({"state", "title"}, {"title", "body"})
    assert exc.value.fields == ("state",)
    assert exc.value.http_status == 400
    assert "state" in exc.value.message


def test_validate_update_accepts_subset() -> None:
    assert validate_update({"title"}, {"title", "body"}) is None
    assert validate_update(set(), {"title"}) is None


def test_apply_update_changes_allowed_fields() -> None:
    issue = make_issue()
    updated = apply_update(
        issue, {"title": "Crash on start", "labels": ["bug"]}, ResourceKind.ISSUE
    )
    assert updated.title == "Crash on start"
    assert updated.labels == ("bug",)
    assert issue.title == "Bug"


def test_apply_update_is_all_or_nothing() -> None:
    issue = make_issue()
    with pytest.raises(InvalidFieldsError) as exc:
        apply_update(issue, {"title": "x", "state": "closed"}, ResourceKind.ISSUE)
    assert exc.value.fields == ("state",)
    assert issue.title == "Bug"


def test_apply_update_reports_bad_values() -> None:
    with pytest.raises(InvalidFieldsError) as exc:
        apply_update(make_issue(), {"title": ""}, ResourceKind.ISSUE)
    assert exc.value.fields == ("title",)


def test_apply_update_without_changes_returns_same_snapshot() -> None:
    issue = make_issue()
    assert apply_update(issue, {}, ResourceKind.ISSUE) is issue


def test_repository_ownership_is_not_updatable() -> None:
    repo = Repository(name="demo", owner="alice")
    with pytest.raises(InvalidFieldsError) as exc:
        apply_update(repo, {"owner": "mallory", "collaborators": {}}, ResourceKind.REPOSITORY)
    assert exc.value.fields == ("collaborators", "owner")


def test_pull_request_draft_flag_but_not_merge_fields() -> None:
    pull = PullRequest(
        repository_id="repo",
        title="Feature",
        author="alice",
        source_branch="feature",
        target_branch="main",
    )
    assert apply_update(pull, {"is_draft": True}, ResourceKind.PULL_REQUEST).is_draft
    with pytest.raises(InvalidFieldsError):
        apply_update(pull, {"merged_by": "alice"}, ResourceKind.PULL_REQUEST)


def test_lifecycle_fields_never_allowed() -> None:
    for allowed in ALLOWED_FIELDS.values():
        assert not allowed & {"state", "closed_at", "merged_at", "is_locked", "version"}

"""Tests for the JSON-backed ``ForgeStore``."""

import datetime
from datetime import UTC
from pathlib import Path

import pytest

from forgegate.core import lifecycle
from forgegate.core.models import (
    Issue,
    IssueState,
    PullRequest,
    Reaction,
    Repository,
    ResourceKind,
    Role,
    evolve,
)
from forgegate.data.store import ForgeStore
from forgegate.errors import ConcurrentModification, InvalidFieldsError, NotFoundError


def make_store(tmp_path: Path) -> ForgeStore:
    return ForgeStore(path=str(tmp_path / "data.json"))


def test_numbers_are_shared_between_issues_and_pull_requests(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    repo = store.insert(Repository(name="demo", owner="alice"))
    issue = store.insert(Issue(repository_id=repo.id, title="Bug", author="bob"))
    pull = store.insert(
        PullRequest(
            repository_id=repo.id,
            title="Fix bug",
            author="bob",
            source_branch="fix",
            target_branch="main",
        )
    )
    assert (issue.number, pull.number) == (1, 2)

    other = store.insert(Repository(name="other", owner="alice"))
    assert store.insert(Issue(repository_id=other.id, title="x", author="bob")).number == 1


def test_persistence_across_instances(tmp_path: Path) -> None:
    """Data survives across multiple store instances."""
    path = tmp_path / "data.json"
    store = ForgeStore(path=str(path))
    repo = store.insert(
        Repository(name="demo", owner="alice", collaborators={"bob": Role.WRITE})
    )
    issue = store.insert(Issue(repository_id=repo.id, title="Bug", author="bob"))
    issue, comment = lifecycle.add_comment(issue, "carol", "Seen it too")
    issue = lifecycle.react_to_comment(issue, comment.id, "bob", "eyes")
    issue = store.commit(lifecycle.lock(issue, "too heated"))

    assert path.exists()

    reloaded = ForgeStore(path=str(path))
    loaded_repo = reloaded.get(ResourceKind.REPOSITORY, repo.id)
    assert loaded_repo.collaborators == {"bob": Role.WRITE}

    loaded = reloaded.get(ResourceKind.ISSUE, issue.id)
    assert loaded.version == 1
    assert loaded.lock_reason == issue.lock_reason
    assert loaded.comments[comment.id].reactions == {
        Reaction(principal_id="bob", type="eyes")
    }
    assert loaded.created_at == issue.created_at


def test_commit_bumps_version(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    repo = store.insert(Repository(name="demo", owner="alice"))
    assert repo.version == 0
    first = store.commit(evolve(repo, description="first"))
    second = store.commit(evolve(first, description="second"))
    assert (first.version, second.version) == (1, 2)


def test_stale_commit_is_rejected(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    repo = store.insert(Repository(name="demo", owner="alice"))
    issue = store.insert(Issue(repository_id=repo.id, title="Bug", author="bob"))

    store.commit(lifecycle.react(issue, "bob", "+1"))
    with pytest.raises(ConcurrentModification) as exc:
        store.commit(lifecycle.react(issue, "carol", "heart"))
    assert (exc.value.expected, exc.value.actual) == (0, 1)
    assert exc.value.retryable is True

    stored = store.get(ResourceKind.ISSUE, issue.id)
    assert stored.reactions == {Reaction(principal_id="bob", type="+1")}


def test_repository_names_unique_per_owner(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    store.insert(Repository(name="demo", owner="alice"))
    store.insert(Repository(name="demo", owner="bob"))
    with pytest.raises(InvalidFieldsError):
        store.insert(Repository(name="demo", owner="alice"))

    other = store.insert(Repository(name="other", owner="alice"))
    with pytest.raises(InvalidFieldsError):
        store.commit(evolve(other, name="demo"))


def test_missing_resources(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    assert store.find(ResourceKind.ISSUE, "nope") is None
    with pytest.raises(NotFoundError):
        store.get(ResourceKind.PULL_REQUEST, "nope")
    with pytest.raises(NotFoundError):
        store.insert(Issue(repository_id="nope", title="Bug", author="bob"))


def test_list_resources_filters_and_orders(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    repo = store.insert(Repository(name="demo", owner="alice"))
    base = datetime.datetime(2024, 1, 1, tzinfo=UTC)
    for day in range(3):
        store.insert(
            Issue(
                repository_id=repo.id,
                title=f"Issue {day}",
                author="bob",
                created_at=base + datetime.timedelta(days=day),
            )
        )
    oldest = store.list_resources(ResourceKind.ISSUE, repo.id)[-1]
    store.commit(evolve(oldest, state=IssueState.CLOSED, closed_at=base, closed_by="bob"))

    titles = [i.title for i in store.list_resources(ResourceKind.ISSUE, repo.id, "open")]
    assert titles == ["Issue 2", "Issue 1"]
    assert len(store.list_resources(ResourceKind.ISSUE, repo.id)) == 3
    assert store.list_resources(ResourceKind.PULL_REQUEST, repo.id) == []


def test_snapshots_do_not_share_state_with_the_store(tmp_path: Path) -> None:
    """Writing into a returned snapshot never reaches stored state."""
    store = make_store(tmp_path)
    repo = store.insert(Repository(name="demo", owner="alice", is_private=True))
    repo.collaborators["mallory"] = Role.ADMIN

    fetched = store.get(ResourceKind.REPOSITORY, repo.id)
    assert fetched.collaborators == {}
    fetched.collaborators["mallory"] = Role.ADMIN
    assert store.get(ResourceKind.REPOSITORY, repo.id).collaborators == {}

    submitted = evolve(fetched, collaborators={"bob": Role.READ})
    committed = store.commit(submitted)
    submitted.collaborators["mallory"] = Role.ADMIN
    committed.collaborators["eve"] = Role.WRITE

    stored = store.get(ResourceKind.REPOSITORY, repo.id)
    assert stored.collaborators == {"bob": Role.READ}
    assert stored.version == 1
    assert ForgeStore(path=store.path).get(
        ResourceKind.REPOSITORY, repo.id
    ).collaborators == {"bob": Role.READ}


def test_listed_snapshots_are_detached(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    repo = store.insert(Repository(name="demo", owner="alice"))
    issue = store.insert(Issue(repository_id=repo.id, title="Bug", author="bob"))
    issue, _ = lifecycle.add_comment(issue, "carol", "Seen it too")
    store.commit(issue)

    listed = store.list_resources(ResourceKind.ISSUE, repo.id)[0]
    listed.comments.clear()
    assert len(store.get(ResourceKind.ISSUE, issue.id).comments) == 1


def test_failed_commit_leaves_stored_snapshot(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    store = make_store(tmp_path)
    repo = store.insert(Repository(name="demo", owner="alice"))

    def fail() -> None:
        raise OSError("disk full")

    monkeypatch.setattr(store, "save", fail)
    with pytest.raises(OSError):
        store.commit(evolve(repo, description="changed"))

    stored = store.get(ResourceKind.REPOSITORY, repo.id)
    assert stored.version == 0
    assert stored.description is None

    monkeypatch.undo()
    assert store.commit(evolve(repo, description="changed")).version == 1


def test_failed_insert_leaves_nothing_behind(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    store = make_store(tmp_path)
    repo = store.insert(Repository(name="demo", owner="alice"))

    def fail() -> None:
        raise OSError("disk full")

    monkeypatch.setattr(store, "save", fail)
    issue = Issue(repository_id=repo.id, title="Bug", author="bob")
    with pytest.raises(OSError):
        store.insert(issue)
    with pytest.raises(OSError):
        store.insert(Repository(name="other", owner="alice"))

    assert store.find(ResourceKind.ISSUE, issue.id) is None
    assert store.find_repository("alice", "other") is None
    assert store.list_resources(ResourceKind.ISSUE, repo.id) == []

    monkeypatch.undo()
    assert store.insert(issue).number == 1


def test_list_repositories_filters_by_owner_and_topic(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    base = datetime.datetime(2024, 1, 1, tzinfo=UTC)
    store.insert(Repository(name="a", owner="alice", topics=("python",), created_at=base))
    store.insert(
        Repository(
            name="b",
            owner="alice",
            is_private=True,
            created_at=base + datetime.timedelta(days=1),
        )
    )
    store.insert(
        Repository(
            name="c",
            owner="bob",
            topics=("python", "cli"),
            created_at=base + datetime.timedelta(days=2),
        )
    )

    assert [r.name for r in store.list_repositories()] == ["c", "b", "a"]
    assert [r.name for r in store.list_repositories(owner="alice")] == ["b", "a"]
    assert [r.name for r in store.list_repositories(topic="python")] == ["c", "a"]
    assert store.list_repositories(owner="alice", topic="cli") == []

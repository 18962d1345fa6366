"""Persistence layer for repositories, issues and pull requests."""

from __future__ import annotations

import json
import logging
import os
import threading
from typing import TypeVar

from pydantic import BaseModel

from ..core.models import (
    MODEL_FOR_KIND,
    LifecycleResource,
    Repository,
    ResourceKind,
    kind_of,
)
from ..errors import ConcurrentModification, InvalidFieldsError, NotFoundError

log = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _detached(snapshot: M) -> M:
    return snapshot.model_copy(deep=True)


_NOT_FOUND_MESSAGES = {
    ResourceKind.REPOSITORY: "Repository not found",
    ResourceKind.ISSUE: "Issue not found",
    ResourceKind.PULL_REQUEST: "Pull request not found",
}


class ForgeStore:
    """Simple JSON based persistence layer with versioned commits.

    Snapshots are frozen, but their ``dict`` fields are not, so the store
    keeps private deep copies and every read returns a fresh one. Every
    change goes through :meth:`insert` or :meth:`commit`; ``commit`` only
    succeeds if the stored version still matches the version the caller
    read, which turns a lost update into a :class:`ConcurrentModification`.
    """

    def __init__(self, path: str = "forgegate_data.json") -> None:
        self.path = path
        self._lock = threading.RLock()
        self._tables: dict[ResourceKind, dict[str, BaseModel]] = {
            kind: {} for kind in ResourceKind
        }
        self._load()

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------
    def _load(self) -> None:
        """Load store contents from ``self.path`` if it exists."""
        if not os.path.exists(self.path):
            return

        with open(self.path, encoding="utf-8") as f:
            data = json.load(f)

        for kind, model in MODEL_FOR_KIND.items():
            table = {}
            for item in data.get(kind.value, []):
                snapshot = model.model_validate(item)
                table[snapshot.id] = snapshot
            self._tables[kind] = table

        log.debug(
            "Loaded %d repositories, %d issues, %d pull requests from %s",
            len(self._tables[ResourceKind.REPOSITORY]),
            len(self._tables[ResourceKind.ISSUE]),
            len(self._tables[ResourceKind.PULL_REQUEST]),
            self.path,
        )

    def _to_dict(self) -> dict:
        """Serialise the current state to a JSON-serialisable dict."""
        return {
            kind.value: [s.model_dump(mode="json") for s in table.values()]
            for kind, table in self._tables.items()
        }

    def save(self) -> None:
        """Persist the current state atomically."""
        with self._lock:
            tmp = self.path + ".tmp"
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(self._to_dict(), f, indent=2, ensure_ascii=False)
            os.replace(tmp, self.path)


    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def find(self, kind: ResourceKind, resource_id: str) -> BaseModel | None:
        with self._lock:
            snapshot = self._tables[kind].get(resource_id)
            return None if snapshot is None else _detached(snapshot)

    def get(self, kind: ResourceKind, resource_id: str) -> BaseModel:
        snapshot = self.find(kind, resource_id)
        if snapshot is None:
            raise NotFoundError(_NOT_FOUND_MESSAGES[kind])
        return snapshot

    def _repository_named(self, owner: str, name: str) -> Repository | None:
        return next(
            (
                r
                for r in self._tables[ResourceKind.REPOSITORY].values()
                if r.owner == owner and r.name == name
            ),
            None,
        )

    def find_repository(self, owner: str, name: str) -> Repository | None:
        with self._lock:
            repository = self._repository_named(owner, name)
            return None if repository is None else _detached(repository)

    def list_repositories(
        self, owner: str | None = None, topic: str | None = None
    ) -> list[Repository]:
        """Repositories, newest first, optionally narrowed by owner and topic.

        No access filtering happens here; callers decide what a principal
        may see.
        """
        with self._lock:
            items = [
                _detached(r)
                for r in self._tables[ResourceKind.REPOSITORY].values()
                if (owner is None or r.owner == owner)
                and (topic is None or topic in r.topics)
            ]
        items.sort(key=lambda r: r.created_at, reverse=True)
        return items

    def list_resources(
        self,
        kind: ResourceKind,
        repository_id: str,
        state: str | None = None,
    ) -> list[LifecycleResource]:
        """Issues or pull requests of a repository, newest first."""
        with self._lock:
            items = [
                _detached(r)
                for r in self._tables[kind].values()
                if r.repository_id == repository_id
                and (state is None or r.state.value == state)
            ]
        items.sort(key=lambda r: r.created_at, reverse=True)
        return items

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def _next_number(self, repository_id: str) -> int:
        numbers = [
            r.number
            for kind in (ResourceKind.ISSUE, ResourceKind.PULL_REQUEST)
            for r in self._tables[kind].values()
            if r.repository_id == repository_id
        ]
        return max(numbers, default=0) + 1

    def insert(self, snapshot: BaseModel) -> BaseModel:
        """Store a new resource and return it as stored.

        Issues and pull requests get the next number of their repository;
        repository names must be unique per owner.
        """
        kind = kind_of(snapshot)
        with self._lock:
            table = self._tables[kind]
            if snapshot.id in table:
                raise ValueError(f"{kind.value} {snapshot.id} already exists")
            if kind is ResourceKind.REPOSITORY:
                if self._repository_named(snapshot.owner, snapshot.name) is not None:
                    raise InvalidFieldsError(
                        ["name"], message="Repository name already exists"
                    )
                stored = _detached(snapshot)
            else:
                if snapshot.repository_id not in self._tables[ResourceKind.REPOSITORY]:
                    raise NotFoundError(_NOT_FOUND_MESSAGES[ResourceKind.REPOSITORY])
                stored = snapshot.model_copy(
                    update={"number": self._next_number(snapshot.repository_id)},
                    deep=True,
                )
            table[stored.id] = stored
            try:
                self.save()
            except Exception:
                del table[stored.id]
                raise
            log.debug("Inserted %s %s", kind.value, stored.id)
            return _detached(stored)

    def commit(self, snapshot: BaseModel) -> BaseModel:
        """Replace the stored resource if its version is still ``snapshot.version``.

        The committed snapshot is returned with its version incremented.
        """
        kind = kind_of(snapshot)
        with self._lock:
            current = self._tables[kind].get(snapshot.id)
            if current is None:
                raise NotFoundError(_NOT_FOUND_MESSAGES[kind])
            if current.version != snapshot.version:
                raise ConcurrentModification(
                    kind.value, snapshot.id, snapshot.version, current.version
                )
            if kind is ResourceKind.REPOSITORY:
                clash = self._repository_named(snapshot.owner, snapshot.name)
                if clash is not None and clash.id != snapshot.id:
                    raise InvalidFieldsError(
                        ["name"], message="Repository name already exists"
                    )
            stored = snapshot.model_copy(
                update={"version": snapshot.version + 1}, deep=True
            )
            self._tables[kind][snapshot.id] = stored
            try:
                self.save()
            except Exception:
                self._tables[kind][snapshot.id] = current
                raise
            return _detached(stored)

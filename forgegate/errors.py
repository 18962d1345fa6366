"""forgegate exception classes.

Every error carries a machine readable ``code``, the HTTP status a route
handler should answer with, and whether re-fetching and re-applying the
operation may succeed.
"""

from __future__ import annotations

from collections.abc import Iterable


class ForgeError(Exception):
    """Base exception for all forgegate errors."""

    http_status = 400
    retryable = False

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}")


class AccessDenied(ForgeError):
    """Raised when the principal lacks the permission an operation needs."""

    http_status = 403

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__("ACCESS_DENIED", message)


class NotFoundError(ForgeError):
    """Raised when a repository, issue, pull request or comment is unknown."""

    http_status = 404

    def __init__(self, message: str) -> None:
        super().__init__("NOT_FOUND", message)


class InvalidFieldsError(ForgeError):
    """Raised when an update names fields outside the allow-list."""

    def __init__(self, fields: Iterable[str], message: str | None = None) -> None:
        self.fields = tuple(sorted(set(fields)))
        super().__init__(
            "INVALID_FIELDS",
            message or f"Invalid updates: {', '.join(self.fields)}",
        )


class InvalidTransition(ForgeError):
    """Raised when a lifecycle transition is not allowed from the current state."""

    code = "INVALID_TRANSITION"

    def __init__(self, action: str, state: str, message: str | None = None) -> None:
        self.action = action
        self.state = state
        super().__init__(
            type(self).code,
            message or f"Cannot {action} while {state}",
        )


class ResourceLocked(InvalidTransition):
    """Raised when commenting on a locked conversation."""

    code = "RESOURCE_LOCKED"


class RepositoryArchived(InvalidTransition):
    """Raised when opening issues or pull requests on an archived repository."""

    code = "REPOSITORY_ARCHIVED"


class InsufficientApprovals(ForgeError):
    """Raised when a merge is attempted without enough approving reviews."""

    http_status = 409

    def __init__(self, have: int, required: int) -> None:
        self.have = have
        self.required = required
        super().__init__(
            "INSUFFICIENT_APPROVALS",
            f"Pull request needs {required} approvals to be merged, has {have}",
        )


class InvalidCollaborator(ForgeError):
    """Raised when a collaborator change would break repository invariants."""

    def __init__(self, message: str) -> None:
        super().__init__("INVALID_COLLABORATOR", message)


class ConcurrentModification(ForgeError):
    """Raised when a snapshot changed between read and commit.

    This is the only retryable error: callers should re-fetch and re-apply.
    """

    http_status = 409
    retryable = True

    def __init__(self, kind: str, resource_id: str, expected: int, actual: int) -> None:
        self.kind = kind
        self.resource_id = resource_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            "CONCURRENT_MODIFICATION",
            f"{kind} {resource_id} is at version {actual}, expected {expected}",
        )

"""Whitelist validation for partial updates."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from ..errors import InvalidFieldsError
from .models import ResourceKind, evolve, utcnow

M = TypeVar("M", bound=BaseModel)

# Lifecycle fields (state, closed_*, merged_*, is_locked, reviewers, ...) and
# ownership fields are deliberately absent: they only change through their
# own transitions.
ALLOWED_FIELDS: dict[ResourceKind, frozenset[str]] = {
    ResourceKind.REPOSITORY: frozenset(
        {
            "name",
            "description",
            "is_private",
            "is_archived",
            "license",
            "topics",
            "required_approvals",
        }
    ),
    ResourceKind.ISSUE: frozenset(
        {"title", "description", "assignees", "labels", "milestone"}
    ),
    ResourceKind.PULL_REQUEST: frozenset(
        {"title", "description", "assignees", "labels", "milestone", "is_draft"}
    ),
}


def validate_update(requested: Iterable[str], allowed: Iterable[str]) -> None:
    """Reject the whole update if any requested field is not allowed."""
    offending = set(requested) - set(allowed)
    if offending:
        raise InvalidFieldsError(offending)


def invalid_fields(exc: ValidationError, fallback: Iterable[str]) -> InvalidFieldsError:
    """Translate a pydantic error into an :class:`InvalidFieldsError`.

    Model-level validators report no field location; those errors are
    attributed to ``fallback``.
    """
    fields = {str(err["loc"][0]) for err in exc.errors() if err["loc"]}
    fields = fields or set(fallback)
    return InvalidFieldsError(
        fields, message=f"Invalid values for: {', '.join(sorted(fields))}"
    )


def apply_update(resource: M, changes: Mapping[str, Any], kind: ResourceKind) -> M:
    """Validate ``changes`` against the allow-list for ``kind`` and apply them.

    Either every change is applied or none is: values that fail model
    validation are reported as :class:`InvalidFieldsError` for the fields
    pydantic complained about.
    """
    validate_update(changes.keys(), ALLOWED_FIELDS[kind])
    if not changes:
        return resource
    try:
        return evolve(resource, **changes, updated_at=utcnow())
    except ValidationError as exc:
        raise invalid_fields(exc, changes.keys()) from exc

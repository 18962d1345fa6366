"""Toggle protocol for reactions and stars."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable

from .models import Reaction, ReactionType


def toggle(
    reactions: frozenset[Reaction],
    principal_id: str,
    reaction_type: ReactionType | str,
) -> frozenset[Reaction]:
    """Add the ``(principal_id, reaction_type)`` reaction, or remove it if present.

    Applying the same toggle twice returns the original set.
    """
    reaction = Reaction(principal_id=principal_id, type=ReactionType(reaction_type))
    if reaction in reactions:
        return reactions - {reaction}
    return reactions | {reaction}


def toggle_member(members: frozenset[str], principal_id: str) -> frozenset[str]:
    if principal_id in members:
        return members - {principal_id}
    return members | {principal_id}


def reaction_counts(reactions: Iterable[Reaction]) -> dict[ReactionType, int]:
    """Count reactions per type, omitting types nobody used."""
    return dict(Counter(r.type for r in reactions))

"""Role resolution and repository access decisions.

All functions are pure and answer with plain values; turning a ``False``
into an error response is the caller's job.
"""

from __future__ import annotations

from .models import LifecycleResource, Repository, Role


def resolve_role(repository: Repository, principal_id: str | None) -> Role | None:
    """Return the effective role of ``principal_id`` on ``repository``.

    The owner always resolves to :attr:`Role.ADMIN`; collaborator entries
    cannot shadow it. Anonymous principals and strangers resolve to ``None``.
    """
    if principal_id is None:
        return None
    if principal_id == repository.owner:
        return Role.ADMIN
    return repository.collaborators.get(principal_id)


def has_role(repository: Repository, principal_id: str | None, minimum: Role) -> bool:
    role = resolve_role(repository, principal_id)
    return role is not None and role.meets_or_above(minimum)


def can_read(repository: Repository, principal_id: str | None) -> bool:
    if not repository.is_private:
        return True
    return has_role(repository, principal_id, Role.READ)


def can_write(repository: Repository, principal_id: str | None) -> bool:
    return has_role(repository, principal_id, Role.WRITE)


def can_admin(repository: Repository, principal_id: str | None) -> bool:
    return has_role(repository, principal_id, Role.ADMIN)


def can_modify(
    repository: Repository,
    principal_id: str | None,
    resource: LifecycleResource,
) -> bool:
    """Whether ``principal_id`` may edit, close or reopen ``resource``.

    Authors may manage their own issues and pull requests for as long as they
    can still read the repository; anyone else needs write access.
    """
    if principal_id is None:
        return False
    if principal_id == resource.author and can_read(repository, principal_id):
        return True
    return can_write(repository, principal_id)

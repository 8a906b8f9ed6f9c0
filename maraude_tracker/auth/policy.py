"""
Maraude Tracker - Authorization Policy
Role and association-scope predicates shared by every route
"""
from fastapi import Depends

from maraude_tracker.errors import ForbiddenError
from maraude_tracker.auth.oauth2 import get_current_user
from maraude_tracker.models.db_models import Association, User, UserRole


def _owner_id(resource):
    if isinstance(resource, User):
        return resource.id
    if hasattr(resource, "created_by"):
        return resource.created_by
    return getattr(resource, "added_by", None)


def _association_id(resource):
    if isinstance(resource, Association):
        return resource.id
    return getattr(resource, "association_id", None)


def is_admin(actor: User) -> bool:
    return actor is not None and actor.role == UserRole.ADMIN


def is_coordinator(actor: User) -> bool:
    return actor is not None and actor.role == UserRole.COORDINATOR


def is_self(actor: User, resource) -> bool:
    owner = _owner_id(resource)
    return actor is not None and owner is not None and owner == actor.id


def is_same_association(actor: User, resource) -> bool:
    association_id = _association_id(resource)
    return actor is not None and association_id is not None and association_id == actor.association_id


def is_coordinator_of_same_association(actor: User, resource) -> bool:
    return is_coordinator(actor) and is_same_association(actor, resource)


def can_access_association(actor: User, resource) -> bool:
    return is_admin(actor) or is_same_association(actor, resource)


def can_edit(actor: User, resource) -> bool:
    return is_self(actor, resource) or is_coordinator_of_same_association(actor, resource) or is_admin(actor)


def can_manage(actor: User, resource=None) -> bool:
    """Coordinator or admin; coordinators only inside their own association."""
    if is_admin(actor):
        return True
    if not is_coordinator(actor):
        return False
    return resource is None or is_same_association(actor, resource)


def can_validate(actor: User, resource) -> bool:
    return is_admin(actor) or is_coordinator_of_same_association(actor, resource)


def require(condition: bool) -> None:
    if not condition:
        raise ForbiddenError("Access denied")


def require_roles(*roles: UserRole):
    """Dependency factory: the current user must hold one of the given roles."""
    async def checker(current_user: User = Depends(get_current_user)) -> User:
        require(current_user.role in roles)
        return current_user
    return checker

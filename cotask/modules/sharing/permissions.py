"""
Permission resolution for lists and notes.

resolve() is pure: it only looks at the resource's owner and grants.
Mutations are gated by capability objects instead of permission strings:
ContentEditor (owner or edit grant) may change content, ResourceAdministrator
(owner only) may additionally pin, archive, delete and manage grants.
"""

import logging

from cotask.core.errors import ForbiddenError, NotFoundError
from cotask.modules.sharing.models import Permission, SharedResource

logger = logging.getLogger(__name__)


def resolve(resource: SharedResource, user_id: str) -> Permission:
    if user_id == resource.owner_id:
        return Permission.OWNER
    grant = resource.grant_for(user_id)
    if grant is None:
        return Permission.NONE
    if grant.permission == Permission.EDIT.value:
        return Permission.EDIT
    return Permission.VIEW


class ContentEditor:
    """Proof that user_id may change the content of resource."""

    def __init__(self, resource: SharedResource, user_id: str, permission: Permission):
        self.resource = resource
        self.user_id = user_id
        self.permission = permission

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.resource.kind.name}:{self.resource.id} user={self.user_id}>"


class ResourceAdministrator(ContentEditor):
    """Proof that user_id owns resource."""


def require_visible(resource: SharedResource, user_id: str) -> Permission:
    permission = resolve(resource, user_id)
    if permission is Permission.NONE:
        # Invisible resources are reported exactly like missing ones
        raise NotFoundError(f"{resource.kind.name.capitalize()} not found")
    return permission


def require_content_editor(resource: SharedResource, user_id: str) -> ContentEditor:
    permission = resolve(resource, user_id)
    if permission is Permission.OWNER:
        return ResourceAdministrator(resource, user_id, permission)
    if permission is Permission.EDIT:
        return ContentEditor(resource, user_id, permission)
    logger.warning(f"User {user_id} with {permission.value} access tried to edit {resource.kind.name} {resource.id}")
    raise ForbiddenError(f"You do not have permission to edit this {resource.kind.name}")


def require_administrator(resource: SharedResource, user_id: str) -> ResourceAdministrator:
    permission = resolve(resource, user_id)
    if permission is not Permission.OWNER:
        logger.warning(f"User {user_id} with {permission.value} access tried an owner-only action on {resource.kind.name} {resource.id}")
        raise ForbiddenError(f"Only the {resource.kind.name} owner can perform this action")
    return ResourceAdministrator(resource, user_id, permission)

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Type

from pydantic import BaseModel
from supabase import Client

from cotask.core.errors import AlreadyExistsError, ForbiddenError, NotFoundError, SelfReferenceError, ValidationError
from cotask.database.service import SupabaseService, utc_now_iso
from cotask.database.supabase_client import store_errors
from cotask.modules.profiles.service import ProfileService
from cotask.modules.realtime.feed import ChangeBroker
from cotask.modules.sharing.models import GRANTABLE_PERMISSIONS, Permission, SharedResource
from cotask.modules.sharing.permissions import (
    ContentEditor,
    ResourceAdministrator,
    require_administrator,
    require_content_editor,
    require_visible,
    resolve,
)
from cotask.modules.sharing.schemas import BulkResponse, ShareResponse

logger = logging.getLogger(__name__)


def completion_ratio(row: Dict[str, Any]) -> float:
    tasks = row.get("tasks") or []
    if not tasks:
        return 0.0
    return sum(1 for t in tasks if t.get("is_completed")) / len(tasks)


# sort order -> (key, newest/highest first)
SORT_KEYS: Dict[str, Tuple[Callable[[Dict[str, Any]], Any], bool]] = {
    "created": (lambda r: r.get("created_at") or "", True),
    "modified": (lambda r: r.get("updated_at") or r.get("created_at") or "", True),
    "name": (lambda r: (r.get("title") or "").casefold(), False),
    "completion": (completion_ratio, True),
}


def arrange(rows: List[Dict[str, Any]], query: Optional[str] = None, sort: str = "created",
            search_fields: Tuple[str, ...] = ("title",)) -> List[Dict[str, Any]]:
    """Case-insensitive search over search_fields, pinned rows first, each group in the given order."""
    if sort not in SORT_KEYS:
        raise ValidationError(f"Sort must be one of: {', '.join(SORT_KEYS)}")
    needle = (query or "").strip().casefold()
    if needle:
        rows = [r for r in rows if any(needle in str(r.get(f) or "").casefold() for f in search_fields)]
    key, descending = SORT_KEYS[sort]
    rows = sorted(rows, key=key, reverse=descending)
    return sorted(rows, key=lambda r: not r.get("is_pinned"))


class ResourceService(SupabaseService):
    """Ownership, sharing and content operations common to lists and notes.

    Subclasses set resource_class (which carries the table names),
    response_class and the content columns a ContentEditor may change.
    """

    resource_class: Type[SharedResource] = SharedResource
    response_class: Type[BaseModel] = BaseModel
    content_fields: Tuple[str, ...] = ("title",)
    search_fields: Tuple[str, ...] = ("title",)

    def __init__(self, supabase: Client, profiles: ProfileService, changes: Optional[ChangeBroker] = None):
        super().__init__(supabase, changes)
        self.profiles = profiles

    @property
    def kind(self):
        return self.resource_class.kind

    @property
    def label(self) -> str:
        return self.kind.name.capitalize()

    # Loading

    def _fetch_row(self, resource_id: str) -> Optional[Dict[str, Any]]:
        with store_errors(f"load {self.kind.name}"):
            return self._first(self.kind.table, id=resource_id)

    def _fetch_grant_rows(self, resource_ids: List[str]) -> List[Dict[str, Any]]:
        if not resource_ids:
            return []
        with store_errors(f"load {self.kind.name} shares"):
            result = self.supabase.table(self.kind.share_table)\
                .select("*")\
                .in_(self.kind.share_fk, resource_ids)\
                .execute()
        return result.data or []

    def load(self, resource_id: str) -> SharedResource:
        row = self._fetch_row(resource_id)
        if not row:
            raise NotFoundError(f"{self.label} not found")
        return self.resource_class.from_rows(row, self._fetch_grant_rows([resource_id]))

    def _attach_children(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return rows

    def _annotate(self, row: Dict[str, Any], permission: Permission) -> Dict[str, Any]:
        return {**row, "permission": permission.value, "is_shared": permission is not Permission.OWNER}

    def _respond(self, rows: List[Dict[str, Any]]) -> List[BaseModel]:
        return [self.response_class(**row) for row in self._attach_children(rows)]

    def get(self, resource_id: str, user_id: str) -> BaseModel:
        resource = self.load(resource_id)
        permission = require_visible(resource, user_id)
        return self._respond([self._annotate(resource.row, permission)])[0]

    def fetch_visible(self, resource_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        """Annotated row with children, or None when missing or invisible to user_id."""
        row = self._fetch_row(resource_id)
        if not row:
            return None
        resource = self.resource_class.from_rows(row, self._fetch_grant_rows([resource_id]))
        permission = resolve(resource, user_id)
        if permission is Permission.NONE:
            return None
        return self._attach_children([self._annotate(row, permission)])[0]

    def grant_rows_for(self, user_id: str) -> List[Dict[str, Any]]:
        """Grants held by user_id on resources of this kind."""
        with store_errors(f"load {self.kind.name} shares"):
            result = self.supabase.table(self.kind.share_table)\
                .select("*")\
                .eq("user_id", user_id)\
                .execute()
        return result.data or []

    def visible_rows(self, user_id: str) -> List[Dict[str, Any]]:
        """Owned and shared-with-me rows, annotated and with children, newest first."""
        with store_errors(f"load {self.kind.name}s"):
            owned = self.supabase.table(self.kind.table)\
                .select("*")\
                .eq("created_by", user_id)\
                .execute()
            permissions = {g[self.kind.share_fk]: g.get("permission") or Permission.VIEW.value for g in self.grant_rows_for(user_id)}
            shared = []
            if permissions:
                shared = self.supabase.table(self.kind.table)\
                    .select("*")\
                    .in_("id", list(permissions))\
                    .execute().data or []

        rows = [self._annotate(r, Permission.OWNER) for r in owned.data or []]
        rows += [
            self._annotate(r, Permission(permissions[r["id"]]))
            for r in shared
            if r.get("created_by") != user_id
        ]
        rows.sort(key=lambda r: r.get("created_at") or "", reverse=True)
        return self._attach_children(rows)

    def list_visible(self, user_id: str) -> List[BaseModel]:
        return [self.response_class(**row) for row in self.visible_rows(user_id)]

    def browse(self, user_id: str, query: Optional[str] = None, sort: str = "created",
               include_archived: bool = False) -> List[BaseModel]:
        """Visible items matching query, pinned first, then in the requested order."""
        rows = [r for r in self.visible_rows(user_id) if include_archived or not r.get("is_archived")]
        return [self.response_class(**row) for row in arrange(rows, query, sort, self.search_fields)]

    # Content

    def _creation_defaults(self) -> Dict[str, Any]:
        return {}

    def create(self, owner_id: str, attrs: Dict[str, Any]) -> BaseModel:
        now = utc_now_iso()
        data = {
            **self._creation_defaults(),
            **{k: v for k, v in attrs.items() if k in self.content_fields and v is not None},
            "created_by": owner_id,
            "is_pinned": False,
            "is_archived": False,
            "created_at": now,
            "updated_at": now,
        }
        with store_errors(f"create {self.kind.name}"):
            result = self.supabase.table(self.kind.table).insert(data).execute()
        if not result.data:
            raise NotFoundError(f"Failed to create {self.kind.name}")
        logger.info(f"User {owner_id} created {self.kind.name} {result.data[0]['id']}")
        self._published_inserts(self.kind.table, result.data)
        return self._respond([self._annotate(result.data[0], Permission.OWNER)])[0]

    def _write(self, editor: ContentEditor, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a row update authorised by editor, stamping updated_at."""
        fields = {**fields, "updated_at": utc_now_iso()}
        resource = editor.resource
        with store_errors(f"update {self.kind.name}"):
            result = self.supabase.table(self.kind.table)\
                .update(fields)\
                .eq("id", resource.id)\
                .execute()
        if not result.data:
            raise NotFoundError(f"{self.label} not found")
        self._published_updates(self.kind.table, result.data, before=resource.row)
        return result.data[0]

    def update_content(self, resource_id: str, user_id: str, fields: Dict[str, Any]) -> BaseModel:
        changes = {k: v for k, v in fields.items() if k in self.content_fields and v is not None}
        if any(not isinstance(v, str) for v in changes.values()):
            raise ValidationError("Content fields must be text")
        if "title" in changes and not str(changes["title"]).strip():
            raise ValidationError("Title cannot be empty")
        editor = require_content_editor(self.load(resource_id), user_id)
        if not changes:
            return self._respond([self._annotate(editor.resource.row, editor.permission)])[0]
        row = self._write(editor, changes)
        return self._respond([self._annotate(row, editor.permission)])[0]

    # Owner-only administration

    def _admin_write(self, admin: ResourceAdministrator, fields: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(admin, ResourceAdministrator):
            raise ForbiddenError(f"Only the {self.kind.name} owner can perform this action")
        return self._write(admin, fields)

    def _set_flag(self, resource_id: str, user_id: str, column: str, value: Optional[bool]) -> BaseModel:
        admin = require_administrator(self.load(resource_id), user_id)
        if value is None:
            value = not bool(admin.resource.row.get(column))
        row = self._admin_write(admin, {column: value})
        return self._respond([self._annotate(row, Permission.OWNER)])[0]

    def set_pinned(self, resource_id: str, user_id: str, value: Optional[bool] = None) -> BaseModel:
        return self._set_flag(resource_id, user_id, "is_pinned", value)

    def set_archived(self, resource_id: str, user_id: str, value: Optional[bool] = None) -> BaseModel:
        return self._set_flag(resource_id, user_id, "is_archived", value)

    def _delete_children(self, admin: ResourceAdministrator) -> None:
        """Hook for kinds that own child rows (list tasks)."""

    def _delete_resource(self, admin: ResourceAdministrator) -> None:
        if not isinstance(admin, ResourceAdministrator):
            raise ForbiddenError(f"Only the {self.kind.name} owner can perform this action")
        resource_id = admin.resource.id
        self._delete_children(admin)
        with store_errors(f"delete {self.kind.name}"):
            grants = self.supabase.table(self.kind.share_table)\
                .delete()\
                .eq(self.kind.share_fk, resource_id)\
                .execute()
            self._published_deletes(self.kind.share_table, grants.data or [])
            result = self.supabase.table(self.kind.table)\
                .delete()\
                .eq("id", resource_id)\
                .execute()
        self._published_deletes(self.kind.table, result.data or [admin.resource.row])
        logger.info(f"User {admin.user_id} deleted {self.kind.name} {resource_id}")

    def delete(self, resource_id: str, user_id: str) -> bool:
        admin = require_administrator(self.load(resource_id), user_id)
        self._delete_resource(admin)
        return True

    # Grants

    def _share_response(self, row: Dict[str, Any], profiles=None) -> ShareResponse:
        profiles = profiles or {}
        return ShareResponse(
            id=row["id"],
            resource_id=row[self.kind.share_fk],
            user_id=row["user_id"],
            permission=row.get("permission") or Permission.VIEW.value,
            shared_by=row.get("shared_by"),
            shared_at=row.get("shared_at"),
            user=profiles.get(row["user_id"]),
        )

    @staticmethod
    def _check_grantable(permission: str) -> None:
        if permission not in GRANTABLE_PERMISSIONS:
            raise ValidationError("Permission must be 'view' or 'edit'")

    def grant_share(self, resource_id: str, user_id: str, grantee_username: str, permission: str = "view") -> ShareResponse:
        admin = require_administrator(self.load(resource_id), user_id)
        self._check_grantable(permission)
        grantee = self.profiles.require_by_username(grantee_username)
        if grantee.id == admin.resource.owner_id:
            raise SelfReferenceError("Cannot share with yourself")
        if admin.resource.grant_for(grantee.id) is not None:
            raise AlreadyExistsError(f"{self.label} already shared with this user")
        with store_errors(f"share {self.kind.name}"):
            result = self.supabase.table(self.kind.share_table).insert({
                self.kind.share_fk: resource_id,
                "user_id": grantee.id,
                "permission": permission,
                "shared_by": user_id,
                "shared_at": utc_now_iso(),
            }).execute()
        logger.info(f"User {user_id} shared {self.kind.name} {resource_id} with {grantee.id} ({permission})")
        self._published_inserts(self.kind.share_table, result.data or [])
        return self._share_response(result.data[0], {grantee.id: grantee})

    def list_grants(self, resource_id: str, user_id: str) -> List[ShareResponse]:
        admin = require_administrator(self.load(resource_id), user_id)
        rows = self._fetch_grant_rows([admin.resource.id])
        profiles = self.profiles.get_summaries(r["user_id"] for r in rows)
        return [self._share_response(r, profiles) for r in rows]

    def _load_grant(self, grant_id: str, resource_id: Optional[str] = None) -> Tuple[Dict[str, Any], SharedResource]:
        with store_errors(f"load {self.kind.name} share"):
            grant = self._first(self.kind.share_table, id=grant_id)
        if not grant or (resource_id is not None and grant[self.kind.share_fk] != resource_id):
            raise NotFoundError("Share not found")
        return grant, self.load(grant[self.kind.share_fk])

    def update_grant_permission(self, grant_id: str, user_id: str, permission: str, resource_id: Optional[str] = None) -> ShareResponse:
        self._check_grantable(permission)
        grant, resource = self._load_grant(grant_id, resource_id)
        require_administrator(resource, user_id)
        with store_errors(f"update {self.kind.name} share"):
            result = self.supabase.table(self.kind.share_table)\
                .update({"permission": permission})\
                .eq("id", grant_id)\
                .execute()
        if not result.data:
            raise NotFoundError("Share not found")
        self._published_updates(self.kind.share_table, result.data, before=grant)
        return self._share_response(result.data[0])

    def revoke_grant(self, grant_id: str, user_id: str, resource_id: Optional[str] = None) -> bool:
        grant, resource = self._load_grant(grant_id, resource_id)
        require_administrator(resource, user_id)
        self._delete_grant(grant)
        return True

    def leave(self, resource_id: str, user_id: str) -> bool:
        resource = self.load(resource_id)
        if resolve(resource, user_id) is Permission.OWNER:
            raise ForbiddenError(f"You are the owner of this {self.kind.name}. Delete it instead.")
        grant = resource.grant_for(user_id)
        if grant is None:
            raise NotFoundError(f"{self.label} not found")
        self._delete_grant({"id": grant.id, self.kind.share_fk: resource_id, "user_id": user_id})
        logger.info(f"User {user_id} left {self.kind.name} {resource_id}")
        return True

    def _delete_grant(self, grant: Dict[str, Any]) -> None:
        with store_errors(f"remove {self.kind.name} share"):
            result = self.supabase.table(self.kind.share_table)\
                .delete()\
                .eq("id", grant["id"])\
                .execute()
        self._published_deletes(self.kind.share_table, result.data or [grant])

    # Bulk dashboard actions

    def _owned(self, user_id: str, resource_ids: Iterable[str]):
        """Yield administrator capabilities, collecting ids the caller cannot administer."""
        skipped: List[str] = []
        admins: List[ResourceAdministrator] = []
        for resource_id in dict.fromkeys(resource_ids):
            try:
                admins.append(require_administrator(self.load(resource_id), user_id))
            except (NotFoundError, ForbiddenError):
                skipped.append(resource_id)
        return admins, skipped

    def bulk_archive(self, user_id: str, resource_ids: Iterable[str]) -> BulkResponse:
        admins, skipped = self._owned(user_id, resource_ids)
        for admin in admins:
            self._admin_write(admin, {"is_archived": True})
        return BulkResponse(affected=len(admins), skipped=skipped)

    def bulk_delete(self, user_id: str, resource_ids: Iterable[str]) -> BulkResponse:
        admins, skipped = self._owned(user_id, resource_ids)
        for admin in admins:
            self._delete_resource(admin)
        return BulkResponse(affected=len(admins), skipped=skipped)

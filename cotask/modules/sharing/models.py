# Supabase tables: lists, notes, list_shares, note_shares
# This file documents the expected database schema and defines the
# in-memory records the permission resolver works on.

"""
Expected Supabase table structure:

list_shares / note_shares:
- id: uuid (primary key)
- list_id / note_id: uuid (foreign key to lists.id / notes.id, on delete cascade)
- user_id: uuid (foreign key to profiles.id, on delete cascade) - the grantee
- permission: text (not null, default: 'view') - values: view, edit
- shared_by: uuid (foreign key to profiles.id) - always the resource owner
- shared_at: timestamp (default: now())
- unique constraint on (list_id, user_id) / (note_id, user_id)

The owner (lists.created_by / notes.created_by) never has a share row.
Realtime delete filtering requires REPLICA IDENTITY FULL on both share tables.
"""

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, NamedTuple, Optional

from pydantic import BaseModel, Field


class Permission(str, Enum):
    OWNER = "owner"
    EDIT = "edit"
    VIEW = "view"
    NONE = "none"


GRANTABLE_PERMISSIONS = (Permission.EDIT.value, Permission.VIEW.value)


class ResourceKind(NamedTuple):
    name: str
    table: str
    share_table: str
    share_fk: str


LIST_KIND = ResourceKind("list", "lists", "list_shares", "list_id")
NOTE_KIND = ResourceKind("note", "notes", "note_shares", "note_id")
RESOURCE_KINDS = {kind.name: kind for kind in (LIST_KIND, NOTE_KIND)}


class ShareGrant(BaseModel):
    id: str
    resource_id: str
    user_id: str
    permission: str
    shared_by: Optional[str] = None
    shared_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, kind: ResourceKind, row: Dict[str, Any]) -> "ShareGrant":
        return cls(
            id=row["id"],
            resource_id=row[kind.share_fk],
            user_id=row["user_id"],
            permission=row.get("permission") or Permission.VIEW.value,
            shared_by=row.get("shared_by"),
            shared_at=row.get("shared_at"),
        )


class SharedResource(BaseModel):
    """A shareable record: one owner plus a set of grants."""

    kind: ClassVar[ResourceKind]

    id: str
    owner_id: str
    grants: List[ShareGrant] = Field(default_factory=list)
    row: Dict[str, Any] = Field(default_factory=dict)

    def grant_for(self, user_id: str) -> Optional[ShareGrant]:
        for grant in self.grants:
            if grant.user_id == user_id:
                return grant
        return None

    @classmethod
    def from_rows(cls, row: Dict[str, Any], grant_rows: List[Dict[str, Any]]) -> "SharedResource":
        return cls(
            id=row["id"],
            owner_id=row["created_by"],
            grants=[ShareGrant.from_row(cls.kind, g) for g in grant_rows],
            row=row,
        )


class ListResource(SharedResource):
    kind: ClassVar[ResourceKind] = LIST_KIND


class NoteResource(SharedResource):
    kind: ClassVar[ResourceKind] = NOTE_KIND

"""
Per-session in-memory view of everything a user can see, kept current by
folding change events into it.

Every fold is idempotent: applying the same event twice leaves the view as
applying it once. Local (optimistic) mutations are tracked in
PendingMutations so that a late echo of an older state does not clobber a
field the user just changed.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from cotask.modules.contacts.service import RELATIONSHIPS, perspective_status
from cotask.modules.contacts.models import PENDING_RECEIVED
from cotask.modules.realtime.feed import DELETE, INSERT, ChangeEvent
from cotask.modules.sharing.models import LIST_KIND, NOTE_KIND, RESOURCE_KINDS, Permission, ResourceKind

logger = logging.getLogger(__name__)

TASKS = "tasks"

# (kind name, resource id) -> annotated row or None when not visible
ResourceLoader = Callable[[str, str], Optional[Dict[str, Any]]]


def _same(a: Any, b: Any) -> bool:
    if a == b:
        return True
    if a is None or b is None:
        return False
    return str(a) == str(b)


class PendingMutation:
    """A local change that has not been confirmed by the change feed yet."""

    def __init__(self, table: str, row_id: str, fields: Dict[str, Any], previous: Dict[str, Any],
                 created_at: float, removed: Optional[Dict[str, Any]] = None):
        self.table = table
        self.row_id = row_id
        self.fields = fields
        self.previous = previous
        self.created_at = created_at
        # Full row for local deletes, restored on rollback
        self.removed = removed

    @property
    def key(self) -> Tuple[str, str]:
        return self.table, self.row_id

    def echoed_by(self, record: Dict[str, Any]) -> bool:
        return all(k in record and _same(record[k], v) for k, v in self.fields.items())

    def __repr__(self) -> str:
        return f"<PendingMutation {self.table}:{self.row_id} {sorted(self.fields)}>"


class PendingMutations:
    """Local changes per row, in the order they were made.

    get() returns the combined view of a row's outstanding changes; release()
    withdraws one of them when its store call fails.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[Tuple[str, str], List[PendingMutation]] = {}

    def __len__(self) -> int:
        self.expire()
        return len(self._entries)

    def record(self, table: str, row_id: str, fields: Dict[str, Any], previous: Dict[str, Any],
               removed: Optional[Dict[str, Any]] = None) -> PendingMutation:
        """Register a local change; stacks onto earlier pending changes of the same row."""
        self.get(table, row_id)
        mutation = PendingMutation(table, row_id, dict(fields), dict(previous), self.clock(), removed)
        self._entries.setdefault(mutation.key, []).append(mutation)
        return mutation

    def get(self, table: str, row_id: str) -> Optional[PendingMutation]:
        stack = self._entries.get((table, row_id))
        if not stack:
            return None
        combined = self._combine(stack)
        if self._expired(combined):
            logger.debug(f"Dropping expired {combined}")
            del self._entries[combined.key]
            return None
        return combined

    @staticmethod
    def _combine(stack: List[PendingMutation]) -> PendingMutation:
        fields: Dict[str, Any] = {}
        previous: Dict[str, Any] = {}
        removed = None
        for mutation in stack:
            fields.update(mutation.fields)
            # Oldest pre-action value of every field
            previous = {**mutation.previous, **previous}
            if mutation.removed is not None:
                removed = mutation.removed
        latest = stack[-1]
        return PendingMutation(latest.table, latest.row_id, fields, previous, latest.created_at, removed)

    def release(self, mutation: PendingMutation) -> Dict[str, Any]:
        """Withdraw a failed change and return the field values to restore.

        A field also set by a later, still pending change keeps that change's
        value; the later change inherits this one's pre-action value instead.
        """
        stack = self._entries.get(mutation.key, [])
        if mutation not in stack:
            return dict(mutation.previous)
        position = stack.index(mutation)
        stack.pop(position)
        restore = {}
        for field, value in mutation.previous.items():
            later = next((m for m in stack[position:] if field in m.fields), None)
            if later is None:
                restore[field] = value
            else:
                later.previous[field] = value
        if not stack:
            del self._entries[mutation.key]
        return restore

    def discard(self, table: str, row_id: str) -> None:
        self._entries.pop((table, row_id), None)

    def _expired(self, entry: PendingMutation) -> bool:
        return self.clock() - entry.created_at > self.ttl_seconds

    def expire(self) -> None:
        for key, stack in list(self._entries.items()):
            if self._expired(stack[-1]):
                logger.debug(f"Dropping expired {self._combine(stack)}")
                del self._entries[key]


class CollaborativeView:
    """Owned and shared lists (with tasks), notes and relationships of one user."""

    def __init__(self, user_id: str, loader: Optional[ResourceLoader] = None,
                 pending: Optional[PendingMutations] = None):
        self.user_id = user_id
        self.loader = loader
        self.pending = pending or PendingMutations(ttl_seconds=10.0)
        self.resources: Dict[str, Dict[str, Dict[str, Any]]] = {LIST_KIND.name: {}, NOTE_KIND.name: {}}
        self.tasks: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.task_index: Dict[str, str] = {}
        self.grant_index: Dict[str, Tuple[str, str]] = {}
        self.relationships: Dict[str, Dict[str, Any]] = {}

    # Loading

    def load(self, lists: List[Dict[str, Any]] = (), notes: List[Dict[str, Any]] = (),
             grants: List[Tuple[ResourceKind, Dict[str, Any]]] = (),
             relationships: List[Dict[str, Any]] = ()) -> None:
        """Replace the view's contents with a fresh initial read."""
        self.resources = {LIST_KIND.name: {}, NOTE_KIND.name: {}}
        self.tasks = {}
        self.task_index = {}
        self.grant_index = {}
        self.relationships = {}
        for row in lists:
            self._put_resource(LIST_KIND, row)
        for row in notes:
            self._put_resource(NOTE_KIND, row)
        for kind, grant in grants:
            self._index_grant(kind, grant)
        for row in relationships:
            self.relationships[row["id"]] = dict(row)

    @property
    def lists(self) -> Dict[str, Dict[str, Any]]:
        return self.resources[LIST_KIND.name]

    @property
    def notes(self) -> Dict[str, Dict[str, Any]]:
        return self.resources[NOTE_KIND.name]

    def visible_list_ids(self) -> List[str]:
        return sorted(self.lists)

    def shared_ids(self, kind: ResourceKind) -> List[str]:
        return sorted(rid for rid, row in self.resources[kind.name].items() if row.get("created_by") != self.user_id)

    def _annotated(self, row: Dict[str, Any], permission: Optional[str] = None) -> Dict[str, Any]:
        row = dict(row)
        if row.get("created_by") == self.user_id:
            permission = Permission.OWNER.value
        if permission is not None:
            row["permission"] = permission
        row.setdefault("permission", Permission.VIEW.value)
        row["is_shared"] = row["permission"] != Permission.OWNER.value
        return row

    def _put_resource(self, kind: ResourceKind, row: Dict[str, Any]) -> None:
        row = self._annotated(row)
        tasks = row.pop("tasks", None)
        self.resources[kind.name][row["id"]] = row
        if kind is LIST_KIND:
            self.tasks.setdefault(row["id"], {})
            for task in tasks or []:
                self._put_task(task)

    def _put_task(self, task: Dict[str, Any]) -> None:
        self.tasks.setdefault(task["list_id"], {})[task["id"]] = dict(task)
        self.task_index[task["id"]] = task["list_id"]

    def _drop_resource(self, kind: ResourceKind, resource_id: str) -> bool:
        removed = self.resources[kind.name].pop(resource_id, None) is not None
        if kind is LIST_KIND:
            for task_id in self.tasks.pop(resource_id, {}):
                self.task_index.pop(task_id, None)
                self.pending.discard(TASKS, task_id)
        self.pending.discard(kind.table, resource_id)
        return removed

    def _index_grant(self, kind: ResourceKind, grant: Dict[str, Any]) -> None:
        if grant.get("user_id") == self.user_id and grant.get(kind.share_fk):
            self.grant_index[grant["id"]] = (kind.name, grant[kind.share_fk])

    def _fetch(self, kind: ResourceKind, resource_id: str) -> Optional[Dict[str, Any]]:
        if self.loader is None:
            return None
        return self.loader(kind.name, resource_id)

    # Folding

    def apply(self, event: ChangeEvent) -> bool:
        """Fold one change event into the view. Returns whether anything changed."""
        if event.table == RELATIONSHIPS:
            return self._apply_relationship(event)
        if event.table == TASKS:
            return self._apply_task(event)
        for kind in RESOURCE_KINDS.values():
            if event.table == kind.table:
                return self._apply_resource(kind, event)
            if event.table == kind.share_table:
                return self._apply_grant(kind, event)
        logger.debug(f"Ignoring change on unknown table {event.table}")
        return False

    def _merge(self, table: str, current: Dict[str, Any], incoming: Dict[str, Any]) -> bool:
        entry = self.pending.get(table, current["id"])
        if entry is not None:
            if entry.echoed_by(incoming):
                self.pending.discard(table, current["id"])
            else:
                incoming = {k: v for k, v in incoming.items() if k not in entry.fields}
        changed = any(k not in current or not _same(current[k], v) for k, v in incoming.items())
        current.update(incoming)
        return changed

    def _deleted_locally(self, table: str, row_id: str) -> bool:
        entry = self.pending.get(table, row_id)
        return entry is not None and entry.removed is not None

    def _apply_resource(self, kind: ResourceKind, event: ChangeEvent) -> bool:
        resource_id = event.row_id
        if not resource_id:
            return False
        present = self.resources[kind.name].get(resource_id)

        if event.event_type == DELETE:
            return self._drop_resource(kind, resource_id)

        if present is not None:
            if event.event_type == INSERT:
                return False
            return self._merge(kind.table, present, event.new)

        if self._deleted_locally(kind.table, resource_id):
            return False
        row = self._fetch(kind, resource_id)
        if row is None and event.new.get("created_by") == self.user_id:
            row = event.new
        if row is None:
            return False
        self._put_resource(kind, row)
        return True

    def _apply_grant(self, kind: ResourceKind, event: ChangeEvent) -> bool:
        grant_id = event.row_id
        if event.event_type == DELETE:
            indexed = self.grant_index.pop(grant_id, None)
            resource_id = indexed[1] if indexed else None
            if resource_id is None and event.old.get("user_id") == self.user_id:
                resource_id = event.old.get(kind.share_fk)
            if resource_id is None:
                return False
            row = self.resources[kind.name].get(resource_id)
            if row is None or row.get("created_by") == self.user_id:
                return False
            return self._drop_resource(kind, resource_id)

        grant = event.new
        if grant.get("user_id") != self.user_id:
            return False
        self._index_grant(kind, grant)
        resource_id = grant.get(kind.share_fk)
        present = self.resources[kind.name].get(resource_id)
        if present is not None:
            permission = grant.get("permission") or Permission.VIEW.value
            if present.get("created_by") == self.user_id or present.get("permission") == permission:
                return False
            present["permission"] = permission
            return True
        row = self._fetch(kind, resource_id)
        if row is None:
            return False
        self._put_resource(kind, row)
        return True

    def _apply_task(self, event: ChangeEvent) -> bool:
        task_id = event.row_id
        if not task_id:
            return False
        list_id = event.record.get("list_id") or self.task_index.get(task_id)

        if event.event_type == DELETE:
            list_id = self.task_index.pop(task_id, list_id)
            self.pending.discard(TASKS, task_id)
            if list_id is None:
                return False
            return self.tasks.get(list_id, {}).pop(task_id, None) is not None

        if list_id not in self.lists:
            return False
        present = self.tasks.get(list_id, {}).get(task_id)
        if present is None:
            if self._deleted_locally(TASKS, task_id):
                return False
            previous_list = self.task_index.get(task_id)
            if previous_list is not None and previous_list != list_id:
                # Moved between lists
                self.tasks.get(previous_list, {}).pop(task_id, None)
            self._put_task(event.new)
            return True
        if event.event_type == INSERT:
            return False
        return self._merge(TASKS, present, event.new)

    def _apply_relationship(self, event: ChangeEvent) -> bool:
        rel_id = event.row_id
        if not rel_id:
            return False
        if event.event_type == DELETE:
            return self.relationships.pop(rel_id, None) is not None
        row = event.new
        if self.user_id not in (row.get("user_id"), row.get("related_user_id")):
            return False
        present = self.relationships.get(rel_id)
        if present is None:
            self.relationships[rel_id] = dict(row)
            return True
        if event.event_type == INSERT:
            return False
        return self._merge(RELATIONSHIPS, present, row)

    # Optimistic mutations

    def find_row(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        if table == TASKS:
            list_id = self.task_index.get(row_id)
            return self.tasks.get(list_id, {}).get(row_id) if list_id else None
        if table == RELATIONSHIPS:
            return self.relationships.get(row_id)
        for kind in RESOURCE_KINDS.values():
            if table == kind.table:
                return self.resources[kind.name].get(row_id)
        return None

    def apply_local(self, table: str, row_id: str, fields: Dict[str, Any]) -> Optional[PendingMutation]:
        """Apply fields to a row right away and remember the values they replaced."""
        row = self.find_row(table, row_id)
        if row is None:
            return None
        previous = {k: row.get(k) for k in fields}
        row.update(fields)
        return self.pending.record(table, row_id, dict(fields), previous)

    def apply_local_delete(self, table: str, row_id: str) -> Optional[PendingMutation]:
        row = self.find_row(table, row_id)
        if row is None:
            return None
        removed = dict(row)
        if table == TASKS:
            list_id = self.task_index.pop(row_id)
            self.tasks.get(list_id, {}).pop(row_id, None)
        else:
            kind = next(k for k in RESOURCE_KINDS.values() if k.table == table)
            removed["tasks"] = list(self.tasks.get(row_id, {}).values())
            self._drop_resource(kind, row_id)
        return self.pending.record(table, row_id, {}, {}, removed=removed)

    def apply_confirmed_insert(self, table: str, row: Dict[str, Any]) -> bool:
        """Add a row the store just created; the later echo is then a no-op."""
        new = dict(row)
        new.pop("permission", None)
        new.pop("is_shared", None)
        return self.apply(ChangeEvent(table=table, event_type=INSERT, new=new))

    def rollback(self, mutation: Optional[PendingMutation]) -> None:
        """Undo a local mutation whose store call failed."""
        if mutation is None:
            return
        restore = self.pending.release(mutation)
        if mutation.removed is not None:
            if mutation.table == TASKS:
                self._put_task(mutation.removed)
            else:
                kind = next(k for k in RESOURCE_KINDS.values() if k.table == mutation.table)
                self._put_resource(kind, mutation.removed)
            return
        row = self.find_row(mutation.table, mutation.row_id)
        if row is not None:
            row.update(restore)

    # Reading

    def snapshot(self) -> Dict[str, Any]:
        def newest_first(rows):
            return sorted(rows, key=lambda r: r.get("created_at") or "", reverse=True)

        lists = []
        for row in newest_first(self.lists.values()):
            tasks = sorted(self.tasks.get(row["id"], {}).values(), key=lambda t: t.get("created_at") or "")
            lists.append({**row, "tasks": [dict(t) for t in tasks]})
        notes = [dict(r) for r in newest_first(self.notes.values())]
        contacts = [
            {**row, "status": perspective_status(row, self.user_id)}
            for row in newest_first(self.relationships.values())
        ]
        return {
            "lists": {
                "owned": [l for l in lists if not l["is_shared"]],
                "shared": [l for l in lists if l["is_shared"]],
            },
            "notes": {
                "owned": [n for n in notes if not n["is_shared"]],
                "shared": [n for n in notes if n["is_shared"]],
            },
            "relationships": contacts,
            "pending_received": sum(1 for c in contacts if c["status"] == PENDING_RECEIVED),
        }

"""
A live session: one user's CollaborativeView kept current by change-feed
subscriptions scoped to that user, plus optimistic mutation commands.

Events are queued by the feed callbacks (from any thread) and folded one at a
time by a single worker task. Fetches needed by a fold run in a worker thread
while the view lock is held, so local mutations and folds never interleave.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from cotask.config import settings
from cotask.core.errors import ForbiddenError, NotFoundError, ValidationError
from cotask.database.service import utc_now_iso
from cotask.modules.contacts.service import RELATIONSHIPS, RelationshipService
from cotask.modules.lists.service import ListService, completion_fields
from cotask.modules.notes.service import NoteService
from cotask.modules.realtime.feed import ChangeEvent, ChangeFeed, RowFilter, SubscriptionHandle
from cotask.modules.realtime.reconciler import TASKS, CollaborativeView, PendingMutation, PendingMutations
from cotask.modules.realtime.schemas import LiveCommand
from cotask.modules.sharing.models import LIST_KIND, NOTE_KIND, Permission, ResourceKind
from cotask.modules.sharing.service import ResourceService

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[Dict[str, Any]], Awaitable[None]]


class LiveSession:
    def __init__(
        self,
        user_id: str,
        feed: ChangeFeed,
        lists: ListService,
        notes: NoteService,
        relationships: RelationshipService,
        on_change: Optional[SnapshotCallback] = None,
        pending: Optional[PendingMutations] = None,
    ):
        self.user_id = user_id
        self.feed = feed
        self.services: Dict[str, ResourceService] = {LIST_KIND.name: lists, NOTE_KIND.name: notes}
        self.lists = lists
        self.notes = notes
        self.relationships = relationships
        self.on_change = on_change
        self.view = CollaborativeView(
            user_id,
            loader=self._load_resource,
            pending=pending or PendingMutations(settings.pending_mutation_ttl_seconds),
        )
        self._handles: Dict[str, SubscriptionHandle] = {}
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._lock: Optional[asyncio.Lock] = None
        self._worker: Optional[asyncio.Task] = None
        self.closed = False

    async def __aenter__(self) -> "LiveSession":
        try:
            await self.start()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Lifecycle

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._lock = asyncio.Lock()
        # Subscribe before the initial read; changes landing in between are folded afterwards
        await self._open_fixed_subscriptions()
        initial = await asyncio.to_thread(self._initial_read)
        async with self._lock:
            self.view.load(**initial)
        await self._rescope()
        self._worker = asyncio.create_task(self._run())
        logger.info(f"Live session started for user {self.user_id} ({len(self._handles)} subscriptions)")

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        handles = list(self._handles.values())
        self._handles.clear()
        for handle in handles:
            await self.feed.close(handle)
        logger.info(f"Live session closed for user {self.user_id}")

    @property
    def subscription_filters(self) -> List[Tuple[str, Optional[str]]]:
        return sorted((h.table, h.filter) for h in self._handles.values())

    def _initial_read(self) -> Dict[str, Any]:
        grants = [(LIST_KIND, g) for g in self.lists.grant_rows_for(self.user_id)]
        grants += [(NOTE_KIND, g) for g in self.notes.grant_rows_for(self.user_id)]
        return {
            "lists": self.lists.visible_rows(self.user_id),
            "notes": self.notes.visible_rows(self.user_id),
            "grants": grants,
            "relationships": self.relationships.rows_for_user(self.user_id),
        }

    def _load_resource(self, kind_name: str, resource_id: str) -> Optional[Dict[str, Any]]:
        return self.services[kind_name].fetch_visible(resource_id, self.user_id)

    # Subscriptions

    async def _subscribe(self, key: str, table: str, filter: Optional[str]) -> None:
        current = self._handles.get(key)
        if current is not None and current.filter == filter:
            return
        if filter is not None:
            # Open the replacement first so no change falls between the two
            self._handles[key] = await self.feed.open_subscription(table, filter, self._enqueue)
        else:
            self._handles.pop(key, None)
        if current is not None:
            await self.feed.close(current)

    async def _open_fixed_subscriptions(self) -> None:
        uid = self.user_id
        for kind in (LIST_KIND, NOTE_KIND):
            await self._subscribe(f"own:{kind.table}", kind.table, RowFilter.eq("created_by", uid))
            await self._subscribe(f"grants:{kind.share_table}", kind.share_table, RowFilter.eq("user_id", uid))
        await self._subscribe("relationships:sent", RELATIONSHIPS, RowFilter.eq("user_id", uid))
        await self._subscribe("relationships:received", RELATIONSHIPS, RowFilter.eq("related_user_id", uid))

    async def _rescope(self) -> None:
        """Point the id-scoped subscriptions at the current set of visible resources."""
        for kind in (LIST_KIND, NOTE_KIND):
            shared = self.view.shared_ids(kind)
            await self._subscribe(f"shared:{kind.table}", kind.table, RowFilter.in_("id", shared) if shared else None)
        list_ids = self.view.visible_list_ids()
        await self._subscribe("tasks", TASKS, RowFilter.in_("list_id", list_ids) if list_ids else None)

    def _enqueue(self, event: ChangeEvent) -> None:
        if self.closed or self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    # Event processing

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._process(event)
            except Exception as e:
                logger.error(f"Failed to apply {event.event_type} on {event.table} for user {self.user_id}: {e}")
            finally:
                self._queue.task_done()

    async def _process(self, event: ChangeEvent) -> None:
        async with self._lock:
            changed = await asyncio.to_thread(self.view.apply, event)
        if not changed:
            return
        await self._rescope()
        await self.push()

    async def wait_idle(self) -> None:
        """Wait until every event delivered so far has been folded."""
        await asyncio.sleep(0)
        await self._queue.join()

    async def push(self) -> None:
        if self.on_change is None:
            return
        # Folds mutate the view from a worker thread while holding the lock
        async with self._lock:
            view = self.view.snapshot()
        await self.on_change(view)

    # Optimistic commands

    def _local_row(self, table: str, row_id: Optional[str]) -> Dict[str, Any]:
        row = self.view.find_row(table, row_id) if row_id else None
        if row is None:
            raise NotFoundError("Task not found" if table == TASKS else "Not found")
        return row

    def _local_permission(self, kind: ResourceKind, resource_id: Optional[str]) -> str:
        row = self._local_row(kind.table, resource_id)
        return row.get("permission", Permission.NONE.value)

    def _require_local_editor(self, kind: ResourceKind, resource_id: Optional[str]) -> None:
        if self._local_permission(kind, resource_id) not in (Permission.OWNER.value, Permission.EDIT.value):
            raise ForbiddenError(f"You do not have permission to edit this {kind.name}")

    def _require_local_owner(self, kind: ResourceKind, resource_id: Optional[str]) -> None:
        if self._local_permission(kind, resource_id) != Permission.OWNER.value:
            raise ForbiddenError(f"Only the {kind.name} owner can perform this action")

    async def _optimistic(self, mutation: Optional[PendingMutation], call: Callable[[], Any]) -> Any:
        await self.push()
        try:
            return await asyncio.to_thread(call)
        except Exception:
            async with self._lock:
                self.view.rollback(mutation)
            await self.push()
            raise

    async def toggle_task(self, task_id: str, completed: Optional[bool] = None):
        async with self._lock:
            task = self._local_row(TASKS, task_id)
            self._require_local_editor(LIST_KIND, task["list_id"])
            if completed is None:
                completed = not task.get("is_completed")
            fields = completion_fields(completed, self.user_id, utc_now_iso())
            mutation = self.view.apply_local(TASKS, task_id, fields)
        return await self._optimistic(
            mutation,
            lambda: self.lists.toggle_task(task_id, self.user_id, completed, at=fields["completed_at"]),
        )

    async def update_task(self, task_id: str, fields: Dict[str, Any]):
        changes = ListService._task_changes(fields)
        async with self._lock:
            task = self._local_row(TASKS, task_id)
            self._require_local_editor(LIST_KIND, task["list_id"])
            mutation = self.view.apply_local(TASKS, task_id, changes)
        return await self._optimistic(mutation, lambda: self.lists.update_task(task_id, self.user_id, changes))

    async def delete_task(self, task_id: str):
        async with self._lock:
            task = self._local_row(TASKS, task_id)
            self._require_local_editor(LIST_KIND, task["list_id"])
            mutation = self.view.apply_local_delete(TASKS, task_id)
        return await self._optimistic(mutation, lambda: self.lists.delete_task(task_id, self.user_id))

    async def add_task(self, list_id: str, fields: Dict[str, Any]):
        async with self._lock:
            self._require_local_editor(LIST_KIND, list_id)
        task = await asyncio.to_thread(self.lists.add_task, list_id, self.user_id, fields)
        async with self._lock:
            changed = self.view.apply_confirmed_insert(TASKS, task.model_dump(mode="json"))
        if changed:
            await self.push()
        return task

    async def _set_flag(self, kind: ResourceKind, resource_id: str, column: str, value: Optional[bool]):
        service = self.services[kind.name]
        async with self._lock:
            self._require_local_owner(kind, resource_id)
            if value is None:
                value = not self._local_row(kind.table, resource_id).get(column)
            mutation = self.view.apply_local(kind.table, resource_id, {column: value})
        if column == "is_pinned":
            return await self._optimistic(mutation, lambda: service.set_pinned(resource_id, self.user_id, value))
        return await self._optimistic(mutation, lambda: service.set_archived(resource_id, self.user_id, value))

    async def set_pinned(self, kind: ResourceKind, resource_id: str, value: Optional[bool] = None):
        return await self._set_flag(kind, resource_id, "is_pinned", value)

    async def set_archived(self, kind: ResourceKind, resource_id: str, value: Optional[bool] = None):
        return await self._set_flag(kind, resource_id, "is_archived", value)

    async def update_content(self, kind: ResourceKind, resource_id: str, fields: Dict[str, Any]):
        service = self.services[kind.name]
        changes = {k: v for k, v in fields.items() if k in service.content_fields and v is not None}
        if not changes:
            raise ValidationError("Nothing to update")
        async with self._lock:
            self._require_local_editor(kind, resource_id)
            mutation = self.view.apply_local(kind.table, resource_id, changes)
        return await self._optimistic(mutation, lambda: service.update_content(resource_id, self.user_id, changes))

    async def execute(self, command: LiveCommand):
        kind = LIST_KIND if command.kind == LIST_KIND.name else NOTE_KIND
        if command.action == "toggle_task":
            return await self.toggle_task(command.id, command.value)
        if command.action == "add_task":
            return await self.add_task(command.id, command.fields)
        if command.action == "update_task":
            return await self.update_task(command.id, command.fields)
        if command.action == "delete_task":
            return await self.delete_task(command.id)
        if command.action == "set_pinned":
            return await self.set_pinned(kind, command.id, command.value)
        if command.action == "set_archived":
            return await self.set_archived(kind, command.id, command.value)
        return await self.update_content(kind, command.id, command.fields)

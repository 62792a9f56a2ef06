import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from cotask.core.errors import NotFoundError, ValidationError
from cotask.database.service import utc_now_iso
from cotask.database.supabase_client import store_errors
from cotask.modules.lists.models import DEFAULT_COLOR, DEFAULT_ICON, DEFAULT_PRIORITY, TASK_PRIORITIES
from cotask.modules.lists.schemas import ListResponse, TaskResponse
from cotask.modules.sharing.models import ListResource, SharedResource
from cotask.modules.sharing.permissions import ContentEditor, ResourceAdministrator, require_content_editor, require_visible
from cotask.modules.sharing.service import ResourceService

logger = logging.getLogger(__name__)

TASK_FIELDS = ("title", "description", "priority", "due_date")

_due_date_adapter = TypeAdapter(date)


def due_date_iso(value: Any) -> str:
    """Normalise a due date given as a date, datetime or ISO string."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, (str, date)):
        try:
            return _due_date_adapter.validate_python(value).isoformat()
        except PydanticValidationError:
            pass
    raise ValidationError("Due date must be an ISO date (YYYY-MM-DD)")


def completion_fields(completed: bool, user_id: str, at: Optional[str] = None) -> Dict[str, Any]:
    """Columns written when a task is checked or unchecked."""
    if completed:
        return {"is_completed": True, "completed_at": at or utc_now_iso(), "completed_by": user_id}
    return {"is_completed": False, "completed_at": None, "completed_by": None}


class ListService(ResourceService):
    resource_class = ListResource
    response_class = ListResponse
    content_fields = ("title", "description", "icon", "color")

    def _creation_defaults(self) -> Dict[str, Any]:
        return {"icon": DEFAULT_ICON, "color": DEFAULT_COLOR}

    def _task_rows(self, list_ids: List[str]) -> List[Dict[str, Any]]:
        if not list_ids:
            return []
        with store_errors("load tasks"):
            result = self.supabase.table("tasks")\
                .select("*")\
                .in_("list_id", list_ids)\
                .order("created_at")\
                .execute()
        return result.data or []

    def _attach_children(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        by_list = defaultdict(list)
        for task in self._task_rows([r["id"] for r in rows]):
            by_list[task["list_id"]].append(task)
        return [{**row, "tasks": by_list.get(row["id"], [])} for row in rows]

    def _delete_children(self, admin: ResourceAdministrator) -> None:
        with store_errors("delete tasks"):
            result = self.supabase.table("tasks")\
                .delete()\
                .eq("list_id", admin.resource.id)\
                .execute()
        self._published_deletes("tasks", result.data or [])

    # Tasks

    def list_tasks(self, list_id: str, user_id: str) -> List[TaskResponse]:
        require_visible(self.load(list_id), user_id)
        return [TaskResponse(**row) for row in self._task_rows([list_id])]

    def _load_task(self, task_id: str, list_id: Optional[str] = None) -> Tuple[Dict[str, Any], SharedResource]:
        with store_errors("load task"):
            task = self._first("tasks", id=task_id)
        if not task or (list_id is not None and task["list_id"] != list_id):
            raise NotFoundError("Task not found")
        return task, self.load(task["list_id"])

    @staticmethod
    def _task_changes(fields: Dict[str, Any]) -> Dict[str, Any]:
        changes = {k: v for k, v in fields.items() if k in TASK_FIELDS and v is not None}
        if "title" in changes:
            changes["title"] = str(changes["title"]).strip()
            if not changes["title"]:
                raise ValidationError("Task title cannot be empty")
        if "description" in changes and not isinstance(changes["description"], str):
            raise ValidationError("Task description must be text")
        if "priority" in changes and changes["priority"] not in TASK_PRIORITIES:
            raise ValidationError("Priority must be low, medium or high")
        if "due_date" in changes:
            changes["due_date"] = due_date_iso(changes["due_date"])
        return changes

    def add_task(self, list_id: str, user_id: str, fields: Dict[str, Any]) -> TaskResponse:
        changes = self._task_changes(fields)
        if not changes.get("title"):
            raise ValidationError("Task title cannot be empty")
        editor = require_content_editor(self.load(list_id), user_id)
        now = utc_now_iso()
        data = {
            "priority": DEFAULT_PRIORITY,
            **changes,
            "list_id": list_id,
            "is_completed": False,
            "created_by": editor.user_id,
            "created_at": now,
            "updated_at": now,
        }
        with store_errors("add task"):
            result = self.supabase.table("tasks").insert(data).execute()
        if not result.data:
            raise NotFoundError("Failed to add task")
        self._published_inserts("tasks", result.data)
        return TaskResponse(**result.data[0])

    def _write_task(self, editor: ContentEditor, task: Dict[str, Any], fields: Dict[str, Any]) -> TaskResponse:
        fields = {**fields, "updated_at": utc_now_iso()}
        with store_errors("update task"):
            result = self.supabase.table("tasks")\
                .update(fields)\
                .eq("id", task["id"])\
                .execute()
        if not result.data:
            raise NotFoundError("Task not found")
        self._published_updates("tasks", result.data, before=task)
        return TaskResponse(**result.data[0])

    def update_task(self, task_id: str, user_id: str, fields: Dict[str, Any], list_id: Optional[str] = None) -> TaskResponse:
        changes = self._task_changes(fields)
        task, resource = self._load_task(task_id, list_id)
        editor = require_content_editor(resource, user_id)
        if not changes:
            return TaskResponse(**task)
        return self._write_task(editor, task, changes)

    def toggle_task(self, task_id: str, user_id: str, completed: Optional[bool] = None, list_id: Optional[str] = None,
                    at: Optional[str] = None) -> TaskResponse:
        """Check or uncheck a task; flips the current state when completed is None."""
        task, resource = self._load_task(task_id, list_id)
        editor = require_content_editor(resource, user_id)
        if completed is None:
            completed = not task.get("is_completed")
        return self._write_task(editor, task, completion_fields(completed, user_id, at))

    def delete_task(self, task_id: str, user_id: str, list_id: Optional[str] = None) -> bool:
        task, resource = self._load_task(task_id, list_id)
        require_content_editor(resource, user_id)
        with store_errors("delete task"):
            result = self.supabase.table("tasks")\
                .delete()\
                .eq("id", task_id)\
                .execute()
        self._published_deletes("tasks", result.data or [task])
        return True

    def stats(self, user_id: str) -> Dict[str, int]:
        """Task counters over the caller's own lists."""
        with store_errors("load lists"):
            owned = self.supabase.table("lists")\
                .select("id, is_archived")\
                .eq("created_by", user_id)\
                .execute().data or []
        tasks = self._task_rows([r["id"] for r in owned])
        completed = sum(1 for t in tasks if t.get("is_completed"))
        return {
            "total_lists": len(owned),
            "archived_lists": sum(1 for r in owned if r.get("is_archived")),
            "total_tasks": len(tasks),
            "completed_tasks": completed,
            "remaining_tasks": len(tasks) - completed,
        }

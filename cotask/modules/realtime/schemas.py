from pydantic import BaseModel
from typing import Any, Dict, Literal, Optional


class LiveCommand(BaseModel):
    """A mutation sent over the live WebSocket.

    id is the task id for task actions and the list/note id otherwise.
    """
    action: Literal[
        "toggle_task", "add_task", "update_task", "delete_task",
        "set_pinned", "set_archived", "update_content",
    ]
    kind: Literal["list", "note"] = "list"
    id: Optional[str] = None
    value: Optional[bool] = None
    fields: Dict[str, Any] = {}


class LiveMessage(BaseModel):
    type: Literal["snapshot", "error"]
    view: Optional[Dict[str, Any]] = None
    detail: Optional[str] = None

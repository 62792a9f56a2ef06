from pydantic import BaseModel
from typing import List, Literal

from cotask.modules.lists.schemas import ListResponse
from cotask.modules.notes.schemas import NoteResponse

ItemKind = Literal["all", "lists", "notes"]


class TaskStats(BaseModel):
    total_lists: int = 0
    archived_lists: int = 0
    total_tasks: int = 0
    completed_tasks: int = 0
    remaining_tasks: int = 0


class DashboardOverview(BaseModel):
    stats: TaskStats
    owned_lists: int = 0
    shared_lists: int = 0
    owned_notes: int = 0
    shared_notes: int = 0
    pinned: int = 0
    pending_requests: int = 0


class DashboardItems(BaseModel):
    """Active items filtered by kind and search, pinned first."""
    lists: List[ListResponse] = []
    notes: List[NoteResponse] = []

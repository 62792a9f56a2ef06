from pydantic import BaseModel, Field
from typing import List, Literal, Optional
from datetime import date, datetime

Priority = Literal["low", "medium", "high"]


class ListCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[Literal["indigo", "emerald", "amber", "rose", "purple", "blue"]] = None


class ListUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[Literal["indigo", "emerald", "amber", "rose", "purple", "blue"]] = None


class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    description: Optional[str] = None
    priority: Priority = "medium"
    due_date: Optional[date] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    priority: Optional[Priority] = None
    due_date: Optional[date] = None


class TaskResponse(BaseModel):
    id: str
    list_id: str
    title: str
    description: Optional[str] = None
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    priority: Optional[str] = None
    due_date: Optional[date] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ListResponse(BaseModel):
    id: str
    created_by: str
    title: str
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    is_pinned: bool = False
    is_archived: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    permission: str
    is_shared: bool = False
    tasks: List[TaskResponse] = []

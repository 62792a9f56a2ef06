from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class NoteCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    content: Optional[str] = ""


class NoteUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    content: Optional[str] = None


class NoteResponse(BaseModel):
    id: str
    created_by: str
    title: str
    content: Optional[str] = None
    is_pinned: bool = False
    is_archived: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    permission: str
    is_shared: bool = False

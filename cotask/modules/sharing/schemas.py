from pydantic import BaseModel
from typing import List, Literal, Optional
from datetime import datetime

from cotask.modules.profiles.schemas import ProfileSummary


class ShareCreate(BaseModel):
    username: str
    permission: Literal["view", "edit"] = "view"


class ShareUpdate(BaseModel):
    permission: Literal["view", "edit"]


class ShareResponse(BaseModel):
    id: str
    resource_id: str
    user_id: str
    permission: str
    shared_by: Optional[str] = None
    shared_at: Optional[datetime] = None
    user: Optional[ProfileSummary] = None


class FlagUpdate(BaseModel):
    """Set pinned/archived explicitly, or toggle when value is omitted."""
    value: Optional[bool] = None


class BulkRequest(BaseModel):
    ids: List[str]


class BulkResponse(BaseModel):
    affected: int
    skipped: List[str]


SortOrder = Literal["created", "modified", "name", "completion"]

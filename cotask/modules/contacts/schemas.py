from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class ConnectionRequest(BaseModel):
    username: str


class RelationshipResponse(BaseModel):
    id: str
    user_id: str
    related_user_id: str
    relationship_type: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Contact(BaseModel):
    id: str  # the other user's profile id
    name: str
    username: str
    avatar_url: Optional[str] = None
    relationship_id: str
    status: str  # friend | pending-sent | pending-received | blocked
    created_at: Optional[datetime] = None


class ContactsSummary(BaseModel):
    friends: int
    pending_sent: int
    pending_received: int

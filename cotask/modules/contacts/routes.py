from fastapi import APIRouter, Depends
from supabase import Client
from typing import List, Optional

from cotask.core.dependencies import get_changes, get_current_user_id
from cotask.database.supabase_client import get_supabase
from cotask.modules.contacts.schemas import Contact, ConnectionRequest, ContactsSummary, RelationshipResponse
from cotask.modules.contacts.service import RelationshipService
from cotask.modules.profiles.service import ProfileService
from cotask.modules.realtime.feed import ChangeBroker

router = APIRouter(prefix="/contacts", tags=["contacts"])


def get_relationship_service(
    supabase: Client = Depends(get_supabase),
    changes: Optional[ChangeBroker] = Depends(get_changes)
) -> RelationshipService:
    return RelationshipService(supabase, ProfileService(supabase), changes=changes)


@router.get("", response_model=List[Contact])
async def list_contacts(
    status: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    service: RelationshipService = Depends(get_relationship_service)
):
    """Contacts from the caller's perspective; filter with status=friend|pending-sent|pending-received"""
    contacts = service.list_for_user(user_id)
    return [c for c in contacts if status is None or c.status == status]


@router.get("/summary", response_model=ContactsSummary)
async def contacts_summary(
    user_id: str = Depends(get_current_user_id),
    service: RelationshipService = Depends(get_relationship_service)
):
    return service.summary(user_id)


@router.post("", response_model=RelationshipResponse, status_code=201)
async def request_connection(
    request: ConnectionRequest,
    user_id: str = Depends(get_current_user_id),
    service: RelationshipService = Depends(get_relationship_service)
):
    """Send a friend request by username"""
    return service.request_by_username(user_id, request.username)


@router.post("/{relationship_id}/accept", response_model=RelationshipResponse)
async def accept_request(
    relationship_id: str,
    user_id: str = Depends(get_current_user_id),
    service: RelationshipService = Depends(get_relationship_service)
):
    return service.accept(relationship_id, user_id)


@router.post("/{relationship_id}/reject", status_code=204)
async def reject_request(
    relationship_id: str,
    user_id: str = Depends(get_current_user_id),
    service: RelationshipService = Depends(get_relationship_service)
):
    service.reject(relationship_id, user_id)
    return None


@router.delete("/{relationship_id}", status_code=204)
async def remove_contact(
    relationship_id: str,
    user_id: str = Depends(get_current_user_id),
    service: RelationshipService = Depends(get_relationship_service)
):
    service.remove(relationship_id, user_id)
    return None

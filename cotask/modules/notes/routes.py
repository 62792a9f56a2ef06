from fastapi import APIRouter, Depends
from supabase import Client
from typing import List, Optional

from cotask.core.dependencies import get_changes, get_current_user_id
from cotask.database.supabase_client import get_supabase
from cotask.modules.notes.schemas import NoteCreate, NoteResponse, NoteUpdate
from cotask.modules.notes.service import NoteService
from cotask.modules.profiles.service import ProfileService
from cotask.modules.realtime.feed import ChangeBroker
from cotask.modules.sharing.routes import register_share_routes
from cotask.modules.sharing.schemas import SortOrder

router = APIRouter(prefix="/notes", tags=["notes"])


def get_note_service(
    supabase: Client = Depends(get_supabase),
    changes: Optional[ChangeBroker] = Depends(get_changes)
) -> NoteService:
    return NoteService(supabase, ProfileService(supabase), changes=changes)


@router.get("", response_model=List[NoteResponse])
async def list_notes(
    include_archived: bool = False,
    q: Optional[str] = None,
    sort: SortOrder = "created",
    user_id: str = Depends(get_current_user_id),
    service: NoteService = Depends(get_note_service)
):
    return service.browse(user_id, q, sort, include_archived)


@router.post("", response_model=NoteResponse, status_code=201)
async def create_note(
    data: NoteCreate,
    user_id: str = Depends(get_current_user_id),
    service: NoteService = Depends(get_note_service)
):
    return service.create(user_id, data.model_dump())


@router.get("/{note_id}", response_model=NoteResponse)
async def get_note(
    note_id: str,
    user_id: str = Depends(get_current_user_id),
    service: NoteService = Depends(get_note_service)
):
    return service.get(note_id, user_id)


@router.put("/{note_id}", response_model=NoteResponse)
async def update_note(
    note_id: str,
    data: NoteUpdate,
    user_id: str = Depends(get_current_user_id),
    service: NoteService = Depends(get_note_service)
):
    """Save title/content (owner or edit grant)"""
    return service.update_content(note_id, user_id, data.model_dump(exclude_unset=True))


@router.delete("/{note_id}", status_code=204)
async def delete_note(
    note_id: str,
    user_id: str = Depends(get_current_user_id),
    service: NoteService = Depends(get_note_service)
):
    service.delete(note_id, user_id)
    return None


register_share_routes(router, get_note_service, NoteResponse)

from fastapi import APIRouter, Depends
from supabase import Client
from typing import Literal, Optional

from cotask.core.dependencies import get_changes, get_current_user_id
from cotask.database.supabase_client import get_supabase
from cotask.modules.contacts.service import RelationshipService
from cotask.modules.dashboard.schemas import DashboardItems, DashboardOverview, ItemKind
from cotask.modules.dashboard.service import DashboardService
from cotask.modules.lists.service import ListService
from cotask.modules.notes.service import NoteService
from cotask.modules.profiles.service import ProfileService
from cotask.modules.realtime.feed import ChangeBroker
from cotask.modules.sharing.schemas import BulkRequest, BulkResponse, SortOrder

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


def get_dashboard_service(
    supabase: Client = Depends(get_supabase),
    changes: Optional[ChangeBroker] = Depends(get_changes)
) -> DashboardService:
    profiles = ProfileService(supabase)
    return DashboardService(
        ListService(supabase, profiles, changes=changes),
        NoteService(supabase, profiles, changes=changes),
        RelationshipService(supabase, profiles, changes=changes),
    )


@router.get("", response_model=DashboardOverview)
async def overview(
    user_id: str = Depends(get_current_user_id),
    service: DashboardService = Depends(get_dashboard_service)
):
    return service.overview(user_id)


@router.get("/items", response_model=DashboardItems)
async def items(
    kind: ItemKind = "all",
    q: Optional[str] = None,
    sort: SortOrder = "created",
    user_id: str = Depends(get_current_user_id),
    service: DashboardService = Depends(get_dashboard_service)
):
    """Active lists and notes; q matches list titles and note titles or content"""
    return service.items(user_id, kind, q, sort)


@router.post("/{kind}/archive", response_model=BulkResponse)
async def bulk_archive(
    kind: Literal["list", "note"],
    request: BulkRequest,
    user_id: str = Depends(get_current_user_id),
    service: DashboardService = Depends(get_dashboard_service)
):
    """Archive the selected items; ids the caller does not own are skipped"""
    return service.bulk_archive(user_id, kind, request.ids)


@router.post("/{kind}/delete", response_model=BulkResponse)
async def bulk_delete(
    kind: Literal["list", "note"],
    request: BulkRequest,
    user_id: str = Depends(get_current_user_id),
    service: DashboardService = Depends(get_dashboard_service)
):
    """Delete the selected items; ids the caller does not own are skipped"""
    return service.bulk_delete(user_id, kind, request.ids)

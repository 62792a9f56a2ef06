from fastapi import APIRouter, Depends
from supabase import Client
from typing import List, Optional

from cotask.core.dependencies import get_changes, get_current_user_id
from cotask.database.supabase_client import get_supabase
from cotask.modules.lists.schemas import ListCreate, ListResponse, ListUpdate, TaskCreate, TaskResponse, TaskUpdate
from cotask.modules.lists.service import ListService
from cotask.modules.profiles.service import ProfileService
from cotask.modules.realtime.feed import ChangeBroker
from cotask.modules.sharing.routes import register_share_routes
from cotask.modules.sharing.schemas import FlagUpdate, SortOrder

router = APIRouter(prefix="/lists", tags=["lists"])


def get_list_service(
    supabase: Client = Depends(get_supabase),
    changes: Optional[ChangeBroker] = Depends(get_changes)
) -> ListService:
    return ListService(supabase, ProfileService(supabase), changes=changes)


@router.get("", response_model=List[ListResponse])
async def list_lists(
    include_archived: bool = False,
    q: Optional[str] = None,
    sort: SortOrder = "created",
    user_id: str = Depends(get_current_user_id),
    service: ListService = Depends(get_list_service)
):
    """Own and shared lists with their tasks; q searches titles, pinned lists come first"""
    return service.browse(user_id, q, sort, include_archived)


@router.post("", response_model=ListResponse, status_code=201)
async def create_list(
    data: ListCreate,
    user_id: str = Depends(get_current_user_id),
    service: ListService = Depends(get_list_service)
):
    return service.create(user_id, data.model_dump())


@router.get("/{list_id}", response_model=ListResponse)
async def get_list(
    list_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ListService = Depends(get_list_service)
):
    return service.get(list_id, user_id)


@router.put("/{list_id}", response_model=ListResponse)
async def update_list(
    list_id: str,
    data: ListUpdate,
    user_id: str = Depends(get_current_user_id),
    service: ListService = Depends(get_list_service)
):
    return service.update_content(list_id, user_id, data.model_dump(exclude_unset=True))


@router.delete("/{list_id}", status_code=204)
async def delete_list(
    list_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ListService = Depends(get_list_service)
):
    """Delete a list with its tasks and shares (owner only)"""
    service.delete(list_id, user_id)
    return None


@router.get("/{list_id}/tasks", response_model=List[TaskResponse])
async def list_tasks(
    list_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ListService = Depends(get_list_service)
):
    return service.list_tasks(list_id, user_id)


@router.post("/{list_id}/tasks", response_model=TaskResponse, status_code=201)
async def add_task(
    list_id: str,
    data: TaskCreate,
    user_id: str = Depends(get_current_user_id),
    service: ListService = Depends(get_list_service)
):
    return service.add_task(list_id, user_id, data.model_dump())


@router.put("/{list_id}/tasks/{task_id}", response_model=TaskResponse)
async def update_task(
    list_id: str,
    task_id: str,
    data: TaskUpdate,
    user_id: str = Depends(get_current_user_id),
    service: ListService = Depends(get_list_service)
):
    return service.update_task(task_id, user_id, data.model_dump(exclude_unset=True), list_id=list_id)


@router.put("/{list_id}/tasks/{task_id}/complete", response_model=TaskResponse)
async def complete_task(
    list_id: str,
    task_id: str,
    flag: FlagUpdate,
    user_id: str = Depends(get_current_user_id),
    service: ListService = Depends(get_list_service)
):
    """Check or uncheck a task; toggles when value is omitted"""
    return service.toggle_task(task_id, user_id, flag.value, list_id=list_id)


@router.delete("/{list_id}/tasks/{task_id}", status_code=204)
async def delete_task(
    list_id: str,
    task_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ListService = Depends(get_list_service)
):
    service.delete_task(task_id, user_id, list_id=list_id)
    return None


register_share_routes(router, get_list_service, ListResponse)

from fastapi import APIRouter, Depends, File, UploadFile
from supabase import Client
from typing import Optional

from cotask.core.dependencies import get_auth_service, get_changes, get_current_user_id
from cotask.core.errors import NotFoundError
from cotask.database.supabase_client import get_supabase
from cotask.modules.auth.service import AuthService
from cotask.modules.profiles.avatar_storage import get_avatar_storage
from cotask.modules.profiles.schemas import ProfileResponse, ProfileSummary, ProfileUpdate
from cotask.modules.profiles.service import ProfileService
from cotask.modules.realtime.feed import ChangeBroker

router = APIRouter(prefix="/profiles", tags=["profiles"])


def get_profile_service(
    supabase: Client = Depends(get_supabase),
    changes: Optional[ChangeBroker] = Depends(get_changes)
) -> ProfileService:
    return ProfileService(supabase, storage=get_avatar_storage(supabase), changes=changes)


@router.get("/me", response_model=ProfileResponse)
async def get_my_profile(
    user_id: str = Depends(get_current_user_id),
    service: ProfileService = Depends(get_profile_service)
):
    return service.get_profile(user_id)


@router.put("/me", response_model=ProfileResponse)
async def update_my_profile(
    data: ProfileUpdate,
    user_id: str = Depends(get_current_user_id),
    service: ProfileService = Depends(get_profile_service)
):
    """Update the display name (usernames are immutable)"""
    return service.update_name(user_id, data)


@router.post("/me/avatar", response_model=ProfileResponse)
async def upload_avatar(
    file: UploadFile = File(...),
    user_id: str = Depends(get_current_user_id),
    service: ProfileService = Depends(get_profile_service)
):
    """Upload a new profile picture (image/*, at most 5MB)"""
    data = await file.read()
    return service.upload_avatar(user_id, file.filename, file.content_type, data)


@router.delete("/me/avatar", response_model=ProfileResponse)
async def remove_avatar(
    user_id: str = Depends(get_current_user_id),
    service: ProfileService = Depends(get_profile_service)
):
    return service.remove_avatar(user_id)


@router.delete("/me", status_code=204)
async def delete_my_account(
    confirm: str = "",
    user_id: str = Depends(get_current_user_id),
    service: ProfileService = Depends(get_profile_service),
    auth_service: AuthService = Depends(get_auth_service)
):
    """Delete the account and everything it owns (pass confirm=DELETE)"""
    service.delete_account(user_id, confirm, auth_service)
    return None


@router.get("/by-username/{username}", response_model=ProfileSummary)
async def get_profile_by_username(
    username: str,
    user_id: str = Depends(get_current_user_id),
    service: ProfileService = Depends(get_profile_service)
):
    profile = service.get_by_username(username)
    if profile is None:
        raise NotFoundError("User not found")
    return profile

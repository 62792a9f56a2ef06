"""
Share-management and owner-only routes common to lists and notes.

The lists and notes routers call register_share_routes() with their own
service dependency, so both kinds expose the same endpoints.
"""

from fastapi import APIRouter, Depends
from typing import Callable, List

from cotask.core.dependencies import get_current_user_id
from cotask.modules.sharing.schemas import ShareCreate, ShareResponse, ShareUpdate, FlagUpdate
from cotask.modules.sharing.service import ResourceService


def register_share_routes(router: APIRouter, get_service: Callable[..., ResourceService], response_model) -> APIRouter:

    @router.get("/{resource_id}/shares", response_model=List[ShareResponse])
    async def list_shares(
        resource_id: str,
        user_id: str = Depends(get_current_user_id),
        service: ResourceService = Depends(get_service)
    ):
        """Grants on a resource (owner only)"""
        return service.list_grants(resource_id, user_id)

    @router.post("/{resource_id}/shares", response_model=ShareResponse, status_code=201)
    async def create_share(
        resource_id: str,
        share: ShareCreate,
        user_id: str = Depends(get_current_user_id),
        service: ResourceService = Depends(get_service)
    ):
        return service.grant_share(resource_id, user_id, share.username, share.permission)

    @router.put("/{resource_id}/shares/{share_id}", response_model=ShareResponse)
    async def update_share(
        resource_id: str,
        share_id: str,
        update: ShareUpdate,
        user_id: str = Depends(get_current_user_id),
        service: ResourceService = Depends(get_service)
    ):
        return service.update_grant_permission(share_id, user_id, update.permission, resource_id=resource_id)

    @router.delete("/{resource_id}/shares/{share_id}", status_code=204)
    async def revoke_share(
        resource_id: str,
        share_id: str,
        user_id: str = Depends(get_current_user_id),
        service: ResourceService = Depends(get_service)
    ):
        service.revoke_grant(share_id, user_id, resource_id=resource_id)
        return None

    @router.post("/{resource_id}/leave", status_code=204)
    async def leave_shared(
        resource_id: str,
        user_id: str = Depends(get_current_user_id),
        service: ResourceService = Depends(get_service)
    ):
        """Remove the caller's own grant"""
        service.leave(resource_id, user_id)
        return None

    @router.put("/{resource_id}/pin", response_model=response_model)
    async def pin(
        resource_id: str,
        flag: FlagUpdate,
        user_id: str = Depends(get_current_user_id),
        service: ResourceService = Depends(get_service)
    ):
        return service.set_pinned(resource_id, user_id, flag.value)

    @router.put("/{resource_id}/archive", response_model=response_model)
    async def archive(
        resource_id: str,
        flag: FlagUpdate,
        user_id: str = Depends(get_current_user_id),
        service: ResourceService = Depends(get_service)
    ):
        return service.set_archived(resource_id, user_id, flag.value)

    return router

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError
from supabase import Client
from typing import Optional
import logging

from cotask.core.dependencies import get_auth_service, get_changes
from cotask.core.errors import CotaskError
from cotask.database.supabase_client import get_supabase
from cotask.modules.auth.service import AuthService
from cotask.modules.contacts.service import RelationshipService
from cotask.modules.lists.service import ListService
from cotask.modules.notes.service import NoteService
from cotask.modules.profiles.service import ProfileService
from cotask.modules.realtime.feed import ChangeBroker, ChangeFeed, build_change_feed
from cotask.modules.realtime.schemas import LiveCommand, LiveMessage
from cotask.modules.realtime.session import LiveSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/realtime", tags=["realtime"])

# Close code for a rejected token (4000-4999 are application defined)
WS_UNAUTHORIZED = 4401


def get_change_feed() -> ChangeFeed:
    return build_change_feed()


@router.websocket("/ws")
async def live_view(
    websocket: WebSocket,
    token: str = Query(...),
    auth_service: AuthService = Depends(get_auth_service),
    supabase: Client = Depends(get_supabase),
    changes: Optional[ChangeBroker] = Depends(get_changes),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Stream the caller's collaborative view and accept optimistic commands.

    Every applied change pushes {"type": "snapshot", "view": ...}. Commands
    are LiveCommand JSON objects; a failed command produces
    {"type": "error", "detail": ...} and the session stays open.
    """
    try:
        user = auth_service.get_current_user(token)
    except CotaskError:
        await websocket.close(code=WS_UNAUTHORIZED)
        return

    await websocket.accept()
    profiles = ProfileService(supabase)

    async def send_snapshot(view):
        await websocket.send_json(LiveMessage(type="snapshot", view=view).model_dump(exclude_none=True))

    async def send_error(detail: str):
        await websocket.send_json(LiveMessage(type="error", detail=detail).model_dump(exclude_none=True))

    session = LiveSession(
        user["id"],
        feed,
        ListService(supabase, profiles, changes=changes),
        NoteService(supabase, profiles, changes=changes),
        RelationshipService(supabase, profiles, changes=changes),
        on_change=send_snapshot,
    )
    async with session:
        await session.push()
        while True:
            try:
                raw = await websocket.receive_text()
            except WebSocketDisconnect:
                break
            try:
                command = LiveCommand.model_validate_json(raw)
            except PydanticValidationError as e:
                await send_error(f"Invalid command: {e.errors()[0]['msg']}")
                continue
            try:
                await session.execute(command)
            except CotaskError as e:
                logger.info(f"Live command {command.action} failed for user {user['id']}: {e.message}")
                await send_error(e.message)
            except Exception as e:
                logger.exception(f"Live command {command.action} crashed for user {user['id']}: {e}")
                await send_error("Internal server error")

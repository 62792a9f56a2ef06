"""
Core dependencies for route protection and service wiring
"""

from fastapi import Depends, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from supabase import Client
from typing import Optional
import logging

from cotask.database.supabase_client import get_supabase
from cotask.modules.auth.service import AuthService
from cotask.modules.realtime.feed import ChangeBroker, get_publisher

logger = logging.getLogger(__name__)

security = HTTPBearer()


def get_auth_service(supabase: Client = Depends(get_supabase)) -> AuthService:
    return AuthService(supabase)


def get_changes() -> Optional[ChangeBroker]:
    return get_publisher()


def get_current_token(
    credentials: HTTPAuthorizationCredentials = Security(security)
) -> str:
    """Extract JWT token from Authorization header"""
    return credentials.credentials


def get_current_user(
    token: str = Depends(get_current_token),
    auth_service: AuthService = Depends(get_auth_service)
) -> dict:
    """Resolve the bearer token to the authenticated user"""
    return auth_service.get_current_user(token)


def get_current_user_id(user_data: dict = Depends(get_current_user)) -> str:
    return user_data["id"]

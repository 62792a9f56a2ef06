from fastapi import APIRouter, Depends
from typing import Dict

from cotask.core.dependencies import get_auth_service, get_current_token, get_current_user
from cotask.modules.auth.schemas import (
    ChangePasswordRequest, LoginRequest, RegisterRequest, RegisterResponse, TokenResponse
)
from cotask.modules.auth.service import AuthService

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=RegisterResponse, status_code=201)
async def register(
    register_data: RegisterRequest,
    service: AuthService = Depends(get_auth_service)
):
    """Register a new user"""
    return service.register(register_data)


@router.post("/login", response_model=TokenResponse)
async def login(
    login_data: LoginRequest,
    service: AuthService = Depends(get_auth_service)
):
    """Login and get access token"""
    return service.login(login_data)


@router.post("/logout", status_code=200)
async def logout(
    token: str = Depends(get_current_token),
    service: AuthService = Depends(get_auth_service)
):
    """Logout and invalidate token"""
    service.logout(token)
    return {"message": "Logged out successfully"}


@router.get("/me")
async def get_me(current_user: Dict = Depends(get_current_user)):
    """Get current authenticated user"""
    return current_user


@router.post("/password", status_code=200)
async def change_password(
    request: ChangePasswordRequest,
    current_user: Dict = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service)
):
    service.change_password(current_user["id"], request.new_password, request.confirm_password)
    return {"message": "Password updated successfully"}

import hashlib
import logging
import time
from typing import Any, Dict, Optional

from supabase import Client

from cotask.config.settings import settings
from cotask.core.errors import AlreadyExistsError, AuthenticationError, CotaskError, TransientStoreError, ValidationError
from cotask.database.supabase_client import SupabaseClient, store_errors
from cotask.modules.auth.schemas import LoginRequest, RegisterRequest, RegisterResponse, TokenResponse

logger = logging.getLogger(__name__)

# In-memory cache for get_current_user to reduce Supabase auth calls (e.g. many parallel requests with same token)
_AUTH_USER_CACHE: Dict[str, tuple] = {}
_AUTH_CACHE_TTL_SEC = 60
_AUTH_CACHE_MAX_SIZE = 500

MIN_PASSWORD_LENGTH = 6


def clear_auth_cache() -> None:
    _AUTH_USER_CACHE.clear()


class AuthService:
    def __init__(self, supabase: Client, admin: Optional[Client] = None):
        self.supabase = supabase
        self._admin_client = admin

    def _admin(self) -> Client:
        if self._admin_client is not None:
            return self._admin_client
        if not settings.supabase_service_role_key:
            raise TransientStoreError("Service role key not configured. Cannot manage auth users.")
        return SupabaseClient.get_service_client()

    def register(self, register_data: RegisterRequest) -> RegisterResponse:
        """Register a new user using Supabase Auth and create their profile"""
        username = register_data.username.strip()
        with store_errors("check username availability"):
            taken = self.supabase.table("profiles")\
                .select("id")\
                .eq("username", username)\
                .limit(1)\
                .execute()
        if taken.data:
            raise AlreadyExistsError("Username is already taken")

        try:
            auth_response = self.supabase.auth.sign_up({
                "email": register_data.email,
                "password": register_data.password,
                "options": {
                    "data": {"username": username, "name": register_data.name or username}
                }
            })
        except Exception as e:
            error_message = str(e)
            if "already registered" in error_message.lower() or "already exists" in error_message.lower():
                raise AlreadyExistsError("User already exists")
            logger.error(f"Registration failed: {error_message}")
            raise TransientStoreError("Registration failed. Please try again.") from e

        if not auth_response.user:
            raise ValidationError("Failed to register user")

        with store_errors("create profile"):
            self.supabase.table("profiles").insert({
                "id": auth_response.user.id,
                "username": username,
                "name": register_data.name or username,
            }).execute()

        logger.info(f"Registered user {auth_response.user.id} as {username}")
        return RegisterResponse(
            user_id=auth_response.user.id,
            email=auth_response.user.email or register_data.email,
            username=username,
            message="User registered successfully"
        )

    def login(self, login_data: LoginRequest) -> TokenResponse:
        """Authenticate user using Supabase Auth"""
        try:
            auth_response = self.supabase.auth.sign_in_with_password({
                "email": login_data.email,
                "password": login_data.password
            })
        except Exception as e:
            error_message = str(e)
            if "invalid" in error_message.lower() or "credentials" in error_message.lower():
                raise AuthenticationError("Invalid email or password")
            logger.error(f"Login failed: {error_message}")
            raise TransientStoreError("Login failed. Please try again.") from e

        if not auth_response.user or not auth_response.session:
            raise AuthenticationError("Invalid email or password")

        return TokenResponse(
            access_token=auth_response.session.access_token,
            token_type="bearer",
            user_id=auth_response.user.id,
            email=auth_response.user.email or login_data.email
        )

    def get_current_user(self, token: str) -> Dict[str, Any]:
        """Get current user details from Supabase Auth token. Uses short TTL cache to reduce auth API calls."""
        cache_key = hashlib.sha256(token.encode()).hexdigest()
        now = time.monotonic()
        if cache_key in _AUTH_USER_CACHE:
            user_data, expiry = _AUTH_USER_CACHE[cache_key]
            if now < expiry:
                return user_data
            del _AUTH_USER_CACHE[cache_key]
        try:
            user_response = self.supabase.auth.get_user(jwt=token)
        except Exception as e:
            logger.info(f"Token rejected by auth provider: {e}")
            raise AuthenticationError()
        if not user_response or not user_response.user:
            raise AuthenticationError()
        user = user_response.user
        user_data = {
            "id": user.id,
            "email": user.email,
            "user_metadata": user.user_metadata or {},
        }
        if len(_AUTH_USER_CACHE) < _AUTH_CACHE_MAX_SIZE:
            _AUTH_USER_CACHE[cache_key] = (user_data, now + _AUTH_CACHE_TTL_SEC)
        return user_data

    def logout(self, token: str) -> bool:
        """Logout user using Supabase Auth"""
        _AUTH_USER_CACHE.pop(hashlib.sha256(token.encode()).hexdigest(), None)
        try:
            # Supabase Auth tokens are stateless JWTs; they expire on their own
            self.supabase.auth.sign_out()
            return True
        except Exception as e:
            logger.warning(f"Sign out failed: {e}")
            return False

    def change_password(self, user_id: str, new_password: str, confirm_password: str) -> bool:
        if not new_password or not confirm_password:
            raise ValidationError("Please fill in all password fields.")
        if new_password != confirm_password:
            raise ValidationError("New passwords do not match.")
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
        try:
            response = self._admin().auth.admin.update_user_by_id(user_id, {"password": new_password})
        except CotaskError:
            raise
        except Exception as e:
            logger.error(f"Failed to update password for {user_id}: {e}")
            raise TransientStoreError("Failed to update password. Please try again.") from e
        if not response.user:
            raise AuthenticationError("User not found")
        return True

    def delete_auth_user(self, user_id: str) -> None:
        with store_errors("delete account"):
            self._admin().auth.admin.delete_user(user_id)

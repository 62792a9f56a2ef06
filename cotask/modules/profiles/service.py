import logging
import time
from typing import Dict, Iterable, List, Optional

from supabase import Client

from cotask.config import settings
from cotask.core.errors import NotFoundError, TransientStoreError, ValidationError
from cotask.database.service import SupabaseService, utc_now_iso
from cotask.database.supabase_client import store_errors
from cotask.modules.profiles.avatar_storage import AvatarStorage
from cotask.modules.profiles.schemas import ProfileResponse, ProfileSummary, ProfileUpdate
from cotask.modules.realtime.feed import ChangeBroker

logger = logging.getLogger(__name__)

DELETE_CONFIRMATION = "DELETE"


def unknown_profile(user_id: str) -> ProfileSummary:
    return ProfileSummary(id=user_id, username="unknown", name="Unknown User")


class ProfileService(SupabaseService):
    def __init__(self, supabase: Client, storage: Optional[AvatarStorage] = None, changes: Optional[ChangeBroker] = None):
        super().__init__(supabase, changes)
        self.storage = storage

    def get_profile(self, user_id: str) -> ProfileResponse:
        with store_errors("load profile"):
            row = self._first("profiles", id=user_id)
        if not row:
            raise NotFoundError("User not found")
        return ProfileResponse(**row)

    def get_by_username(self, username: str) -> Optional[ProfileSummary]:
        username = (username or "").strip()
        if not username:
            return None
        with store_errors("look up user"):
            row = self._first("profiles", username=username)
        return ProfileSummary(**row) if row else None

    def require_by_username(self, username: str) -> ProfileSummary:
        profile = self.get_by_username(username)
        if profile is None:
            raise NotFoundError("User not found")
        return profile

    def get_summaries(self, user_ids: Iterable[str]) -> Dict[str, ProfileSummary]:
        ids = sorted(set(user_ids))
        if not ids:
            return {}
        with store_errors("load profiles"):
            result = self.supabase.table("profiles")\
                .select("id, username, name, avatar_url")\
                .in_("id", ids)\
                .execute()
        return {row["id"]: ProfileSummary(**row) for row in result.data or []}

    def update_name(self, user_id: str, data: ProfileUpdate) -> ProfileResponse:
        name = data.name.strip()
        if not name:
            raise ValidationError("Name cannot be empty")
        with store_errors("update profile"):
            result = self.supabase.table("profiles")\
                .update({"name": name, "updated_at": utc_now_iso()})\
                .eq("id", user_id)\
                .execute()
        if not result.data:
            raise NotFoundError("User not found")
        self._published_updates("profiles", result.data)
        return ProfileResponse(**result.data[0])

    def _require_storage(self) -> AvatarStorage:
        if self.storage is None:
            raise TransientStoreError("Avatar storage is not configured")
        return self.storage

    @staticmethod
    def validate_avatar(content_type: Optional[str], size: int) -> None:
        if not content_type or not content_type.startswith("image/"):
            raise ValidationError("Please upload an image file.")
        if size > settings.avatar_max_bytes:
            raise ValidationError(f"Image must be smaller than {settings.avatar_max_bytes // (1024 * 1024)}MB.")
        if size == 0:
            raise ValidationError("The uploaded file is empty.")

    @staticmethod
    def avatar_key(user_id: str, filename: Optional[str], content_type: str) -> str:
        if filename and "." in filename:
            ext = filename.rsplit(".", 1)[-1].lower()
        else:
            ext = content_type.split("/", 1)[-1].split("+", 1)[0]
        return f"{user_id}-{int(time.time() * 1000)}.{ext}"

    def upload_avatar(self, user_id: str, filename: Optional[str], content_type: Optional[str], data: bytes) -> ProfileResponse:
        """Replace the user's avatar. Type and size are checked before anything is uploaded."""
        self.validate_avatar(content_type, len(data))
        storage = self._require_storage()
        profile = self.get_profile(user_id)

        old_key = storage.key_from_url(profile.avatar_url)
        if old_key:
            storage.delete_file(old_key)

        key = self.avatar_key(user_id, filename, content_type)
        with store_errors("upload profile picture"):
            public_url = storage.upload_file(data, key, content_type)
            result = self.supabase.table("profiles")\
                .update({"avatar_url": public_url, "updated_at": utc_now_iso()})\
                .eq("id", user_id)\
                .execute()
        logger.info(f"Updated avatar for user {user_id}")
        self._published_updates("profiles", result.data or [])
        return ProfileResponse(**result.data[0]) if result.data else profile

    def remove_avatar(self, user_id: str) -> ProfileResponse:
        profile = self.get_profile(user_id)
        if not profile.avatar_url:
            return profile
        key = self._require_storage().key_from_url(profile.avatar_url)
        if key:
            self.storage.delete_file(key)
        with store_errors("remove profile picture"):
            result = self.supabase.table("profiles")\
                .update({"avatar_url": None, "updated_at": utc_now_iso()})\
                .eq("id", user_id)\
                .execute()
        self._published_updates("profiles", result.data or [])
        return ProfileResponse(**result.data[0]) if result.data else profile

    def _delete_where(self, table: str, column: str, value) -> List[dict]:
        query = self.supabase.table(table).delete()
        if isinstance(value, list):
            if not value:
                return []
            query = query.in_(column, value)
        else:
            query = query.eq(column, value)
        rows = query.execute().data or []
        self._published_deletes(table, rows)
        return rows

    def _ids_where(self, table: str, column: str, value) -> List[str]:
        result = self.supabase.table(table).select("id").eq(column, value).execute()
        return [row["id"] for row in result.data or []]

    def delete_account(self, user_id: str, confirm: str, auth_service) -> None:
        """Delete everything the user owns or is referenced by, then the auth user."""
        if confirm != DELETE_CONFIRMATION:
            raise ValidationError(f'Type "{DELETE_CONFIRMATION}" to confirm account deletion.')
        profile = self.get_profile(user_id)

        with store_errors("delete account"):
            owned_lists = self._ids_where("lists", "created_by", user_id)
            owned_notes = self._ids_where("notes", "created_by", user_id)

            # Grants held by the user, issued by the user, or on the user's resources
            for table, fk, owned in (("list_shares", "list_id", owned_lists), ("note_shares", "note_id", owned_notes)):
                self._delete_where(table, "user_id", user_id)
                self._delete_where(table, "shared_by", user_id)
                self._delete_where(table, fk, owned)

            self._delete_where("tasks", "list_id", owned_lists)
            self._delete_where("tasks", "created_by", user_id)
            completed = self.supabase.table("tasks")\
                .update({"completed_by": None})\
                .eq("completed_by", user_id)\
                .execute()
            self._published_updates("tasks", completed.data or [])

            self._delete_where("lists", "id", owned_lists)
            self._delete_where("notes", "id", owned_notes)
            self._delete_where("user_relationships", "user_id", user_id)
            self._delete_where("user_relationships", "related_user_id", user_id)

        if profile.avatar_url and self.storage is not None:
            key = self.storage.key_from_url(profile.avatar_url)
            if key:
                self.storage.delete_file(key)

        with store_errors("delete account"):
            self._delete_where("profiles", "id", user_id)
        auth_service.delete_auth_user(user_id)
        logger.info(f"Deleted account {user_id}")

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from supabase import AsyncClient, Client, acreate_client, create_client

from cotask.config import settings
from cotask.core.errors import CotaskError, TransientStoreError

logger = logging.getLogger(__name__)


class SupabaseClient:
    _client: Client = None
    _service_client: Client = None
    _async_client: Optional[AsyncClient] = None

    @classmethod
    def get_client(cls) -> Client:
        if cls._client is None:
            cls._client = create_client(settings.supabase_url, settings.supabase_key)
        return cls._client

    @classmethod
    def get_service_client(cls) -> Client:
        """Client with service_role key; bypasses RLS. Permission checks then happen in the services."""
        if cls._service_client is None and settings.supabase_service_role_key:
            cls._service_client = create_client(
                settings.supabase_url, settings.supabase_service_role_key
            )
        return cls._service_client or cls.get_client()

    @classmethod
    async def get_async_client(cls) -> AsyncClient:
        """Async client; Supabase Realtime channels are only available on it."""
        if cls._async_client is None:
            key = settings.supabase_service_role_key or settings.supabase_key
            cls._async_client = await acreate_client(settings.supabase_url, key)
        return cls._async_client

    @classmethod
    def reset_client(cls):
        cls._client = None
        cls._service_client = None
        cls._async_client = None


def get_supabase() -> Client:
    return SupabaseClient.get_service_client()


@contextmanager
def store_errors(action: str) -> Iterator[None]:
    """Convert store failures into TransientStoreError; application errors pass through."""
    try:
        yield
    except CotaskError:
        raise
    except Exception as e:
        logger.error(f"Store call failed while trying to {action}: {e}")
        raise TransientStoreError(f"Failed to {action}. Please try again.") from e

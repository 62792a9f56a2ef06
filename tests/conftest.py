import pytest
from fastapi.testclient import TestClient

from cotask.core.dependencies import get_auth_service, get_changes
from cotask.database.supabase_client import get_supabase
from cotask.main import app, limiter
from cotask.modules.auth.service import AuthService, clear_auth_cache
from cotask.modules.contacts.service import RelationshipService
from cotask.modules.lists.service import ListService
from cotask.modules.notes.service import NoteService
from cotask.modules.profiles.avatar_storage import SupabaseAvatarStorage
from cotask.modules.profiles.service import ProfileService
from cotask.modules.realtime.feed import ChangeBroker
from cotask.modules.realtime.routes import get_change_feed
from tests.fake_supabase import FakeSupabase


@pytest.fixture
def supabase():
    return FakeSupabase()


@pytest.fixture
def broker():
    return ChangeBroker()


@pytest.fixture
def profiles(supabase, broker):
    return ProfileService(supabase, storage=SupabaseAvatarStorage(supabase, "avatars"), changes=broker)


@pytest.fixture
def relationships(supabase, profiles, broker):
    return RelationshipService(supabase, profiles, changes=broker)


@pytest.fixture
def lists(supabase, profiles, broker):
    return ListService(supabase, profiles, changes=broker)


@pytest.fixture
def notes(supabase, profiles, broker):
    return NoteService(supabase, profiles, changes=broker)


@pytest.fixture
def alice(supabase):
    return supabase.seed_user("alice", "Alice")


@pytest.fixture
def bob(supabase):
    return supabase.seed_user("bob", "Bob")


@pytest.fixture
def carol(supabase):
    return supabase.seed_user("carol", "Carol")


@pytest.fixture
def client(supabase, broker):
    clear_auth_cache()
    limiter.reset()
    app.dependency_overrides[get_supabase] = lambda: supabase
    app.dependency_overrides[get_changes] = lambda: broker
    app.dependency_overrides[get_change_feed] = lambda: broker
    app.dependency_overrides[get_auth_service] = lambda: AuthService(supabase, admin=supabase)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    clear_auth_cache()


def auth_headers(user):
    return {"Authorization": f"Bearer {user.token}"}

import pytest

from cotask.core.errors import AlreadyExistsError, AuthenticationError, ValidationError
from cotask.modules.auth.schemas import LoginRequest, RegisterRequest
from cotask.modules.auth.service import AuthService, clear_auth_cache


@pytest.fixture
def auth(supabase):
    clear_auth_cache()
    yield AuthService(supabase, admin=supabase)
    clear_auth_cache()


def test_register_creates_profile(auth, supabase):
    result = auth.register(RegisterRequest(email="dana@example.com", password="secret123", username="dana"))

    [profile] = supabase.rows("profiles")
    assert profile["id"] == result.user_id
    assert profile["username"] == "dana"
    assert profile["name"] == "dana"


def test_register_rejects_taken_username(auth, alice):
    with pytest.raises(AlreadyExistsError):
        auth.register(RegisterRequest(email="other@example.com", password="secret123", username="alice"))


def test_login_and_resolve_token(auth, alice):
    token = auth.login(LoginRequest(email="alice@example.com", password="secret123"))

    assert token.user_id == alice.id
    assert auth.get_current_user(token.access_token)["id"] == alice.id


def test_bad_credentials(auth, alice):
    with pytest.raises(AuthenticationError):
        auth.login(LoginRequest(email="alice@example.com", password="wrong-password"))
    with pytest.raises(AuthenticationError):
        auth.get_current_user("not-a-token")


def test_change_password_checks_length_and_match(auth, alice):
    with pytest.raises(ValidationError):
        auth.change_password(alice.id, "short", "short")
    with pytest.raises(ValidationError):
        auth.change_password(alice.id, "longenough", "different1")

    assert auth.change_password(alice.id, "newsecret", "newsecret") is True
    assert auth.login(LoginRequest(email="alice@example.com", password="newsecret")).user_id == alice.id

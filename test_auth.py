from unittest.mock import MagicMock

import httpx
import pytest
from fastapi import Response
from supabase import AuthError

from auth import (
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    SESSION_COOKIE,
    VERIFIER_COOKIE,
    Cookie,
    LocalIdentityProvider,
    OAuthError,
    OAuthUnavailableError,
    SupabaseIdentityProvider,
    apply_cookies,
    create_session_token,
    decode_session_token,
)
from database import BackendError, InMemoryUserRepository, SupabaseUserRepository
from models import User

SECRET = "unit-test-secret"


@pytest.fixture
def provider():
    return LocalIdentityProvider(InMemoryUserRepository(), SECRET)


def test_session_token_round_trip():
    user = User(id="user-1", email="a@example.com", name="A")
    payload = decode_session_token(create_session_token(user, SECRET), SECRET)
    assert payload["userId"] == "user-1"
    assert payload["role"] == "user"
    assert payload["exp"] - payload["iat"] == 60 * 60 * 24


def test_tampered_token_is_rejected():
    user = User(id="user-1", email="a@example.com", name="A")
    token = create_session_token(user, SECRET)
    assert decode_session_token(token, "another-secret") is None
    assert decode_session_token(token[:-4] + "abcd", SECRET) is None


def test_expired_token_is_rejected():
    user = User(id="user-1", email="a@example.com", name="A")
    token = create_session_token(user, SECRET, expires_in=-60)
    assert decode_session_token(token, SECRET) is None


def test_local_login_sets_session_cookie(provider):
    resolution = provider.login("rajesh.kumar@example.com", "password")
    assert resolution.user.id == "user-1"
    [cookie] = resolution.cookies
    assert cookie.name == SESSION_COOKIE
    assert cookie.max_age == 60 * 60 * 24
    assert provider.resolve({SESSION_COOKIE: cookie.value}).user.id == "user-1"


def test_local_login_wrong_password(provider):
    assert provider.login("rajesh.kumar@example.com", "letmein") is None


def test_local_resolve_without_cookie(provider):
    assert provider.resolve({}).user is None


def test_local_resolve_deleted_user(provider):
    token = create_session_token(User(id="gone", email="g@example.com", name="G"), SECRET)
    assert provider.resolve({SESSION_COOKIE: token}).user is None


def test_local_oauth_unavailable(provider):
    with pytest.raises(OAuthUnavailableError):
        provider.oauth_url("http://localhost/auth/callback")


def test_apply_cookies():
    response = Response()
    apply_cookies(response, [Cookie("a", "1", 60), Cookie("b", max_age=0)])
    headers = response.headers.getlist("set-cookie")
    assert any(h.startswith("a=1;") and "HttpOnly" in h and "SameSite=lax" in h for h in headers)
    assert any(h.startswith("b=") and "Max-Age=0" in h for h in headers)


def hosted_provider(repository=None):
    client = MagicMock()
    repository = repository or MagicMock()
    return SupabaseIdentityProvider(lambda: client, repository), client, repository


def test_hosted_resolve_with_valid_access_token():
    provider, client, repository = hosted_provider()
    client.auth.get_user.return_value = MagicMock(user=MagicMock(id="auth-1"))
    repository.get.return_value = User(id="auth-1", email="a@example.com", name="A")

    resolution = provider.resolve({ACCESS_COOKIE: "access"})

    assert resolution.user.id == "auth-1"
    assert resolution.cookies == []
    client.auth.refresh_session.assert_not_called()


def test_hosted_resolve_refreshes_expired_session():
    provider, client, repository = hosted_provider()
    client.auth.get_user.side_effect = AuthError("JWT expired", "bad_jwt")
    session = MagicMock(access_token="new-access", refresh_token="new-refresh")
    client.auth.refresh_session.return_value = MagicMock(session=session, user=MagicMock(id="auth-1"))
    repository.get.return_value = User(id="auth-1", email="a@example.com", name="A")

    resolution = provider.resolve({ACCESS_COOKIE: "old", REFRESH_COOKIE: "refresh"})

    assert resolution.user.id == "auth-1"
    assert {c.name: c.value for c in resolution.cookies} == {
        ACCESS_COOKIE: "new-access",
        REFRESH_COOKIE: "new-refresh",
    }


def test_hosted_resolve_failed_refresh():
    provider, client, _ = hosted_provider()
    client.auth.get_user.side_effect = AuthError("JWT expired", "bad_jwt")
    client.auth.refresh_session.side_effect = AuthError("Invalid Refresh Token", "refresh_token_not_found")
    assert provider.resolve({ACCESS_COOKIE: "old", REFRESH_COOKIE: "stale"}).user is None


def test_hosted_resolve_without_profile():
    provider, client, repository = hosted_provider()
    client.auth.get_user.return_value = MagicMock(user=MagicMock(id="auth-1"))
    repository.get.side_effect = BackendError("permission denied")
    assert provider.resolve({ACCESS_COOKIE: "access"}).user is None


def test_hosted_login_rejected():
    provider, client, _ = hosted_provider()
    client.auth.sign_in_with_password.side_effect = AuthError("Invalid login credentials", "invalid_credentials")
    assert provider.login("a@example.com", "nope") is None


def test_oauth_callback_creates_missing_profile():
    provider, client, repository = hosted_provider()
    auth_user = MagicMock(id="auth-9", email="new.alum@gmail.com", user_metadata={"full_name": "New Alum"})
    client.auth.exchange_code_for_session.return_value = MagicMock(
        session=MagicMock(access_token="a", refresh_token="r"),
        user=auth_user,
    )
    repository.get.return_value = None
    repository.generate_unique_id.return_value = "ALM-2025-050"
    repository.insert_profile.side_effect = lambda user: user

    resolution = provider.complete_oauth("code-1", {VERIFIER_COOKIE: "verifier"})

    client.auth.exchange_code_for_session.assert_called_once_with(
        {"auth_code": "code-1", "code_verifier": "verifier"}
    )
    created = repository.insert_profile.call_args[0][0]
    assert created.name == "New Alum"
    assert created.unique_id == "ALM-2025-050"
    assert created.status == "active"
    assert resolution.user is created
    assert Cookie(VERIFIER_COOKIE, max_age=0) in resolution.cookies


def test_oauth_callback_id_generation_failure():
    provider, client, repository = hosted_provider()
    client.auth.exchange_code_for_session.return_value = MagicMock(
        session=MagicMock(), user=MagicMock(id="auth-9", email="x@gmail.com", user_metadata={}),
    )
    repository.get.return_value = None
    repository.generate_unique_id.side_effect = BackendError("rpc failed")

    with pytest.raises(OAuthError) as exc:
        provider.complete_oauth("code-1", {})
    assert exc.value.code == "unique_id_generation_failed"
    repository.insert_profile.assert_not_called()


def test_oauth_callback_bad_code():
    provider, client, _ = hosted_provider()
    client.auth.exchange_code_for_session.side_effect = AuthError("invalid flow state", "flow_state_not_found")
    with pytest.raises(OAuthError) as exc:
        provider.complete_oauth("bad", {})
    assert exc.value.code == "code_exchange_failed"


def test_hosted_resolve_survives_unreachable_backend():
    provider, client, _ = hosted_provider()
    client.auth.get_user.side_effect = httpx.ConnectError("connection refused")
    assert provider.resolve({ACCESS_COOKIE: "access"}).user is None


def test_hosted_resolve_refresh_timeout():
    provider, client, _ = hosted_provider()
    client.auth.get_user.side_effect = httpx.ConnectError("connection refused")
    client.auth.refresh_session.side_effect = httpx.ReadTimeout("timed out")
    resolution = provider.resolve({ACCESS_COOKIE: "old", REFRESH_COOKIE: "refresh"})
    assert resolution.user is None
    assert resolution.cookies == []


def test_hosted_resolve_profile_lookup_unreachable():
    client = MagicMock()
    client.auth.get_user.return_value = MagicMock(user=MagicMock(id="auth-1"))
    client.table.return_value.select.return_value.eq.return_value.limit.return_value.execute.side_effect = (
        httpx.ConnectError("connection refused")
    )
    provider = SupabaseIdentityProvider(lambda: client, SupabaseUserRepository(client))
    assert provider.resolve({ACCESS_COOKIE: "access"}).user is None

import pytest

from config import ConfigurationError, Settings


def test_hosted_backend_needs_real_credentials():
    settings = Settings(
        supabase_url="https://abc.supabase.co",
        supabase_anon_key="anon",
        supabase_service_role_key="your_supabase_service_role_key_here",
    )
    assert not settings.has_valid_credentials()
    assert not settings.hosted_backend_enabled


def test_hosted_backend_enabled_by_default_with_credentials():
    settings = Settings(
        supabase_url="https://abc.supabase.co",
        supabase_anon_key="anon",
        supabase_service_role_key="service",
    )
    assert settings.hosted_backend_enabled
    settings.supabase_connection_enabled = False
    assert not settings.hosted_backend_enabled


def test_from_env(monkeypatch):
    monkeypatch.setenv("SUPABASE_CONNECTION_ENABLED", "TRUE")
    monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test")
    monkeypatch.setenv("SUPABASE_STORAGE_BUCKET", "avatars")
    settings = Settings.from_env()
    assert settings.supabase_connection_enabled is True
    assert settings.cors_origins == ["http://a.test", "http://b.test"]
    assert settings.supabase_storage_bucket == "avatars"


def test_missing_jwt_secret():
    with pytest.raises(ConfigurationError):
        Settings(jwt_secret=None).require_jwt_secret()

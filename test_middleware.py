import pytest

from middleware import (
    ADMIN_ACCESS_REQUIRED,
    AUTHENTICATION_REQUIRED,
    is_public_path,
    route_redirect,
)
from models import User

ADMIN = User(id="admin-1", email="admin@example.com", name="Admin", role="admin")
MEMBER = User(id="user-1", email="member@example.com", name="Member")


@pytest.mark.parametrize("path", [
    "/", "/events", "/register-user", "/register/confirm", "/api/users", "/auth/callback",
    "/static/app.css", "/favicon.ico", "/images/hall.png", "/docs", "/openapi.json",
])
def test_public_paths(path):
    assert is_public_path(path)
    assert route_redirect(path, None) is None


@pytest.mark.parametrize("path", ["/admin", "/admin/export", "/my-registrations", "/events/1", "/eventsx"])
def test_protected_paths_need_identity(path):
    assert not is_public_path(path)
    assert route_redirect(path, None) == AUTHENTICATION_REQUIRED


def test_admin_paths_need_admin_role():
    assert route_redirect("/admin", MEMBER) == ADMIN_ACCESS_REQUIRED
    assert route_redirect("/admin/export", MEMBER) == ADMIN_ACCESS_REQUIRED
    assert route_redirect("/admin", ADMIN) is None


def test_member_pages_allow_any_identity():
    assert route_redirect("/my-registrations", MEMBER) is None
    assert route_redirect("/my-registrations", ADMIN) is None

"""Route guard: redirects callers without the identity or role a page needs."""

from typing import Optional
import logging

from fastapi import Request
from fastapi.responses import RedirectResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from auth import Resolution, apply_cookies
from models import User

logger = logging.getLogger(__name__)

PUBLIC_ROUTES = ("/", "/register-user", "/events")
PUBLIC_ROUTE_PREFIXES = (
    "/register/", "/api/", "/auth/callback", "/static", "/favicon.ico", "/images", "/docs", "/openapi.json",
)
ADMIN_PREFIX = "/admin"

AUTHENTICATION_REQUIRED = "/?error=authentication_required"
ADMIN_ACCESS_REQUIRED = "/events?error=admin_access_required"
MIDDLEWARE_ERROR = "/?error=middleware_error"


def is_public_path(path: str) -> bool:
    return path in PUBLIC_ROUTES or path.startswith(PUBLIC_ROUTE_PREFIXES)


def route_redirect(path: str, user: Optional[User]) -> Optional[str]:
    """Where to send the caller, or None to let the request through."""
    if is_public_path(path):
        return None
    if user is None:
        return AUTHENTICATION_REQUIRED
    if path.startswith(ADMIN_PREFIX) and user.role != "admin":
        return ADMIN_ACCESS_REQUIRED
    return None


class RouteGuardMiddleware(BaseHTTPMiddleware):
    """
    Resolve the caller for every non-public path and apply ``route_redirect``.

    The resolution is left on ``request.state.identity`` so handlers do not
    resolve twice, and any session cookies the hosted backend rotated are
    written to whatever response goes back.
    """

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if is_public_path(path):
            return await call_next(request)

        try:
            backend = request.app.state.backend
            resolution: Resolution = await run_in_threadpool(backend.identity.resolve, request.cookies)
        except Exception as e:
            logger.exception(f"Route guard failed for {path}: {e}")
            return RedirectResponse(MIDDLEWARE_ERROR, status_code=307)

        target = route_redirect(path, resolution.user)
        if target:
            logger.info(f"Redirecting {path} to {target}")
            response = RedirectResponse(target, status_code=307)
        else:
            request.state.identity = resolution
            response = await call_next(request)
        apply_cookies(response, resolution.cookies)
        return response

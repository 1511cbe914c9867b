"""
Strategy selection and dependency wiring for the FastAPI app.
"""

from dataclasses import dataclass
from typing import List
import logging

from fastapi import Depends, HTTPException, Request, Response
from supabase import Client, ClientOptions, create_client

from auth import (
    Cookie,
    IdentityProvider,
    LocalIdentityProvider,
    Resolution,
    SupabaseIdentityProvider,
    apply_cookies,
)
from config import Settings
from database import InMemoryUserRepository, SupabaseUserRepository, UserRepository
from manager import EventManager, UserDirectory
from models import User
from storage import InMemoryPhotoStorage, PhotoStorage, PhotoUploader, SupabasePhotoStorage
from utils import check_admin_permission

logger = logging.getLogger(__name__)


@dataclass
class Backend:
    """Everything a request handler needs, chosen once for the process lifetime."""

    hosted: bool
    repository: UserRepository
    identity: IdentityProvider
    storage: PhotoStorage
    directory: UserDirectory
    uploader: PhotoUploader
    events: EventManager


def _service_client(settings: Settings) -> Client:
    return create_client(
        settings.supabase_url,
        settings.supabase_service_role_key,
        ClientOptions(auto_refresh_token=False, persist_session=False),
    )


def _auth_client_factory(settings: Settings):
    def factory() -> Client:
        return create_client(
            settings.supabase_url,
            settings.supabase_anon_key,
            ClientOptions(auto_refresh_token=False, persist_session=False, flow_type="pkce"),
        )
    return factory


def build_backend(settings: Settings) -> Backend:
    """Pick the hosted or in-memory implementations based on configuration."""
    if settings.hosted_backend_enabled:
        logger.info(f"Using hosted backend at {settings.supabase_url}")
        client = _service_client(settings)
        repository = SupabaseUserRepository(client)
        identity = SupabaseIdentityProvider(_auth_client_factory(settings), repository)
        storage = SupabasePhotoStorage(client, settings.supabase_storage_bucket)
    else:
        logger.info("Hosted backend disabled, using in-memory fallback")
        repository = InMemoryUserRepository()
        identity = LocalIdentityProvider(repository, settings.require_jwt_secret())
        storage = InMemoryPhotoStorage(
            base_url=settings.local_storage_base_url,
            bucket=settings.supabase_storage_bucket,
        )
    return Backend(
        hosted=settings.hosted_backend_enabled,
        repository=repository,
        identity=identity,
        storage=storage,
        directory=UserDirectory(repository),
        uploader=PhotoUploader(storage),
        events=EventManager(),
    )


def get_backend(request: Request) -> Backend:
    return request.app.state.backend


def get_directory(backend: Backend = Depends(get_backend)) -> UserDirectory:
    return backend.directory


def get_events(backend: Backend = Depends(get_backend)) -> EventManager:
    return backend.events


def get_uploader(backend: Backend = Depends(get_backend)) -> PhotoUploader:
    return backend.uploader


def get_resolution(request: Request, backend: Backend = Depends(get_backend)) -> Resolution:
    """Resolve the caller once per request, reusing the route guard's result when it already ran."""
    resolution = getattr(request.state, "identity", None)
    if resolution is None:
        resolution = backend.identity.resolve(request.cookies)
        request.state.identity = resolution
        # the guard did not run, so nobody else will write these
        request.state.pending_cookies = resolution.cookies
    return resolution


def pending_cookies(request: Request) -> List[Cookie]:
    """Session cookies rotated during this request that still need writing."""
    return getattr(request.state, "pending_cookies", [])


def get_current_user(
    request: Request, response: Response, resolution: Resolution = Depends(get_resolution)
) -> User | None:
    apply_cookies(response, pending_cookies(request))
    return resolution.user


def require_user(current_user: User | None = Depends(get_current_user)) -> User:
    if current_user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return current_user


def require_admin(current_user: User | None = Depends(get_current_user)) -> User:
    check_admin_permission(current_user)
    return current_user

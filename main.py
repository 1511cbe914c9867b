from contextlib import asynccontextmanager
from typing import Iterable, List, Literal, Optional
from urllib.parse import urlencode
import logging

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, Response, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, StreamingResponse
from pydantic import BaseModel

from auth import Cookie, OAuthError, OAuthUnavailableError, apply_cookies
from config import Settings, get_settings
from database import BackendError, RegistrationError
from dependencies import (
    Backend,
    build_backend,
    get_backend,
    get_directory,
    get_events,
    get_uploader,
    pending_cookies,
    require_admin,
    require_user,
)
from manager import EventManager, UserDirectory
from middleware import RouteGuardMiddleware
from models import User
from storage import PhotoUploader, StorageError, validate_file
from utils import (
    ADMIN_EXPORT_HEADERS,
    FILTERED_EXPORT_HEADERS,
    SERVER_EXPORT_HEADERS,
    admin_export_filename,
    export_timestamp,
    generate_csv,
)

# Logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# -------------------------------
# Schemas
# -------------------------------
class UserRegister(BaseModel):
    name: str
    email: str
    password: str
    phone: Optional[str] = None
    address: Optional[str] = None
    batch: Optional[str] = None
    department: Optional[str] = None
    year_of_passing: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Priya Sharma",
                "email": "priya.sharma@example.com",
                "password": "a-strong-password",
                "phone": "+91 91234 56789",
                "batch": "2005-2010",
                "department": "Physics",
                "year_of_passing": "2010",
            }
        }


class UserLogin(BaseModel):
    email: str
    password: str


class StatusUpdate(BaseModel):
    status: Literal["active", "pending", "suspended"]


class ExportFilters(BaseModel):
    role: Optional[Literal["user", "admin"]] = None
    status: Optional[Literal["active", "pending", "suspended"]] = None
    batch: Optional[str] = None
    department: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None


class ExportRequest(BaseModel):
    filters: ExportFilters = ExportFilters()
    format: Literal["csv", "json"] = "csv"


def csv_response(users: List[User], headers: List[str], filename: str, cookies: Iterable[Cookie] = (),
                 default_status: str = "") -> StreamingResponse:
    """Stream a CSV download; cookies go on it directly since FastAPI won't merge them into it."""
    response = StreamingResponse(
        generate_csv(users, headers, default_status=default_status),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"', "Cache-Control": "no-cache"},
    )
    apply_cookies(response, list(cookies))
    return response


def redirect_url_for(user: User) -> str:
    return "/admin" if user.is_admin else "/events"


# -------------------------------
# Pages
# -------------------------------
def register_page_routes(app: FastAPI):
    @app.get("/", response_model=dict, summary="Home page")
    def home(error: Optional[str] = None, backend: Backend = Depends(get_backend)):
        """Welcome data for the sign-in page, echoing any redirect error."""
        featured = backend.events.featured_event()
        return {
            "message": "Welcome to the Alumni Association portal",
            "data": {
                "error": error,
                "google_sign_in": backend.identity.oauth_enabled,
                "featured_event": featured.as_dict() if featured else None,
            },
        }

    @app.get("/events", response_model=dict, summary="Events page")
    def events_page(
        search: str = "",
        category: str = "all",
        sort: Literal["date", "attendees", "title"] = "date",
        error: Optional[str] = None,
        events: EventManager = Depends(get_events),
    ):
        featured = events.featured_event()
        return {
            "message": "Events retrieved",
            "data": {
                "error": error,
                "featured": featured.as_dict() if featured else None,
                "categories": events.categories(),
                "events": [e.as_dict() for e in events.list_events(search, category, sort)],
            },
        }

    @app.get("/register-user", response_model=dict, summary="Registration page")
    def register_page(directory: UserDirectory = Depends(get_directory)):
        stats = directory.compute_stats()
        return {
            "message": "Registration open" if not stats.is_capacity_full else "Registration closed",
            "data": {"available_slots": stats.available_slots, "is_capacity_full": stats.is_capacity_full},
        }

    @app.get("/my-registrations", response_model=dict, summary="Current member's page")
    def my_registrations(current_user: User = Depends(require_user), events: EventManager = Depends(get_events)):
        return {
            "message": f"Welcome back, {current_user.name}",
            "data": {"user": current_user.as_dict(), "events": [e.as_dict() for e in events.list_events()]},
        }

    @app.get("/admin", response_model=dict, summary="Admin dashboard")
    def admin_dashboard(
        current_user: User = Depends(require_admin),
        directory: UserDirectory = Depends(get_directory),
        events: EventManager = Depends(get_events),
    ):
        users = directory.list_all()
        return {
            "message": "Dashboard loaded",
            "data": {
                "users": [u.as_dict() for u in users],
                "stats": directory.compute_stats().as_dict(),
                "total_events": len(events.events),
            },
        }

    @app.get("/admin/export", response_model=None, summary="Export the dashboard's user list as CSV")
    def admin_export(
        request: Request,
        search: str = "",
        status_filter: Literal["all", "active", "pending", "suspended"] = Query("all", alias="status"),
        current_user: User = Depends(require_admin),
        directory: UserDirectory = Depends(get_directory),
    ):
        users = directory.search(search, status_filter)
        logger.info(f"Dashboard export of {len(users)} users by {current_user.id}")
        return csv_response(
            users, ADMIN_EXPORT_HEADERS, admin_export_filename(), pending_cookies(request), default_status="active"
        )


# -------------------------------
# Auth Routes
# -------------------------------
def register_auth_routes(app: FastAPI):
    @app.post("/api/auth/login", response_model=dict, summary="Sign in with email and password")
    def login(credentials: UserLogin, response: Response, backend: Backend = Depends(get_backend)):
        """Authenticate and set the session cookies for the active strategy."""
        resolution = backend.identity.login(credentials.email, credentials.password)
        if resolution is None or resolution.user is None:
            logger.info(f"Failed sign-in for {credentials.email}")
            raise HTTPException(status_code=401, detail="Invalid credentials")
        apply_cookies(response, resolution.cookies)
        user = resolution.user
        logger.info(f"User {user.email} logged in")
        return {"message": "Login successful", "data": {"user": user.as_dict(), "redirect_url": redirect_url_for(user)}}

    @app.post("/api/auth/logout", response_model=dict, summary="Sign out")
    def logout(request: Request, response: Response, backend: Backend = Depends(get_backend)):
        apply_cookies(response, backend.identity.logout(request.cookies))
        return {"message": "Logged out", "data": {}}

    @app.get("/api/auth/me", response_model=dict, summary="Current user")
    def me(current_user: User = Depends(require_user)):
        return {"message": "Current user", "data": {"user": current_user.as_dict()}}

    @app.get("/api/auth/stats", response_model=dict, summary="Registration statistics")
    def stats(current_user: User = Depends(require_admin), directory: UserDirectory = Depends(get_directory)):
        return {"message": "Stats retrieved", "data": {"stats": directory.compute_stats().as_dict()}}

    @app.post("/api/auth/google", response_model=dict, summary="Start Google sign-in")
    def google_sign_in(request: Request, response: Response, backend: Backend = Depends(get_backend)):
        origin = request.headers.get("origin") or str(request.base_url).rstrip("/")
        try:
            url, cookies = backend.identity.oauth_url(f"{origin}/auth/callback")
        except OAuthUnavailableError as e:
            raise HTTPException(status_code=503, detail=str(e))
        apply_cookies(response, cookies)
        return {"message": "Redirect to provider", "data": {"url": url}}

    @app.get("/auth/callback", summary="OAuth redirect target")
    def oauth_callback(
        request: Request,
        code: Optional[str] = None,
        error: Optional[str] = None,
        error_description: Optional[str] = None,
        backend: Backend = Depends(get_backend),
    ):
        def fail(reason: str, details: Optional[str] = None) -> RedirectResponse:
            query = {"error": reason}
            if details:
                query["details"] = details
            logger.warning(f"OAuth callback failed: {reason} {details or ''}")
            return RedirectResponse(f"/?{urlencode(query)}", status_code=307)

        if error:
            return fail("oauth_provider_error", error_description or error)
        if not code:
            return fail("no_auth_code")
        try:
            resolution = backend.identity.complete_oauth(code, request.cookies, f"{request.base_url}auth/callback")
        except OAuthUnavailableError as e:
            return fail("oauth_unavailable", str(e))
        except OAuthError as e:
            return fail(e.code, e.details)
        response = RedirectResponse("/events", status_code=307)
        apply_cookies(response, resolution.cookies)
        return response


# -------------------------------
# User Routes
# -------------------------------
def register_user_routes(app: FastAPI):
    @app.get("/api/users", response_model=dict, summary="List registered users")
    def list_users(current_user: User = Depends(require_admin), directory: UserDirectory = Depends(get_directory)):
        users = directory.list_all()
        return {"message": "Users retrieved", "data": {"users": [u.as_dict() for u in users], "total": len(users)}}

    @app.post("/api/users", response_model=dict, status_code=status.HTTP_201_CREATED, summary="Register a new alumnus")
    def register(user: UserRegister, directory: UserDirectory = Depends(get_directory)):
        profile = User(id="", **user.model_dump(exclude={"password"}))
        try:
            created = directory.register(profile, user.password)
        except RegistrationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"message": "User registered", "data": {"user": created.as_dict()}}

    @app.patch("/api/users/{user_id}/status", response_model=dict, summary="Change a user's status")
    def update_status(
        user_id: str,
        update: StatusUpdate,
        current_user: User = Depends(require_admin),
        directory: UserDirectory = Depends(get_directory),
    ):
        if not directory.update_status(user_id, update.status):
            raise HTTPException(status_code=404, detail="User not found")
        logger.info(f"User {user_id} set to {update.status} by {current_user.id}")
        return {"message": f"User {user_id} updated", "data": {"id": user_id, "status": update.status}}


# -------------------------------
# Upload Routes
# -------------------------------
def register_upload_routes(app: FastAPI):
    @app.post("/api/upload/photo", response_model=dict, summary="Upload a profile photo")
    def upload_photo(
        photo: Optional[UploadFile] = File(None),
        user_id: Optional[str] = Form(None, alias="userId"),
        uploader: PhotoUploader = Depends(get_uploader),
    ):
        if photo is None:
            raise HTTPException(status_code=400, detail="No photo file provided")
        data = photo.file.read()
        validation = validate_file(photo.content_type, len(data))
        if not validation.valid:
            raise HTTPException(status_code=400, detail=validation.error)
        try:
            result = uploader.upload(photo.filename or "", data, photo.content_type, user_id)
        except StorageError as e:
            raise HTTPException(status_code=500, detail=str(e) or "Upload failed")
        return {
            "message": "Photo uploaded successfully",
            "data": {
                "url": result.url,
                "path": result.path,
                "file_name": photo.filename,
                "file_size": len(data),
                "file_type": photo.content_type,
            },
        }

    @app.get("/api/upload/photo", response_model=dict, summary="List a user's photos")
    def list_photos(user_id: Optional[str] = Query(None, alias="userId"), uploader: PhotoUploader = Depends(get_uploader)):
        if not user_id:
            raise HTTPException(status_code=400, detail="User ID is required")
        try:
            photos = uploader.storage.list_user_photos(user_id)
        except StorageError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {"message": "Photos retrieved", "data": {"photos": [p.as_dict() for p in photos]}}

    @app.delete("/api/upload/photo", response_model=dict, summary="Delete a stored photo")
    def delete_photo(path: str, current_user: User = Depends(require_admin), uploader: PhotoUploader = Depends(get_uploader)):
        try:
            uploader.storage.delete(path)
        except StorageError as e:
            raise HTTPException(status_code=500, detail=str(e))
        logger.info(f"Photo {path} deleted by {current_user.id}")
        return {"message": "Photo deleted", "data": {"path": path}}


# -------------------------------
# Export, Event and Status Routes
# -------------------------------
def register_misc_routes(app: FastAPI):
    @app.get("/api/export/users", response_model=None, summary="Export all registrations as CSV")
    def export_users(
        request: Request,
        current_user: User = Depends(require_admin),
        directory: UserDirectory = Depends(get_directory),
    ):
        users = directory.filter_for_export()
        if not users:
            raise HTTPException(status_code=404, detail="No user data found")
        logger.info(f"Users exported by {current_user.id}")
        return csv_response(
            users, SERVER_EXPORT_HEADERS, f"user-registrations-{export_timestamp()}.csv", pending_cookies(request)
        )

    @app.post("/api/export/users", response_model=None, summary="Export filtered registrations")
    def export_filtered_users(
        export: ExportRequest,
        request: Request,
        current_user: User = Depends(require_admin),
        directory: UserDirectory = Depends(get_directory),
    ):
        users = directory.filter_for_export(**export.filters.model_dump())
        if not users:
            raise HTTPException(status_code=404, detail="No users found matching the filters")
        logger.info(f"Filtered export of {len(users)} users by {current_user.id}")
        if export.format == "json":
            return {"message": "Users exported", "data": {"count": len(users), "users": [u.as_dict() for u in users]}}
        return csv_response(
            users, FILTERED_EXPORT_HEADERS, f"filtered-users-{export_timestamp()}.csv", pending_cookies(request)
        )

    @app.get("/api/events", response_model=dict, summary="List events")
    def list_events(
        search: str = "",
        category: str = "all",
        sort: Literal["date", "attendees", "title"] = "date",
        events: EventManager = Depends(get_events),
    ):
        data = [e.as_dict() for e in events.list_events(search, category, sort)]
        return {"message": "Events retrieved", "data": data}

    @app.get("/api/events/{event_id}", response_model=dict, summary="Get one event")
    def get_event(event_id: int, events: EventManager = Depends(get_events)):
        event = events.get_event(event_id)
        if not event:
            raise HTTPException(status_code=404, detail="Event not found")
        return {"message": event.display_details(), "data": event.as_dict()}

    @app.get("/api/connection/status", response_model=dict, summary="Hosted backend status")
    def connection_status(backend: Backend = Depends(get_backend)):
        if not backend.hosted:
            return {"message": "Hosted backend is disabled", "data": {"enabled": False, "connected": False}}
        connected, error = backend.repository.ping()
        message = "Successfully connected to the hosted backend" if connected else "Connection test failed"
        return {"message": message, "data": {"enabled": True, "connected": connected, "error": error}}


# -------------------------------
# Error handlers
# -------------------------------
async def backend_error_handler(request: Request, exc: BackendError):
    logger.error(f"Hosted backend failure on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": str(exc) or "Hosted backend request failed"})


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# -------------------------------
# FastAPI App
# -------------------------------
def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    backend = build_backend(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Alumni portal started ({'hosted' if backend.hosted else 'in-memory'} backend)")
        yield
        logger.info("Alumni portal shutting down")

    app = FastAPI(title="Alumni Association Portal", lifespan=lifespan)
    app.state.backend = backend

    app.add_middleware(RouteGuardMiddleware)
    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(BackendError, backend_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    register_page_routes(app)
    register_auth_routes(app)
    register_user_routes(app)
    register_upload_routes(app)
    register_misc_routes(app)
    return app


app = create_app()

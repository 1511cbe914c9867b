from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from typing import Callable, List, Mapping, Optional, Protocol, Tuple
import logging

from fastapi import Response
from jose import JWTError, jwt
from supabase import Client

from database import AUTH_ERRORS, BackendError, InMemoryUserRepository, SupabaseUserRepository
from models import User

logger = logging.getLogger(__name__)

# JWT configuration
ALGORITHM = "HS256"
SESSION_COOKIE = "auth-token"
SESSION_MAX_AGE = 60 * 60 * 24  # 24 hours

ACCESS_COOKIE = "sb-access-token"
REFRESH_COOKIE = "sb-refresh-token"
VERIFIER_COOKIE = "sb-code-verifier"
VERIFIER_MAX_AGE = 60 * 10
REFRESH_MAX_AGE = 60 * 60 * 24 * 30


@dataclass
class Cookie:
    name: str
    value: str = ""
    max_age: Optional[int] = None

    @property
    def expired(self) -> bool:
        return self.max_age == 0


@dataclass
class Resolution:
    """The outcome of resolving a request's identity."""

    user: Optional[User] = None
    cookies: List[Cookie] = field(default_factory=list)


class OAuthUnavailableError(Exception):
    """Raised when the selected strategy has no OAuth provider."""


class OAuthError(Exception):
    """An OAuth callback step failed; ``code`` is reported back to the browser."""

    def __init__(self, code: str, details: Optional[str] = None):
        super().__init__(details or code)
        self.code = code
        self.details = details


def apply_cookies(response: Response, cookies: List[Cookie]):
    """Write cookie changes onto a response; max_age 0 deletes."""
    for cookie in cookies:
        if cookie.expired:
            response.delete_cookie(cookie.name, httponly=True, samesite="lax")
        else:
            response.set_cookie(
                cookie.name,
                cookie.value,
                max_age=cookie.max_age,
                httponly=True,
                samesite="lax",
                secure=False,
            )


def create_session_token(user: User, secret: str, expires_in: int = SESSION_MAX_AGE) -> str:
    """Create a signed session token for the local fallback strategy."""
    issued_at = datetime.now(UTC)
    to_encode = {
        "userId": user.id,
        "role": user.role,
        "iat": issued_at,
        "exp": issued_at + timedelta(seconds=expires_in),
    }
    return jwt.encode(to_encode, secret, algorithm=ALGORITHM)


def decode_session_token(token: str, secret: str) -> Optional[dict]:
    """Return the token payload, or None if the signature or expiry is bad."""
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.info(f"Rejected session token: {e}")
        return None
    if not payload.get("userId"):
        return None
    return payload


class IdentityProvider(Protocol):
    """Authentication strategy selected once at startup."""

    oauth_enabled: bool

    def resolve(self, cookies: Mapping[str, str]) -> Resolution:
        ...

    def login(self, email: str, password: str) -> Optional[Resolution]:
        ...

    def logout(self, cookies: Mapping[str, str]) -> List[Cookie]:
        ...

    def oauth_url(self, redirect_to: str) -> Tuple[str, List[Cookie]]:
        ...

    def complete_oauth(self, code: str, cookies: Mapping[str, str], redirect_to: Optional[str] = None) -> Resolution:
        ...


class LocalIdentityProvider:
    """Email/password against the in-memory directory, sessions in a signed cookie."""

    oauth_enabled = False

    def __init__(self, repository: InMemoryUserRepository, secret: str):
        self.repository = repository
        self.secret = secret

    def resolve(self, cookies: Mapping[str, str]) -> Resolution:
        token = cookies.get(SESSION_COOKIE)
        if not token:
            return Resolution()
        payload = decode_session_token(token, self.secret)
        if payload is None:
            return Resolution()
        return Resolution(user=self.repository.get(payload["userId"]))

    def login(self, email: str, password: str) -> Optional[Resolution]:
        user = self.repository.check_password(email, password)
        if user is None:
            return None
        token = create_session_token(user, self.secret)
        return Resolution(user=user, cookies=[Cookie(SESSION_COOKIE, token, SESSION_MAX_AGE)])

    def logout(self, cookies: Mapping[str, str]) -> List[Cookie]:
        return [Cookie(SESSION_COOKIE, max_age=0)]

    def oauth_url(self, redirect_to: str) -> Tuple[str, List[Cookie]]:
        raise OAuthUnavailableError("Google authentication is not available. Please use email login.")

    def complete_oauth(self, code: str, cookies: Mapping[str, str], redirect_to: Optional[str] = None) -> Resolution:
        raise OAuthUnavailableError("Google authentication is not available. Please use email login.")


def session_cookies(session) -> List[Cookie]:
    return [
        Cookie(ACCESS_COOKIE, session.access_token, SESSION_MAX_AGE),
        Cookie(REFRESH_COOKIE, session.refresh_token, REFRESH_MAX_AGE),
    ]


class SupabaseIdentityProvider:
    """
    Sessions issued by the hosted auth service.

    ``auth_client_factory`` returns a fresh anon-key client per call so that no
    session state leaks between requests; ``repository`` holds the profiles.
    """

    oauth_enabled = True

    def __init__(self, auth_client_factory: Callable[[], Client], repository: SupabaseUserRepository):
        self.auth_client_factory = auth_client_factory
        self.repository = repository

    def _profile(self, auth_user_id: str) -> Optional[User]:
        try:
            return self.repository.get(auth_user_id)
        except BackendError as e:
            logger.error(f"Profile fetch for {auth_user_id} failed: {e}")
            return None

    def resolve(self, cookies: Mapping[str, str]) -> Resolution:
        access_token = cookies.get(ACCESS_COOKIE)
        refresh_token = cookies.get(REFRESH_COOKIE)
        if not access_token and not refresh_token:
            return Resolution()

        client = self.auth_client_factory()
        rotated: List[Cookie] = []
        auth_user = None
        if access_token:
            try:
                response = client.auth.get_user(access_token)
                auth_user = response.user if response else None
            except AUTH_ERRORS as e:
                logger.info(f"Hosted access token rejected: {e}")
        if auth_user is None and refresh_token:
            try:
                refreshed = client.auth.refresh_session(refresh_token)
            except AUTH_ERRORS as e:
                logger.info(f"Hosted session refresh failed: {e}")
                return Resolution()
            if refreshed.session is None or refreshed.user is None:
                return Resolution()
            auth_user = refreshed.user
            rotated = session_cookies(refreshed.session)
        if auth_user is None:
            return Resolution()
        return Resolution(user=self._profile(auth_user.id), cookies=rotated)

    def login(self, email: str, password: str) -> Optional[Resolution]:
        client = self.auth_client_factory()
        try:
            response = client.auth.sign_in_with_password({"email": email, "password": password})
        except AUTH_ERRORS as e:
            logger.info(f"Hosted sign-in rejected for {email}: {e}")
            return None
        if response.session is None or response.user is None:
            return None
        profile = self._profile(response.user.id)
        if profile is None:
            return None
        return Resolution(user=profile, cookies=session_cookies(response.session))

    def logout(self, cookies: Mapping[str, str]) -> List[Cookie]:
        access_token = cookies.get(ACCESS_COOKIE)
        if access_token:
            try:
                self.repository.client.auth.admin.sign_out(access_token)
            except AUTH_ERRORS as e:
                logger.warning(f"Hosted sign-out failed: {e}")
        return [Cookie(ACCESS_COOKIE, max_age=0), Cookie(REFRESH_COOKIE, max_age=0)]

    def oauth_url(self, redirect_to: str) -> Tuple[str, List[Cookie]]:
        """Start the PKCE flow; the verifier travels back in a short-lived cookie."""
        client = self.auth_client_factory()
        response = client.auth.sign_in_with_oauth({
            "provider": "google",
            "options": {
                "redirect_to": redirect_to,
                "query_params": {"access_type": "offline", "prompt": "consent"},
            },
        })
        cookies = []
        verifier = pkce_verifier(client)
        if verifier:
            cookies.append(Cookie(VERIFIER_COOKIE, verifier, VERIFIER_MAX_AGE))
        return response.url, cookies

    def complete_oauth(self, code: str, cookies: Mapping[str, str], redirect_to: Optional[str] = None) -> Resolution:
        client = self.auth_client_factory()
        params = {"auth_code": code, "code_verifier": cookies.get(VERIFIER_COOKIE, "")}
        if redirect_to:
            params["redirect_to"] = redirect_to
        try:
            response = client.auth.exchange_code_for_session(params)
        except AUTH_ERRORS as e:
            raise OAuthError("code_exchange_failed", str(e)) from e
        if response.session is None or response.user is None:
            raise OAuthError("no_session_created")

        auth_user = response.user
        profile = self._profile(auth_user.id)
        if profile is None:
            profile = self._create_oauth_profile(auth_user)
        logger.info(f"OAuth session created for {profile.email}")
        return Resolution(
            user=profile,
            cookies=session_cookies(response.session) + [Cookie(VERIFIER_COOKIE, max_age=0)],
        )

    def _create_oauth_profile(self, auth_user) -> User:
        email = auth_user.email or ""
        metadata = auth_user.user_metadata or {}
        user = User(
            id=auth_user.id,
            email=email,
            name=metadata.get("full_name") or email.split("@")[0],
            role="user",
            status="active",
            registration_date=date.today().isoformat(),
        )
        try:
            user.unique_id = self.repository.generate_unique_id()
        except BackendError as e:
            raise OAuthError("unique_id_generation_failed", str(e)) from e
        try:
            return self.repository.insert_profile(user)
        except BackendError as e:
            raise OAuthError("profile_creation_failed", str(e)) from e


def pkce_verifier(client: Client) -> Optional[str]:
    """Read the code verifier the auth client stored while building the OAuth URL."""
    storage = client.options.storage
    for key in list(getattr(storage, "storage", {})):
        if key.endswith("-code-verifier"):
            return storage.get_item(key)
    return None

from datetime import UTC, date, datetime
from typing import Dict, List, Optional, Protocol, Tuple
import logging
import uuid

import httpx
from passlib.hash import bcrypt
from supabase import AuthError, Client, PostgrestAPIError

from models import REGISTRATION_CAPACITY, RegistrationStats, Status, User

logger = logging.getLogger(__name__)

# Transport failures surface as httpx errors rather than SDK errors
QUERY_ERRORS = (PostgrestAPIError, httpx.HTTPError)
AUTH_ERRORS = (AuthError, httpx.HTTPError)

# bcrypt hash of "password", shared by the seeded demo accounts
DEMO_PASSWORD_HASH = "$2a$10$92IXUNpkjO0rOQ5byMi.Ye4oKoEa3Ro9llC/.og/at2.uheWG/igi"


def error_message(e: Exception) -> str:
    """Best description of a hosted-backend failure; PostgrestAPIError has an empty str()."""
    return getattr(e, "message", None) or str(e) or repr(e)


class RegistrationError(Exception):
    """Base class for rejected registrations."""


class DuplicateEmailError(RegistrationError):
    def __init__(self, email: str):
        super().__init__("User with this email already exists.")
        self.email = email


class CapacityReachedError(RegistrationError):
    def __init__(self, capacity: int = REGISTRATION_CAPACITY):
        super().__init__(f"Registration capacity reached. Maximum {capacity} users allowed.")
        self.capacity = capacity


class BackendError(Exception):
    """An operation against the hosted backend failed."""


class UserRepository(Protocol):
    """Operations the application needs from profile storage."""

    def find_by_email(self, email: str) -> Optional[User]:
        ...

    def get(self, user_id: str) -> Optional[User]:
        ...

    def insert(self, user: User, password: str) -> User:
        ...

    def update_status(self, user_id: str, status: Status) -> bool:
        ...

    def list_all(self) -> List[User]:
        ...

    def registration_stats(self) -> RegistrationStats:
        ...

    def ping(self) -> Tuple[bool, Optional[str]]:
        ...


def demo_users() -> List[User]:
    """Accounts available when the hosted backend is disabled."""
    return [
        User(id="admin-1", email="admin@balyabhavan.edu", name="Admin User", role="admin"),
        User(
            id="user-1",
            unique_id="ALM-2025-001",
            email="rajesh.kumar@example.com",
            name="Rajesh Kumar",
            role="user",
            batch="1995-2000",
            department="Computer Science",
            phone="+91 98765 43210",
            address="Jorhat, Assam",
            year_of_passing="2000",
            registration_date="2025-01-15",
            status="active",
        ),
    ]


class InMemoryUserRepository:
    """Development fallback. Not safe for concurrent writers."""

    def __init__(self, users: Optional[List[User]] = None, capacity: int = REGISTRATION_CAPACITY):
        self.capacity = capacity
        self.users: List[User] = []
        self.passwords: Dict[str, str] = {}
        self._seed(demo_users() if users is None else users)

    def _seed(self, users: List[User]):
        for user in users:
            self.users.append(user)
            self.passwords[user.email] = DEMO_PASSWORD_HASH

    def find_by_email(self, email: str) -> Optional[User]:
        return next((u for u in self.users if u.email == email), None)

    def get(self, user_id: str) -> Optional[User]:
        return next((u for u in self.users if u.id == user_id), None)

    def next_unique_id(self) -> str:
        count = sum(1 for u in self.users if u.role == "user")
        return f"ALM-{date.today().year}-{count + 1:03d}"

    def insert(self, user: User, password: str) -> User:
        """Store a new profile with a bcrypt hash of its password."""
        if self.find_by_email(user.email):
            raise DuplicateEmailError(user.email)
        if user.role == "user" and self.registration_stats().is_capacity_full:
            raise CapacityReachedError(self.capacity)
        if not user.id:
            user.id = str(uuid.uuid4())
        if not user.unique_id:
            user.unique_id = self.next_unique_id()
        self.users.append(user)
        self.passwords[user.email] = bcrypt.hash(password)
        return user

    def check_password(self, email: str, password: str) -> Optional[User]:
        """Return the profile if the password matches its stored hash."""
        user = self.find_by_email(email)
        hashed = self.passwords.get(email)
        if user is None or hashed is None:
            return None
        if not bcrypt.verify(password, hashed):
            return None
        return user

    def update_status(self, user_id: str, status: Status) -> bool:
        user = self.get(user_id)
        if user is None or user.role != "user":
            return False
        user.status = status
        user.updated_at = datetime.now(UTC).isoformat()
        return True

    def list_all(self) -> List[User]:
        return list(self.users)

    def registration_stats(self) -> RegistrationStats:
        return RegistrationStats.from_users(self.users, capacity=self.capacity)

    def ping(self) -> Tuple[bool, Optional[str]]:
        return True, None


class SupabaseUserRepository:
    """
    Profiles stored in the hosted `users` table.

    ``client`` must be created with the service-role key: registration uses the
    auth admin API and profile reads bypass row-level security.
    """

    table_name = "users"

    def __init__(self, client: Client):
        self.client = client

    def _table(self):
        return self.client.table(self.table_name)

    def _first(self, column: str, value: str) -> Optional[User]:
        try:
            response = self._table().select("*").eq(column, value).limit(1).execute()
        except QUERY_ERRORS as e:
            logger.error(f"Profile lookup by {column} failed: {error_message(e)}")
            raise BackendError(error_message(e)) from e
        rows = response.data or []
        return User.from_row(rows[0]) if rows else None

    def find_by_email(self, email: str) -> Optional[User]:
        return self._first("email", email)

    def get(self, user_id: str) -> Optional[User]:
        return self._first("id", user_id)

    def generate_unique_id(self) -> str:
        """Ask the backend to mint the next human-readable member id."""
        try:
            response = self.client.rpc("generate_unique_user_id").execute()
        except QUERY_ERRORS as e:
            raise BackendError(f"Failed to generate unique ID: {error_message(e)}") from e
        if not response.data:
            raise BackendError("Failed to generate unique ID")
        return response.data

    def _delete_identity(self, auth_user_id: str):
        try:
            self.client.auth.admin.delete_user(auth_user_id)
        except AUTH_ERRORS as e:
            logger.error(f"Could not remove orphaned identity {auth_user_id}: {e}")

    def insert_profile(self, user: User) -> User:
        """Insert a profile row for an identity that already exists upstream."""
        if not user.unique_id:
            user.unique_id = self.generate_unique_id()
        row = {k: v for k, v in user.as_dict().items() if v is not None}
        try:
            response = self._table().insert(row).execute()
        except QUERY_ERRORS as e:
            raise BackendError(f"Failed to create user profile: {error_message(e)}") from e
        rows = response.data or []
        return User.from_row(rows[0]) if rows else user

    def insert(self, user: User, password: str) -> User:
        """
        Create the auth identity and its profile row.

        If anything fails after the identity exists it is deleted again, so a
        failed registration never leaves a login without a profile.
        """
        try:
            auth_response = self.client.auth.admin.create_user({
                "email": user.email,
                "password": password,
                "email_confirm": True,
            })
        except AUTH_ERRORS as e:
            logger.error(f"Identity creation failed for {user.email}: {e}")
            raise BackendError(str(e) or "Failed to create user account") from e
        identity = auth_response.user
        if identity is None:
            raise BackendError("Failed to create user account")

        user.id = identity.id
        try:
            return self.insert_profile(user)
        except BackendError:
            logger.warning(f"Profile creation failed for {user.email}, removing identity {identity.id}")
            self._delete_identity(identity.id)
            raise

    def update_status(self, user_id: str, status: Status) -> bool:
        try:
            response = (
                self._table()
                .update({"status": status, "updated_at": datetime.now(UTC).isoformat()})
                .eq("id", user_id)
                .execute()
            )
        except QUERY_ERRORS as e:
            logger.error(f"Status update for {user_id} failed: {error_message(e)}")
            raise BackendError(error_message(e)) from e
        return bool(response.data)

    def list_all(self) -> List[User]:
        try:
            response = self._table().select("*").order("created_at", desc=True).execute()
        except QUERY_ERRORS as e:
            logger.error(f"Listing profiles failed: {error_message(e)}")
            raise BackendError(error_message(e)) from e
        return [User.from_row(row) for row in response.data or []]

    def registration_stats(self) -> RegistrationStats:
        """Use the backend's aggregate, falling back to counting the listing."""
        try:
            data = self.client.rpc("get_registration_stats").execute().data
            return RegistrationStats(
                total_users=data["totalUsers"],
                active_users=data["activeUsers"],
                pending_users=data["pendingUsers"],
                suspended_users=data["suspendedUsers"],
                available_slots=data["availableSlots"],
                capacity=data.get("capacity", REGISTRATION_CAPACITY),
                is_capacity_full=data.get("isCapacityFull", data["totalUsers"] >= REGISTRATION_CAPACITY),
            )
        except QUERY_ERRORS + (KeyError, TypeError) as e:
            logger.error(f"Error fetching registration stats: {e}")
        return RegistrationStats.from_users(self.list_all())

    def ping(self) -> Tuple[bool, Optional[str]]:
        try:
            self._table().select("id").limit(1).execute()
        except QUERY_ERRORS as e:
            return False, error_message(e)
        return True, None

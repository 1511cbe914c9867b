from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Iterable, Literal, Optional

REGISTRATION_CAPACITY = 1000

Role = Literal["user", "admin"]
Status = Literal["active", "pending", "suspended"]
STATUSES = ("active", "pending", "suspended")

# Columns of the hosted `users` table that map onto User fields
PROFILE_COLUMNS = (
    "id", "unique_id", "email", "name", "role", "batch", "department", "phone",
    "address", "year_of_passing", "registration_date", "status", "created_at", "updated_at",
)


@dataclass
class User:
    id: str
    email: str
    name: str
    role: Role = "user"
    unique_id: Optional[str] = None
    batch: Optional[str] = None
    department: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    year_of_passing: Optional[str] = None
    registration_date: Optional[str] = None
    status: Optional[Status] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @classmethod
    def from_row(cls, row: dict) -> "User":
        """Build a profile from a hosted `users` row, ignoring unknown columns."""
        return cls(**{k: row.get(k) for k in PROFILE_COLUMNS if k in row})

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class RegistrationStats:
    total_users: int
    active_users: int
    pending_users: int
    suspended_users: int
    available_slots: int
    capacity: int = REGISTRATION_CAPACITY
    is_capacity_full: bool = False

    @classmethod
    def from_users(cls, users: Iterable[User], capacity: int = REGISTRATION_CAPACITY) -> "RegistrationStats":
        """Aggregate counts over registrants; admins are not counted."""
        registrants = [u for u in users if u.role == "user"]
        total = len(registrants)
        return cls(
            total_users=total,
            active_users=sum(1 for u in registrants if u.status == "active"),
            pending_users=sum(1 for u in registrants if u.status == "pending"),
            suspended_users=sum(1 for u in registrants if u.status == "suspended"),
            available_slots=capacity - total,
            capacity=capacity,
            is_capacity_full=total >= capacity,
        )

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class Event:
    id: int
    title: str
    description: str
    date: date
    time: str
    location: str
    attendees: int
    max_attendees: int
    category: str
    image: Optional[str] = None
    status: str = "upcoming"
    featured: bool = False

    def display_details(self) -> str:
        """Return a string representation of the event details."""
        return f"Event: {self.title}, Date: {self.date}, Time: {self.time}, Location: {self.location}"

    def as_dict(self) -> dict:
        data = asdict(self)
        data["date"] = self.date.isoformat()
        data["spots_left"] = max(self.max_attendees - self.attendees, 0)
        return data


@dataclass
class StoredPhoto:
    name: str
    path: str
    url: str
    size: int = 0
    created_at: str = ""
    content_type: Optional[str] = field(default=None, repr=False)

    def as_dict(self) -> dict:
        return {
            "name": self.name,
            "path": self.path,
            "url": self.url,
            "size": self.size,
            "created_at": self.created_at,
        }

from datetime import UTC, date, datetime
from typing import List, Optional
import logging

from database import CapacityReachedError, DuplicateEmailError, UserRepository
from models import Event, RegistrationStats, Status, User
from utils import parse_date

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    """Naive timestamps are taken as UTC."""
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


EVENT_DAY = date(2025, 11, 9)

EVENTS = [
    Event(
        id=1,
        title="75th Anniversary Celebration Balya Bhavan",
        description="Join us for a grand celebration of 75 years of excellence and memories.",
        date=EVENT_DAY,
        time="9 AM - 6 PM",
        location="Balya Bhavan",
        attendees=250,
        max_attendees=300,
        image="/images/anniversary-celebration-hall.png",
        featured=True,
        category="celebration",
    ),
    Event(
        id=2,
        title="Alumni Reunion Lunch",
        description="Reconnect with old friends and make new memories over a delicious lunch.",
        date=EVENT_DAY,
        time="12:00 PM - 3:00 PM",
        location="Balya Bhavan",
        attendees=180,
        max_attendees=200,
        image="/images/alumni-reunion-lunch.png",
        category="social",
    ),
    Event(
        id=3,
        title="Cultural Evening",
        description="Experience traditional performances and cultural programs by alumni.",
        date=EVENT_DAY,
        time="5:00 PM - 9:00 PM",
        location="Balya Bhavan",
        attendees=120,
        max_attendees=150,
        image="/images/cultural-performance-stage.png",
        category="cultural",
    ),
    Event(
        id=4,
        title="Networking Mixer",
        description="Connect with fellow alumni across different industries and build professional relationships.",
        date=EVENT_DAY,
        time="7:00 PM - 10:00 PM",
        location="Balya Bhavan",
        attendees=95,
        max_attendees=100,
        image="/images/new-networking-mixer.png",
        category="networking",
    ),
]


class EventManager:
    def __init__(self, events: Optional[List[Event]] = None):
        """Initialize EventManager with the reunion programme."""
        self.events = list(EVENTS if events is None else events)

    def get_event(self, event_id: int) -> Event | None:
        """Retrieve an event by ID."""
        return next((e for e in self.events if e.id == event_id), None)

    def featured_event(self) -> Event | None:
        return next((e for e in self.events if e.featured), None)

    def categories(self) -> list[str]:
        return sorted({e.category for e in self.events})

    def list_events(self, search: str = "", category: str = "all", sort_by: str = "date") -> list[Event]:
        """Filter by search text and category, then sort by date, attendees or title."""
        term = (search or "").strip().lower()
        events = [
            e for e in self.events
            if (not term or term in e.title.lower() or term in e.description.lower())
            and (category == "all" or e.category == category)
        ]
        if sort_by == "attendees":
            return sorted(events, key=lambda e: e.attendees, reverse=True)
        if sort_by == "title":
            return sorted(events, key=lambda e: e.title.lower())
        return sorted(events, key=lambda e: e.date)


class UserDirectory:
    def __init__(self, repository: UserRepository):
        """Initialize UserDirectory over whichever repository was selected at startup."""
        self.repository = repository

    def register(self, user: User, password: str) -> User:
        """Register a new alumnus, enforcing unique email and the capacity limit."""
        stats = self.repository.registration_stats()
        if stats.is_capacity_full:
            logger.warning(f"Registration for {user.email} rejected: capacity of {stats.capacity} reached")
            raise CapacityReachedError(stats.capacity)
        if self.repository.find_by_email(user.email):
            raise DuplicateEmailError(user.email)
        user.role = "user"
        user.status = user.status or "active"
        user.registration_date = user.registration_date or date.today().isoformat()
        created = self.repository.insert(user, password)
        logger.info(f"User {created.email} registered with id {created.unique_id or created.id}")
        return created

    def find_by_email(self, email: str) -> Optional[User]:
        return self.repository.find_by_email(email)

    def get(self, user_id: str) -> Optional[User]:
        return self.repository.get(user_id)

    def update_status(self, user_id: str, status: Status) -> bool:
        updated = self.repository.update_status(user_id, status)
        if updated:
            logger.info(f"User {user_id} status set to {status}")
        return updated

    def list_all(self) -> List[User]:
        return self.repository.list_all()

    def compute_stats(self) -> RegistrationStats:
        """Recompute the registration snapshot; nothing is cached."""
        return self.repository.registration_stats()

    def search(self, term: str = "", status: str = "all") -> List[User]:
        """Filter the listing the way the admin dashboard does: name, email or id, plus status."""
        term = (term or "").lower()
        users = self.list_all()
        if term:
            users = [
                u for u in users
                if term in (u.name or "").lower() or term in (u.email or "").lower() or term in (u.id or "").lower()
            ]
        if status != "all":
            users = [u for u in users if u.status == status]
        return users

    def filter_for_export(self, role: str | None = None, status: str | None = None, batch: str | None = None,
                          department: str | None = None, date_from: str | None = None,
                          date_to: str | None = None) -> List[User]:
        """Apply export filters and order by creation time, oldest first."""
        start = _as_utc(parse_date(date_from)) if date_from else None
        end = _as_utc(parse_date(date_to)) if date_to else None
        users = []
        for u in self.list_all():
            if role and u.role != role:
                continue
            if status and u.status != status:
                continue
            if batch and u.batch != batch:
                continue
            if department and u.department != department:
                continue
            created = u.created_at or u.registration_date
            if (start or end) and not created:
                continue
            if start and _as_utc(parse_date(created)) < start:
                continue
            if end and _as_utc(parse_date(created)) > end:
                continue
            users.append(u)
        return sorted(users, key=lambda u: u.created_at or u.registration_date or "")

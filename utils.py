from datetime import UTC, date, datetime
from fastapi import HTTPException
from io import StringIO
import csv

ADMIN_EXPORT_HEADERS = ["ID", "Name", "Email", "Phone", "Batch", "Department", "Year of Passing", "Status", "Registration Date"]

SERVER_EXPORT_HEADERS = [
    "ID", "Unique ID", "Email", "Name", "Role", "Batch", "Department", "Phone", "Address",
    "Year of Passing", "Registration Date", "Status", "Created At", "Updated At",
]

# The filtered export has never carried the member id
FILTERED_EXPORT_HEADERS = [h for h in SERVER_EXPORT_HEADERS if h != "Unique ID"]


def parse_date(date_str: str) -> datetime:
    """Parse a date string into a datetime object."""
    try:
        return datetime.fromisoformat(date_str)
    except ValueError:
        try:
            return datetime.strptime(date_str, "%Y-%m-%d %H:%M")
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid date format")


def check_admin_permission(current_user):
    """Check if the user may use the admin API."""
    if current_user is None or current_user.role != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")


def _iso(value) -> str:
    return parse_date(value).isoformat() if value else ""


def _row(user, headers, default_status=""):
    values = {
        "ID": user.id,
        "Unique ID": user.unique_id,
        "Email": user.email,
        "Name": user.name,
        "Role": user.role,
        "Batch": user.batch,
        "Department": user.department,
        "Phone": user.phone,
        "Address": user.address,
        "Year of Passing": user.year_of_passing,
        "Registration Date": user.registration_date,
        "Status": user.status or default_status,
        "Created At": _iso(user.created_at),
        "Updated At": _iso(user.updated_at),
    }
    return [values[h] or "" for h in headers]


def generate_csv(users, headers=ADMIN_EXPORT_HEADERS, default_status=""):
    """Generate a CSV buffer from a list of profiles using the given column schema.

    ``default_status`` fills the Status column for profiles that have none;
    the dashboard export shows those as active.
    """
    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(headers)
    for u in users:
        writer.writerow(_row(u, headers, default_status))
    buffer.seek(0)
    return buffer


def admin_export_filename(today: date | None = None) -> str:
    return f"alumni-users-{(today or date.today()).isoformat()}.csv"


def export_timestamp(now: datetime | None = None) -> str:
    """Filesystem-safe timestamp, e.g. 2025-01-15T10-30-00."""
    now = now or datetime.now(UTC)
    return now.strftime("%Y-%m-%dT%H-%M-%S")

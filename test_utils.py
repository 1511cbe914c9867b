from models import User
from utils import ADMIN_EXPORT_HEADERS, FILTERED_EXPORT_HEADERS, generate_csv

ADMIN = User(id="admin-1", email="admin@example.com", name="Admin", role="admin")


def test_missing_status_left_blank_by_default():
    lines = generate_csv([ADMIN], FILTERED_EXPORT_HEADERS).getvalue().splitlines()
    row = dict(zip(FILTERED_EXPORT_HEADERS, lines[1].split(",")))
    assert row["Status"] == ""


def test_default_status_does_not_depend_on_header_list_identity():
    headers = list(ADMIN_EXPORT_HEADERS)
    lines = generate_csv([ADMIN], headers, default_status="active").getvalue().splitlines()
    assert lines[1] == "admin-1,Admin,admin@example.com,,,,,active,"


def test_recorded_status_wins_over_default():
    member = User(id="u1", email="u@example.com", name="U", status="suspended")
    lines = generate_csv([member], ADMIN_EXPORT_HEADERS, default_status="active").getvalue().splitlines()
    assert lines[1].endswith(",suspended,")

import json
from io import BytesIO

import pytest
import requests
from PIL import Image

from timetable_import.core.events import CourseEventBus
from timetable_import.services.api_client import ApiClient
from timetable_import.services.ocr import TimetableImportClient
from timetable_import.services.workflow import ImportWorkflow

LINE_USER = "guest-test-user"


def make_response(status: int = 200, body=None, content_type: str = "application/json") -> requests.Response:
    r = requests.Response()
    r.status_code = status
    if body is None:
        r._content = b""
    elif isinstance(body, (bytes, str)):
        r._content = body.encode() if isinstance(body, str) else body
    else:
        r._content = json.dumps(body).encode()
    if content_type:
        r.headers["Content-Type"] = content_type
    r.encoding = "utf-8"
    return r


class FakeSession:
    """Stands in for requests.Session: replays queued responses and records calls."""

    def __init__(self, *responses):
        self.queue = list(responses)
        self.calls = []

    def push(self, item):
        self.queue.append(item)

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.queue:
            raise AssertionError(f"Unexpected request {method} {url}")
        item = self.queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def scan_payload(items=None, total=None, conflicts=None):
    items = items if items is not None else [math_course(), conflicting_course()]
    return {
        "items": items,
        "total_courses": len(items) if total is None else total,
        "courses_with_conflicts": (
            sum(1 for i in items if i.get("conflicts")) if conflicts is None else conflicts
        ),
    }


def math_course():
    return {
        "title": "Calculus I",
        "instructor": "Dr. Lin",
        "classroom": "A101",
        "schedule": [
            {"day_of_week": 0, "start": "09:10", "end": "10:00"},
            {"day_of_week": 2, "start": "9:10", "end": "10:00"},
        ],
        "conflicts": [],
        "has_conflicts": False,
    }


def conflicting_course():
    return {
        "title": "Physics",
        "instructor": None,
        "classroom": "B202",
        "schedule": [{"day_of_week": 1, "start": "13:10", "end": "15:00"}],
        "conflicts": [
            {
                "day_of_week": 1,
                "start_time": "13:10",
                "end_time": "15:00",
                "conflicting_course": {
                    "id": 7,
                    "title": "Chemistry",
                    "instructor": "Dr. Wu",
                    "classroom": "C303",
                    "start_time": "13:00",
                    "end_time": "14:00",
                },
            }
        ],
        "has_conflicts": True,
    }


@pytest.fixture
def png_bytes():
    buf = BytesIO()
    Image.new("RGB", (8, 8), color=(255, 255, 255)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def api(session):
    return ApiClient(base_url="http://backend.test/api/v2", line_user_id=LINE_USER, timeout=5, session=session)


@pytest.fixture
def client(api):
    return TimetableImportClient(api, ocr_timeout=10)


@pytest.fixture
def events():
    return CourseEventBus()


@pytest.fixture
def workflow(client, events):
    return ImportWorkflow(client, line_user_id=LINE_USER, events=events)

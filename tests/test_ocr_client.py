import pytest
import requests
from PIL import Image

from timetable_import.schemas.timetable import CandidateCourse
from timetable_import.services.api_client import ApiClient, ApiError
from timetable_import.services.ocr import (
    CONFIRM_ENDPOINT,
    SCAN_ENDPOINT,
    ConfirmError,
    ScanError,
    TimetableImportClient,
    UnsupportedImageError,
)

from conftest import LINE_USER, FakeSession, make_response, math_course, scan_payload


# ── ApiClient ─────────────────────────────────────────────────────────────────

def test_request_sends_identity_header(api, session):
    session.push(make_response(200, {"ok": True}))
    assert api.request("GET", "/ping/") == {"ok": True}
    call = session.calls[0]
    assert call["url"] == "http://backend.test/api/v2/ping/"
    assert call["headers"]["X-Line-User-Id"] == LINE_USER
    assert "ngrok-skip-browser-warning" not in call["headers"]
    assert call["timeout"] == 5


def test_ngrok_tunnels_get_skip_warning_header():
    session = FakeSession(make_response(204))
    api = ApiClient(base_url="https://abc.ngrok-free.app/api/v2/", session=session)
    assert api.request("GET", "/ping/") is None
    assert session.calls[0]["headers"]["ngrok-skip-browser-warning"] == "true"
    assert session.calls[0]["url"] == "https://abc.ngrok-free.app/api/v2/ping/"


def test_error_message_comes_from_body(api, session):
    session.push(make_response(400, {"message": "image too large"}))
    with pytest.raises(ApiError) as exc:
        api.request("GET", "/x/")
    assert exc.value.message == "image too large"
    assert exc.value.status_code == 400


def test_error_without_json_falls_back_to_status(api, session):
    session.push(make_response(503, "<html>down</html>", content_type="text/html"))
    with pytest.raises(ApiError) as exc:
        api.request("GET", "/x/")
    assert exc.value.message == "HTTP 503"


def test_transport_failure_becomes_api_error(api, session):
    session.push(requests.ConnectionError("connection refused"))
    with pytest.raises(ApiError, match="connection refused"):
        api.request("GET", "/x/")


def test_non_json_body_is_returned_as_text(api, session):
    session.push(make_response(200, "plain", content_type="text/plain"))
    assert api.request("GET", "/x/") == "plain"


def test_broken_json_is_malformed(api, session):
    session.push(make_response(200, "{not json"))
    with pytest.raises(ApiError, match="Malformed"):
        api.request("GET", "/x/")


# ── scan ──────────────────────────────────────────────────────────────────────

def test_scan_uploads_image_in_preview_mode(client, session, png_bytes):
    session.push(make_response(200, scan_payload()))
    batch = client.scan(png_bytes, filename="week.png")

    assert batch.total_courses == 2
    assert batch.courses_with_conflicts == 1
    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["url"].endswith(SCAN_ENDPOINT)
    assert call["data"] == {"preview": "true"}
    assert set(call["files"]) == {"file", "image"}
    assert call["files"]["file"] == ("week.png", png_bytes, "image/png")
    assert call["timeout"] == 10
    assert "Content-Type" not in call["headers"]


def test_scan_with_no_detected_courses_is_not_an_error(client, session, png_bytes):
    session.push(make_response(200, scan_payload(items=[])))
    batch = client.scan(png_bytes)
    assert batch.is_empty


def test_scan_rejects_non_images_without_calling_backend(client, session):
    with pytest.raises(UnsupportedImageError):
        client.scan(b"%PDF-1.7 not an image")
    assert session.calls == []


def test_scan_rejects_formats_outside_allow_list(api, session, png_bytes):
    jpeg_only = TimetableImportClient(api, allowed_formats=["JPEG"])
    with pytest.raises(UnsupportedImageError, match="PNG"):
        jpeg_only.scan(png_bytes)


def test_scan_rejects_images_over_pixel_limit(client, session, png_bytes, monkeypatch):
    # An 8x8 image is more than twice a 16 pixel limit, which Pillow refuses to open.
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 16)
    with pytest.raises(UnsupportedImageError, match="too large"):
        client.scan(png_bytes)
    assert session.calls == []


@pytest.mark.parametrize(
    "reply",
    [
        requests.Timeout("read timed out"),
        make_response(500, {"message": "OCR engine crashed"}),
        make_response(200, [1, 2, 3]),
        make_response(200, {"items": [{"schedule": [{"day_of_week": 9, "start": "x", "end": "y"}]}]}),
    ],
    ids=["timeout", "http-500", "not-an-object", "invalid-slot"],
)
def test_scan_failures_are_normalized(client, session, png_bytes, reply):
    session.push(reply)
    with pytest.raises(ScanError) as exc:
        client.scan(png_bytes)
    assert exc.value.message.startswith("Timetable scan failed")


# ── confirm ───────────────────────────────────────────────────────────────────

def test_confirm_posts_selected_courses(client, session):
    session.push(make_response(200, {"coursesCreated": 1, "schedulesCreated": 2, "skippedCourses": []}))
    course = CandidateCourse.model_validate(math_course())
    outcome = client.confirm([course])

    assert outcome.courses_created == 1
    call = session.calls[0]
    assert call["url"].endswith(CONFIRM_ENDPOINT)
    assert call["json"] == {"courses": [course.to_confirm_payload()]}
    assert call["headers"]["Content-Type"] == "application/json"


def test_confirm_with_empty_selection_skips_network(client, session):
    outcome = client.confirm([])
    assert outcome.courses_created == 0
    assert outcome.skipped_courses == []
    assert session.calls == []


def test_all_skipped_is_an_outcome_not_an_error(client, session):
    session.push(
        make_response(200, {"coursesCreated": 0, "schedulesCreated": 0, "skippedCourses": [{"reason": "duplicate"}]})
    )
    outcome = client.confirm([CandidateCourse.model_validate(math_course())])
    assert outcome.courses_created == 0
    assert outcome.skip_reasons == ["duplicate"]


def test_confirm_transport_failure_raises(client, session):
    session.push(requests.Timeout("timed out"))
    with pytest.raises(ConfirmError, match="timed out"):
        client.confirm([CandidateCourse.model_validate(math_course())])

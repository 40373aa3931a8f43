import asyncio
import logging

from timetable_import.api.routes import event_stream
from timetable_import.core.events import COURSES_UPDATED, CourseEvent, CourseEventBus
from timetable_import.core.logs import LogFeed, build_log_config


def test_events_are_filtered_by_user():
    bus = CourseEventBus()
    _, mine = bus.subscribe("u1")
    _, everyone = bus.subscribe()
    _, other = bus.subscribe("u2")

    delivered = bus.publish(CourseEvent(type=COURSES_UPDATED, line_user_id="u1", courses_created=2))
    assert delivered == 2
    assert mine.get_nowait().courses_created == 2
    assert everyone.get_nowait().line_user_id == "u1"
    assert other.empty()


def test_full_subscriber_queue_drops_oldest():
    bus = CourseEventBus(max_pending=2)
    _, q = bus.subscribe()
    for n in range(3):
        bus.publish(CourseEvent(type=COURSES_UPDATED, line_user_id="u", courses_created=n))
    assert [q.get_nowait().courses_created for _ in range(2)] == [1, 2]


class FakeRequest:
    """Reports the client as connected for a fixed number of checks."""

    def __init__(self, connected_checks):
        self.connected_checks = connected_checks

    async def is_disconnected(self):
        self.connected_checks -= 1
        return self.connected_checks < 0


async def collect(stream):
    return [chunk async for chunk in stream]


def test_event_stream_formats_sse_and_unsubscribes():
    bus = CourseEventBus()
    token, q = bus.subscribe("u1")
    bus.publish(CourseEvent(type=COURSES_UPDATED, line_user_id="u1", courses_created=1, ts=1.0))

    stream = event_stream(FakeRequest(connected_checks=3), bus, token, q, heartbeat=0.0, poll_interval=0.001)
    chunks = asyncio.run(collect(stream))

    assert chunks[0] == "retry: 3000\n\n"
    assert chunks[1].startswith("event: courses_updated\ndata: ")
    assert '"courses_created": 1' in chunks[1]
    assert all(c.startswith(": heartbeat") for c in chunks[2:])
    assert len(chunks) == 4
    assert bus.subscriber_count() == 0


def test_event_stream_stops_when_client_is_gone():
    bus = CourseEventBus()
    token, q = bus.subscribe("u1")
    chunks = asyncio.run(collect(event_stream(FakeRequest(connected_checks=0), bus, token, q, heartbeat=15.0)))
    assert chunks == ["retry: 3000\n\n"]
    assert bus.subscriber_count() == 0


def test_log_feed_delivers_structured_records():
    feed = LogFeed(capacity=2)
    received = []
    unsubscribe = feed.subscribe(received.append)

    log = logging.getLogger("tests.feed")
    log.addHandler(feed)
    log.setLevel(logging.INFO)
    try:
        log.info("scan %s", "started", extra={"line_user_id": "u1"})
        unsubscribe()
        log.warning("after unsubscribe")
        log.error("third")
    finally:
        log.removeHandler(feed)

    assert len(received) == 1
    assert received[0]["message"] == "scan started"
    assert received[0]["level"] == "INFO"
    assert received[0]["extra"] == {"line_user_id": "u1"}
    assert [r["message"] for r in feed.recent()] == ["after unsubscribe", "third"]
    assert [r["message"] for r in feed.recent(1)] == ["third"]


def test_broken_subscriber_does_not_break_logging(monkeypatch):
    monkeypatch.setattr(logging, "raiseExceptions", False)
    feed = LogFeed()
    good = []
    feed.subscribe(lambda record: (_ for _ in ()).throw(RuntimeError("bad sink")))
    feed.subscribe(good.append)
    feed.handle(logging.LogRecord("x", logging.INFO, __file__, 1, "hello", None, None))
    assert [r["message"] for r in good] == ["hello"]


def test_log_config_adds_file_handler_only_when_asked(tmp_path):
    plain = build_log_config("INFO")
    assert "file" not in plain["handlers"]
    assert plain["root"]["handlers"] == ["default", "feed"]

    with_file = build_log_config("DEBUG", str(tmp_path / "app.log"))
    assert with_file["handlers"]["file"]["filename"].endswith("app.log")
    assert "file" in with_file["root"]["handlers"]
    assert "file" in with_file["loggers"]["uvicorn.access"]["handlers"]

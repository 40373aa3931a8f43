import queue
import threading
import time
from dataclasses import asdict, dataclass, field

COURSES_UPDATED = "courses_updated"


@dataclass
class CourseEvent:
    type: str
    line_user_id: str
    courses_created: int = 0
    schedules_created: int = 0
    ts: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return asdict(self)


class CourseEventBus:
    """Fan-out of course-list invalidation events to subscribed listeners.

    Each subscriber gets its own queue; a full queue drops the oldest event
    so one slow listener never blocks a publisher.
    """

    def __init__(self, max_pending: int = 100) -> None:
        self._max_pending = max_pending
        self._subscribers: dict[int, tuple[str | None, queue.Queue[CourseEvent]]] = {}
        self._lock = threading.Lock()
        self._next_id = 0

    def subscribe(self, line_user_id: str | None = None) -> tuple[int, "queue.Queue[CourseEvent]"]:
        """Register a listener; `line_user_id=None` receives every user's events."""
        q: queue.Queue[CourseEvent] = queue.Queue(maxsize=self._max_pending)
        with self._lock:
            self._next_id += 1
            token = self._next_id
            self._subscribers[token] = (line_user_id, q)
        return token, q

    def unsubscribe(self, token: int) -> None:
        with self._lock:
            self._subscribers.pop(token, None)

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: CourseEvent) -> int:
        """Deliver `event` to matching subscribers; returns how many received it."""
        with self._lock:
            targets = [
                q for user, q in self._subscribers.values()
                if user is None or user == event.line_user_id
            ]
        for q in targets:
            while True:
                try:
                    q.put_nowait(event)
                    break
                except queue.Full:
                    try:
                        q.get_nowait()
                    except queue.Empty:
                        pass
        return len(targets)


course_events = CourseEventBus()

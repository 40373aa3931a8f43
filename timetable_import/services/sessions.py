import logging
import threading
import time
from typing import Callable

from timetable_import.core.config import settings
from timetable_import.core.events import CourseEventBus, course_events
from timetable_import.services.api_client import ApiClient
from timetable_import.services.ocr import TimetableImportClient
from timetable_import.services.workflow import ImportWorkflow

logger = logging.getLogger(__name__)


def default_workflow_factory(line_user_id: str, events: CourseEventBus) -> ImportWorkflow:
    client = TimetableImportClient(ApiClient(line_user_id=line_user_id))
    return ImportWorkflow(client, line_user_id=line_user_id, events=events)


class WorkflowRegistry:
    """In-memory import workflows, one per LINE user."""

    def __init__(
        self,
        factory: Callable[[str, CourseEventBus], ImportWorkflow] = default_workflow_factory,
        events: CourseEventBus | None = None,
        ttl_seconds: float | None = None,
    ):
        self.factory = factory
        self.events = events or course_events
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.session_ttl_seconds
        self._workflows: dict[str, ImportWorkflow] = {}
        self._lock = threading.Lock()

    def get(self, line_user_id: str) -> ImportWorkflow:
        with self._lock:
            self._purge_idle()
            workflow = self._workflows.get(line_user_id)
            if workflow is None:
                workflow = self.factory(line_user_id, self.events)
                self._workflows[line_user_id] = workflow
                logger.debug("Created import workflow for %s", line_user_id)
            workflow.touch()
            return workflow

    def peek(self, line_user_id: str) -> ImportWorkflow | None:
        with self._lock:
            return self._workflows.get(line_user_id)

    def discard(self, line_user_id: str) -> None:
        with self._lock:
            workflow = self._workflows.pop(line_user_id, None)
        if workflow is not None:
            workflow.cancel()

    def __len__(self) -> int:
        with self._lock:
            return len(self._workflows)

    def _purge_idle(self) -> None:
        # Caller holds the lock. Workflows running a step are never dropped.
        now = time.monotonic()
        expired = [
            user for user, wf in self._workflows.items()
            if not wf.busy and now - wf.last_active > self.ttl_seconds
        ]
        for user in expired:
            del self._workflows[user]
        if expired:
            logger.debug("Purged %d idle import workflow(s)", len(expired))


registry = WorkflowRegistry()

import logging
import threading
import time
from contextlib import contextmanager
from enum import Enum
from typing import Callable, Iterator

from timetable_import.core.events import COURSES_UPDATED, CourseEvent, CourseEventBus
from timetable_import.schemas.timetable import CandidateCourse, ImportOutcome
from timetable_import.services import reconcile
from timetable_import.services.ocr import ConfirmError, ScanError, TimetableImportClient
from timetable_import.services.preview import PreviewSelection
from timetable_import.services.reconcile import Notice

logger = logging.getLogger(__name__)


class WorkflowState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    PREVIEW = "preview"
    CONFIRMING = "confirming"


class WorkflowError(Exception):
    pass


class WorkflowBusy(WorkflowError):
    pass


class NoActivePreview(WorkflowError):
    pass


class WorkflowCancelled(WorkflowError):
    """The operation's result arrived after a cancel or a newer operation and was dropped."""


class NoticePending(WorkflowError):
    """A failure notice is still waiting for the user to acknowledge it."""


class ImportWorkflow:
    """Scan -> preview -> confirm workflow for one user.

    Only one scan or confirm runs at a time; a second call while one is in
    flight raises WorkflowBusy, and neither starts while a failure notice
    is unacknowledged (NoticePending). Selection changes are refused while
    a step runs, so confirm submits exactly what the user saw. Every start and every cancel bumps
    `generation`, and a response whose generation is no longer current is
    discarded instead of overwriting newer state.
    """

    def __init__(
        self,
        client: TimetableImportClient,
        line_user_id: str,
        events: CourseEventBus | None = None,
        on_courses_changed: Callable[[], None] | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self.client = client
        self.line_user_id = line_user_id
        self.events = events
        self.on_courses_changed = on_courses_changed
        self.log = logger or logging.LoggerAdapter(
            logging.getLogger(__name__), {"line_user_id": line_user_id}
        )

        self._lock = threading.Lock()
        self._state = WorkflowState.IDLE
        self._selection: PreviewSelection | None = None
        self._notice: Notice | None = None
        self._generation = 0
        self.last_active = time.monotonic()

    @property
    def state(self) -> WorkflowState:
        return self._state

    @property
    def selection(self) -> PreviewSelection | None:
        return self._selection

    @property
    def notice(self) -> Notice | None:
        return self._notice

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def busy(self) -> bool:
        return self._state in (WorkflowState.SCANNING, WorkflowState.CONFIRMING)

    @property
    def awaiting_acknowledgment(self) -> bool:
        return self._notice is not None and self._notice.level == "error"

    @property
    def trigger_enabled(self) -> bool:
        return not self.busy and not self.awaiting_acknowledgment

    def touch(self) -> None:
        self.last_active = time.monotonic()

    def _begin(self, allowed: tuple[WorkflowState, ...], next_state: WorkflowState) -> int:
        with self._lock:
            if self.busy:
                raise WorkflowBusy(f"An import step is already running ({self._state.value})")
            if self.awaiting_acknowledgment:
                raise NoticePending(f"Acknowledge the previous error first: {self._notice.message}")
            if self._state not in allowed:
                raise NoActivePreview("No timetable preview to confirm; scan an image first")
            self._generation += 1
            self._state = next_state
            self._notice = None
            if next_state is WorkflowState.SCANNING:
                self._selection = None
            self.touch()
            return self._generation

    def _check_current(self, generation: int, what: str) -> None:
        # Caller holds the lock.
        if generation != self._generation:
            self.log.warning("Discarding stale %s result (generation %d, current %d)", what, generation, self._generation)
            raise WorkflowCancelled(f"The {what} was cancelled before it finished")

    def scan(self, image: bytes, filename: str | None = None) -> PreviewSelection | None:
        """Run OCR on `image`.

        Returns the new selection, or None when no courses were detected
        (no batch is kept and the workflow is back to IDLE). Raises
        ScanError on failure, also leaving the workflow IDLE.
        """
        generation = self._begin((WorkflowState.IDLE, WorkflowState.PREVIEW), WorkflowState.SCANNING)
        try:
            batch = self.client.scan(image, filename=filename)
        except ScanError as e:
            with self._lock:
                self._check_current(generation, "scan")
                self._state = WorkflowState.IDLE
                self._notice = reconcile.scan_failed(e.message)
            raise

        with self._lock:
            self._check_current(generation, "scan")
            self.touch()
            if batch.is_empty:
                self.log.info("No courses detected in uploaded timetable")
                self._state = WorkflowState.IDLE
                self._notice = reconcile.no_courses_detected()
                return None
            self._selection = PreviewSelection(batch)
            self._state = WorkflowState.PREVIEW
            return self._selection

    def confirm(self) -> ImportOutcome:
        """Submit the current selection.

        Any reported outcome (including "everything skipped") tears the
        preview down. A ConfirmError leaves the preview and selection as
        they were so the user can retry without scanning again.
        """
        generation = self._begin((WorkflowState.PREVIEW,), WorkflowState.CONFIRMING)
        with self._lock:
            if self._selection is None:
                self._state = WorkflowState.IDLE
                raise NoActivePreview("No timetable preview to confirm; scan an image first")
            selected = self._selection.selected_items()

        try:
            outcome = self.client.confirm(selected)
        except ConfirmError as e:
            with self._lock:
                self._check_current(generation, "import")
                self._state = WorkflowState.PREVIEW
                self._notice = reconcile.confirm_failed(e.message)
            raise

        with self._lock:
            stale = generation != self._generation
            if not stale:
                self._selection = None
                self._state = WorkflowState.IDLE
                self._notice = reconcile.reconcile(outcome)
                self.touch()

        # The backend has already written whatever it reported, stale or not.
        if outcome.changed_data:
            self._announce_courses_changed(outcome)
        if stale:
            with self._lock:
                self._check_current(generation, "import")
        return outcome

    def cancel(self) -> None:
        """Drop any preview and abandon in-flight work."""
        with self._lock:
            self._generation += 1
            if self._state is not WorkflowState.IDLE or self._selection is not None:
                self.log.info("Import workflow cancelled from %s", self._state.value)
            self._state = WorkflowState.IDLE
            self._selection = None
            self._notice = None
            self.touch()

    def acknowledge(self) -> None:
        with self._lock:
            self._notice = None

    @contextmanager
    def editing(self) -> Iterator[PreviewSelection]:
        """Yield the current selection with the workflow locked.

        Raises WorkflowBusy while a scan or confirm runs and NoActivePreview
        when there is nothing to edit.
        """
        with self._lock:
            if self.busy:
                raise WorkflowBusy(f"An import step is already running ({self._state.value})")
            if self._selection is None:
                raise NoActivePreview("No timetable preview; scan an image first")
            self.touch()
            yield self._selection

    def toggle_select(self, index: int) -> None:
        with self.editing() as selection:
            selection.toggle_select(index)

    def toggle_all_available(self) -> None:
        with self.editing() as selection:
            selection.toggle_all_available()

    def edit_course(self, index: int, **changes) -> CandidateCourse:
        with self.editing() as selection:
            return selection.edit_course(index, **changes)

    def edit_slot(self, index: int, slot_index: int, **changes) -> CandidateCourse:
        with self.editing() as selection:
            return selection.edit_slot(index, slot_index, **changes)

    def _announce_courses_changed(self, outcome: ImportOutcome) -> None:
        if self.on_courses_changed is not None:
            try:
                self.on_courses_changed()
            except Exception:
                self.log.exception("Course list refresh callback failed")
            return
        if self.events is not None:
            delivered = self.events.publish(
                CourseEvent(
                    type=COURSES_UPDATED,
                    line_user_id=self.line_user_id,
                    courses_created=outcome.courses_created,
                    schedules_created=outcome.schedules_created,
                )
            )
            self.log.debug("courses_updated delivered to %d listener(s)", delivered)

from dataclasses import asdict, dataclass
from enum import Enum

from timetable_import.schemas.timetable import ImportOutcome

NO_COURSES_DETECTED = (
    "No courses detected in the image. Make sure the timetable is clear and try again."
)


class NoticeKind(str, Enum):
    IMPORTED = "imported"
    NOTHING_IMPORTED = "nothing_imported"
    NO_COURSES_DETECTED = "no_courses_detected"
    SCAN_FAILED = "scan_failed"
    CONFIRM_FAILED = "confirm_failed"


@dataclass(frozen=True)
class Notice:
    """Blocking message for the user; `level` separates business outcomes from failures."""

    kind: NoticeKind
    message: str

    @property
    def level(self) -> str:
        if self.kind in (NoticeKind.SCAN_FAILED, NoticeKind.CONFIRM_FAILED):
            return "error"
        return "info"

    def to_dict(self) -> dict:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["level"] = self.level
        return data


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def describe_outcome(outcome: ImportOutcome) -> str:
    """e.g. "1 course created, 3 schedules, 1 skipped (time-slot conflict)"."""
    if outcome.courses_created == 0:
        parts = ["No courses were created"]
        if outcome.schedules_created:
            parts.append(_plural(outcome.schedules_created, "schedule"))
    else:
        parts = [
            f"{_plural(outcome.courses_created, 'course')} created",
            _plural(outcome.schedules_created, "schedule"),
        ]
    if outcome.skipped_courses:
        reasons = ", ".join(r for r in outcome.skip_reasons if r) or "no reason given"
        parts.append(f"{len(outcome.skipped_courses)} skipped ({reasons})")
    return ", ".join(parts)


def reconcile(outcome: ImportOutcome) -> Notice:
    kind = NoticeKind.IMPORTED if outcome.courses_created > 0 else NoticeKind.NOTHING_IMPORTED
    return Notice(kind=kind, message=describe_outcome(outcome))


def no_courses_detected() -> Notice:
    return Notice(kind=NoticeKind.NO_COURSES_DETECTED, message=NO_COURSES_DETECTED)


def scan_failed(message: str) -> Notice:
    return Notice(kind=NoticeKind.SCAN_FAILED, message=message)


def confirm_failed(message: str) -> Notice:
    return Notice(kind=NoticeKind.CONFIRM_FAILED, message=message)

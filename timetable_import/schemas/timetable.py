import logging
import re

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def normalize_clock(value: str) -> str:
    """Accept "8:05" or "08:05" and return "08:05"."""
    match = _TIME_RE.match(value.strip()) if isinstance(value, str) else None
    if match is None:
        raise ValueError(f"Expected HH:MM, got {value!r}")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"Time out of range: {value!r}")
    return f"{hour:02d}:{minute:02d}"


class TimeSlot(BaseModel):
    day_of_week: int = Field(..., ge=0, le=6)  # 0 = Monday
    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def _clock(cls, value: str) -> str:
        return normalize_clock(value)


class ConflictingCourse(BaseModel):
    id: int | str | None = None
    title: str = ""
    instructor: str = ""
    classroom: str = ""
    start_time: str = ""
    end_time: str = ""

    @field_validator("title", "instructor", "classroom", "start_time", "end_time", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value


class Conflict(BaseModel):
    day_of_week: int = Field(..., ge=0, le=6)
    start_time: str
    end_time: str
    conflicting_course: ConflictingCourse = Field(default_factory=ConflictingCourse)


class CandidateCourse(BaseModel):
    """A course proposed by OCR inference, not yet persisted."""

    title: str = ""
    instructor: str = ""
    classroom: str = ""
    schedule: list[TimeSlot] = []
    conflicts: list[Conflict] = []
    has_conflicts: bool = False

    @field_validator("title", "instructor", "classroom", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value

    @field_validator("schedule", "conflicts", mode="before")
    @classmethod
    def _none_to_list(cls, value):
        return [] if value is None else value

    @model_validator(mode="after")
    def _mirror_conflicts(self):
        # Listed conflicts always set the flag; an empty list never clears a supplied flag.
        if self.conflicts:
            self.has_conflicts = True
        elif "has_conflicts" not in self.model_fields_set:
            self.has_conflicts = False
        return self

    def to_confirm_payload(self) -> dict:
        return self.model_dump(include={"title", "instructor", "classroom", "schedule"})


class PreviewBatch(BaseModel):
    """Candidates awaiting user selection; counters always match `items`."""

    items: list[CandidateCourse] = []
    total_courses: int = 0
    courses_with_conflicts: int = 0

    @field_validator("items", mode="before")
    @classmethod
    def _none_to_list(cls, value):
        return [] if value is None else value

    @model_validator(mode="after")
    def _recompute_counters(self):
        total = len(self.items)
        conflicted = sum(1 for item in self.items if item.has_conflicts)
        reported = {"total_courses", "courses_with_conflicts"} & self.model_fields_set
        if reported and (self.total_courses, self.courses_with_conflicts) != (total, conflicted):
            logger.warning(
                "OCR summary counters disagree with items (reported total=%s conflicts=%s, "
                "actual total=%s conflicts=%s); using actual",
                self.total_courses, self.courses_with_conflicts, total, conflicted,
            )
        self.total_courses = total
        self.courses_with_conflicts = conflicted
        return self

    @property
    def is_empty(self) -> bool:
        return not self.items


class SkippedCourse(BaseModel):
    reason: str = ""

    model_config = ConfigDict(extra="allow")

    @field_validator("reason", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else str(value)


class ImportOutcome(BaseModel):
    """Backend report for one confirm call."""

    courses_created: int = Field(0, ge=0, alias="coursesCreated")
    schedules_created: int = Field(0, ge=0, alias="schedulesCreated")
    skipped_courses: list[SkippedCourse] = Field(default_factory=list, alias="skippedCourses")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("courses_created", "schedules_created", mode="before")
    @classmethod
    def _none_to_zero(cls, value):
        return 0 if value is None else value

    @field_validator("skipped_courses", mode="before")
    @classmethod
    def _none_to_list(cls, value):
        return [] if value is None else value

    @property
    def changed_data(self) -> bool:
        return self.courses_created > 0 or self.schedules_created > 0

    @property
    def skip_reasons(self) -> list[str]:
        return [s.reason for s in self.skipped_courses]

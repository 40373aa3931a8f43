from pydantic import BaseModel, Field

from timetable_import.schemas.timetable import CandidateCourse, ImportOutcome


class NoticeOut(BaseModel):
    kind: str
    level: str  # info | error
    message: str


class PreviewItemOut(CandidateCourse):
    index: int
    selected: bool


class PreviewOut(BaseModel):
    items: list[PreviewItemOut]
    total_courses: int
    courses_with_conflicts: int
    selected_count: int
    available_count: int


class ImportStateResponse(BaseModel):
    """Current workflow state for the front end to render."""

    state: str  # idle | scanning | preview | confirming
    generation: int
    trigger_enabled: bool  # false while a step runs or an error notice awaits acknowledgment
    preview: PreviewOut | None = None
    notice: NoticeOut | None = None


class ImportConfirmResponse(ImportStateResponse):
    outcome: ImportOutcome


class CourseEditRequest(BaseModel):
    """All fields optional; only provided fields are written."""

    title: str | None = None
    instructor: str | None = None
    classroom: str | None = None


class TimeSlotEditRequest(BaseModel):
    day_of_week: int | None = Field(None, ge=0, le=6)
    start: str | None = None
    end: str | None = None

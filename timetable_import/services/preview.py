from timetable_import.schemas.timetable import CandidateCourse, PreviewBatch, TimeSlot


class PreviewSelection:
    """User selection (and edits) over one preview batch.

    Candidates without conflicts start selected. Conflicting candidates can
    still be selected: the backend decides conflicts at confirm time.
    """

    def __init__(self, batch: PreviewBatch):
        self.batch = batch
        # Edits go to copies so the batch keeps what OCR returned.
        self._items: list[CandidateCourse] = [item.model_copy(deep=True) for item in batch.items]
        self._selected: set[int] = {i for i, item in enumerate(self._items) if not item.has_conflicts}

    def __len__(self) -> int:
        return len(self._items)

    @property
    def items(self) -> list[CandidateCourse]:
        return list(self._items)

    def _in_range(self, index: int) -> bool:
        return 0 <= index < len(self._items)

    def toggle_select(self, index: int) -> None:
        # Stale UI state can point past the end; ignore it.
        if not self._in_range(index):
            return
        if index in self._selected:
            self._selected.discard(index)
        else:
            self._selected.add(index)

    def set_selected(self, index: int, selected: bool) -> None:
        if not self._in_range(index):
            return
        if selected:
            self._selected.add(index)
        else:
            self._selected.discard(index)

    def is_selected(self, index: int) -> bool:
        return index in self._selected

    def toggle_all_available(self) -> None:
        available = self.available_indices()
        if available and self._selected == available:
            self._selected = set()
        else:
            self._selected = set(available)

    def selected_indices(self) -> list[int]:
        return sorted(self._selected)

    def selected_items(self) -> list[CandidateCourse]:
        return [self._items[i] for i in self.selected_indices()]

    def available_indices(self) -> set[int]:
        return {i for i, item in enumerate(self._items) if not item.has_conflicts}

    @property
    def selected_count(self) -> int:
        return len(self._selected)

    @property
    def conflict_count(self) -> int:
        return sum(1 for item in self._items if item.has_conflicts)

    @property
    def available_count(self) -> int:
        return len(self._items) - self.conflict_count

    def edit_course(
        self,
        index: int,
        title: str | None = None,
        instructor: str | None = None,
        classroom: str | None = None,
    ) -> CandidateCourse:
        if not self._in_range(index):
            raise IndexError(f"No candidate course at index {index}")
        changes = {
            k: v for k, v in {"title": title, "instructor": instructor, "classroom": classroom}.items()
            if v is not None
        }
        self._items[index] = self._items[index].model_copy(update=changes)
        return self._items[index]

    def edit_slot(
        self,
        index: int,
        slot_index: int,
        day_of_week: int | None = None,
        start: str | None = None,
        end: str | None = None,
    ) -> CandidateCourse:
        if not self._in_range(index):
            raise IndexError(f"No candidate course at index {index}")
        course = self._items[index]
        if not 0 <= slot_index < len(course.schedule):
            raise IndexError(f"Course {index} has no time slot at index {slot_index}")

        current = course.schedule[slot_index]
        # Re-validate so edits obey the same rules as OCR output.
        slot = TimeSlot(
            day_of_week=current.day_of_week if day_of_week is None else day_of_week,
            start=current.start if start is None else start,
            end=current.end if end is None else end,
        )
        schedule = list(course.schedule)
        schedule[slot_index] = slot
        self._items[index] = course.model_copy(update={"schedule": schedule})
        return self._items[index]

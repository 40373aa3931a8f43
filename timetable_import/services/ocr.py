import logging
from typing import Iterable, Sequence

from PIL import Image
from pydantic import ValidationError

from timetable_import.core.config import settings
from timetable_import.schemas.timetable import CandidateCourse, ImportOutcome, PreviewBatch
from timetable_import.services.api_client import ApiClient, ApiError
from timetable_import.services.image import detect_image_format, guess_content_type

SCAN_ENDPOINT = "/files/import-timetable-image/"
CONFIRM_ENDPOINT = "/files/confirm-timetable-import/"


class ScanError(Exception):
    """OCR scan failed; nothing was previewed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class UnsupportedImageError(ScanError):
    pass


class ConfirmError(Exception):
    """Confirm request did not complete; the backend outcome is unknown."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TimetableImportClient:
    """OCR scan and import confirmation against the course backend."""

    def __init__(
        self,
        api: ApiClient,
        ocr_timeout: float | None = None,
        allowed_formats: Iterable[str] | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self.api = api
        self.ocr_timeout = ocr_timeout if ocr_timeout is not None else settings.ocr_timeout
        self.allowed_formats = {f.upper() for f in (allowed_formats or settings.allowed_image_formats)}
        self.log = logger or logging.getLogger(__name__)

    def scan(self, image: bytes, filename: str | None = None) -> PreviewBatch:
        """Send a timetable image for OCR and return the preview batch.

        An empty batch is a valid result (no courses detected). Transport
        failures, non-2xx responses and malformed bodies raise ScanError.
        """
        try:
            fmt = detect_image_format(image)
        except Image.DecompressionBombError as e:
            self.log.warning("Rejected timetable image: %s", e)
            raise UnsupportedImageError(
                "Image dimensions are too large to scan; upload a smaller screenshot."
            ) from e
        if fmt is None or fmt.upper() not in self.allowed_formats:
            raise UnsupportedImageError(
                f"Unsupported image type{f' ({fmt})' if fmt else ''}; upload a "
                f"{', '.join(sorted(self.allowed_formats))} image."
            )

        name = filename or f"timetable.{fmt.lower()}"
        content_type = guess_content_type(fmt)
        # The backend has accepted the upload under either field name over time.
        files = {
            "file": (name, image, content_type),
            "image": (name, image, content_type),
        }
        self.log.info("Scanning timetable image %s (%s, %d bytes)", name, fmt, len(image))
        try:
            body = self.api.request(
                "POST", SCAN_ENDPOINT, data={"preview": "true"}, files=files, timeout=self.ocr_timeout
            )
        except ApiError as e:
            self.log.error("Timetable scan failed: %s", e.message)
            raise ScanError(f"Timetable scan failed: {e.message}", status_code=e.status_code) from e

        if not isinstance(body, dict):
            self.log.error("Timetable scan returned a non-object body: %r", type(body).__name__)
            raise ScanError("Timetable scan failed: malformed response from OCR service")
        try:
            batch = PreviewBatch.model_validate(body)
        except ValidationError as e:
            self.log.error("Timetable scan returned an invalid payload: %s", e)
            raise ScanError("Timetable scan failed: malformed response from OCR service") from e

        self.log.info(
            "OCR detected %d course(s), %d with conflicts", batch.total_courses, batch.courses_with_conflicts
        )
        return batch

    def confirm(self, selected: Sequence[CandidateCourse]) -> ImportOutcome:
        """Submit the selected candidates for persistence.

        Not idempotent on the backend side: callers must not retry on their own.
        An empty selection returns an empty outcome without a network call.
        """
        if not selected:
            self.log.info("Confirm called with no selected courses; nothing to import")
            return ImportOutcome()

        payload = {"courses": [c.to_confirm_payload() for c in selected]}
        self.log.info("Confirming import of %d course(s)", len(selected))
        try:
            body = self.api.request("POST", CONFIRM_ENDPOINT, json=payload)
        except ApiError as e:
            self.log.error("Import confirmation failed: %s", e.message)
            raise ConfirmError(f"Course import failed: {e.message}", status_code=e.status_code) from e

        if body is None:
            body = {}
        if not isinstance(body, dict):
            raise ConfirmError("Course import failed: malformed response from backend")
        try:
            outcome = ImportOutcome.model_validate(body)
        except ValidationError as e:
            self.log.error("Import confirmation returned an invalid payload: %s", e)
            raise ConfirmError("Course import failed: malformed response from backend") from e

        self.log.info(
            "Import outcome: %d course(s), %d schedule(s) created, %d skipped",
            outcome.courses_created, outcome.schedules_created, len(outcome.skipped_courses),
        )
        return outcome

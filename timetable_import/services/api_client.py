import logging
from typing import Any

import requests

from timetable_import.core.config import settings

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """A backend call that did not complete with a usable response."""

    def __init__(self, message: str, status_code: int | None = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


class ApiClient:
    # Thin wrapper over the course backend: identity header, error normalization, JSON decoding.
    def __init__(
        self,
        base_url: str | None = None,
        line_user_id: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ):
        self.base = (base_url or settings.api_base_url).rstrip("/")
        self.line_user_id = line_user_id or settings.default_line_user_id
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self.session = session or requests.Session()

    def _headers(self, json_body: bool) -> dict[str, str]:
        headers = {
            "X-Line-User-Id": self.line_user_id,
            "Accept": "application/json",
        }
        if json_body:
            headers["Content-Type"] = "application/json"
        if "ngrok-free.app" in self.base:
            headers["ngrok-skip-browser-warning"] = "true"
        return headers

    def request(
        self,
        method: str,
        endpoint: str,
        *,
        json: Any = None,
        data: dict | None = None,
        files: dict | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Send a request and return the decoded body (None for 204/empty).

        Raises ApiError for transport failures, non-2xx statuses and
        bodies that claim JSON but do not decode.
        """
        url = f"{self.base}{endpoint}"
        logger.debug("%s %s", method, url)
        try:
            r = self.session.request(
                method,
                url,
                json=json,
                data=data,
                files=files,
                headers=self._headers(json_body=files is None and json is not None),
                timeout=timeout if timeout is not None else self.timeout,
            )
        except requests.RequestException as e:
            raise ApiError(str(e) or e.__class__.__name__) from e

        if not r.ok:
            raise ApiError(_error_message(r), status_code=r.status_code, details=_error_details(r))

        if r.status_code == 204 or not r.content:
            return None
        content_type = r.headers.get("Content-Type", "")
        if "application/json" not in content_type:
            return r.text
        try:
            return r.json()
        except ValueError as e:
            raise ApiError("Malformed response body", status_code=r.status_code, details=r.text) from e


def _error_details(r: requests.Response) -> Any:
    try:
        return r.json()
    except ValueError:
        return r.text


def _error_message(r: requests.Response) -> str:
    body = _error_details(r)
    if isinstance(body, dict):
        for key in ("message", "detail", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return f"HTTP {r.status_code}"

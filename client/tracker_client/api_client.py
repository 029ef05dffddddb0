"""HTTP client for the time tracker API."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Optional
from urllib.parse import urljoin

import requests

from .models import ActiveTimer, TimeEntry

logger = logging.getLogger(__name__)


class ApiError(RuntimeError):
    """Raised when a request to the API fails."""

    def __init__(self, message: str, *, status_code: Optional[int] = None,
                 response: Optional[requests.Response] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class ApiClient:
    """Wraps the HTTP calls of the time tracker API."""

    def __init__(self, base_url: str, timeout: int = 15) -> None:
        self.base_url = base_url.rstrip("/") + "/"
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _request(self, method: str, path: str, **kwargs):
        url = urljoin(self.base_url, path.lstrip("/"))
        kwargs.setdefault("timeout", self.timeout)
        headers = kwargs.setdefault("headers", {})
        headers.setdefault("Accept", "application/json")
        logger.debug("%s %s", method, url)
        try:
            response = requests.request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise ApiError(str(exc)) from exc

        if response.status_code >= 400:
            raise ApiError(self._error_message(response), status_code=response.status_code, response=response)

        if response.headers.get("Content-Type", "").startswith("application/json"):
            return response.json()
        return response.content

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return f"API error {response.status_code}: {response.text}"
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return f"API error {response.status_code}: {response.text}"

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------
    def get_active_timer(self) -> Optional[ActiveTimer]:
        data = self._request("GET", "/time-entries/active")
        if not data:
            return None
        return ActiveTimer(
            entry_id=int(data["timeEntryId"]),
            task_id=int(data["taskId"]),
            started_at=self._parse_datetime(data["startTime"]),
            task_name=data.get("taskName"),
            project_name=data.get("projectName"),
            client_name=data.get("clientName"),
        )

    def start_timer(self, task_id: int) -> dict[str, Any]:
        return self._request("POST", "/time-entries/start", json={"taskId": task_id})

    def stop_timer(self, entry_id: int) -> dict[str, Any]:
        return self._request("POST", f"/time-entries/{entry_id}/stop")

    # ------------------------------------------------------------------
    # Time entries
    # ------------------------------------------------------------------
    def list_time_entries(self, *, day: Optional[date] = None, start_date: Optional[date] = None,
                          end_date: Optional[date] = None, task_id: Optional[int] = None) -> list[TimeEntry]:
        params: dict[str, Any] = {}
        if day is not None:
            params["date"] = day.isoformat()
        if start_date is not None:
            params["startDate"] = start_date.isoformat()
        if end_date is not None:
            params["endDate"] = end_date.isoformat()
        if task_id is not None:
            params["taskId"] = task_id
        data = self._request("GET", "/time-entries", params=params) or []
        return [self._entry_from_json(item) for item in data]

    def create_time_entry(self, task_id: int, start_time: datetime, *, end_time: Optional[datetime] = None,
                          duration: Optional[int] = None) -> TimeEntry:
        payload: dict[str, Any] = {"taskId": task_id, "startTime": self._format_datetime(start_time)}
        if end_time is not None:
            payload["endTime"] = self._format_datetime(end_time)
        if duration is not None:
            payload["duration"] = duration
        return self._entry_from_json(self._request("POST", "/time-entries", json=payload))

    def update_time_entry(self, entry: TimeEntry) -> TimeEntry:
        if entry.end_time is None:
            raise ApiError("Running entries cannot be updated")
        payload = {
            "startTime": self._format_datetime(entry.start_time),
            "endTime": self._format_datetime(entry.end_time),
            "duration": entry.duration,
        }
        return self._entry_from_json(self._request("PUT", f"/time-entries/{entry.entry_id}", json=payload))

    def delete_time_entry(self, entry_id: int) -> None:
        self._request("DELETE", f"/time-entries/{entry_id}")

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------
    @classmethod
    def _entry_from_json(cls, item: dict[str, Any]) -> TimeEntry:
        return TimeEntry(
            entry_id=int(item["timeEntryId"]),
            task_id=int(item["taskId"]),
            start_time=cls._parse_datetime(item["startTime"]),
            end_time=cls._parse_datetime(item.get("endTime")),
            duration=item.get("duration"),
            task_name=item.get("taskName"),
            project_name=item.get("projectName"),
            project_color=item.get("projectColor"),
            project_icon_type=item.get("projectIconType"),
            project_icon_value=item.get("projectIconValue"),
        )

    @staticmethod
    def _format_datetime(value: datetime) -> str:
        if value.tzinfo is None:
            raise ValueError("timestamps sent to the API must be timezone-aware")
        return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

    @staticmethod
    def _parse_datetime(value: Optional[str]):
        if not value:
            return None
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed


__all__ = ["ApiClient", "ApiError"]

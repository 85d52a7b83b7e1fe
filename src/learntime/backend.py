"""Persistence backends for Daily Minute Records.

A backend needs a caller identity. Without one every call raises
``NotAuthenticatedError`` and the tracker falls back to local-only
accumulation.
"""

from __future__ import annotations

import datetime as dt
import logging
import sqlite3
from contextlib import contextmanager
from typing import Any, Iterator, Protocol

import requests
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from learntime.db import DailyMinutes, MinuteStore
from learntime.signals import Signal

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Base exception for persistence failures."""

    pass


class NotAuthenticatedError(BackendError):
    """Raised when there is no credential or the remote rejected it."""

    def __init__(self, message: str = "Not logged in") -> None:
        super().__init__(message)


class BackendUnavailableError(BackendError):
    """Raised on transport failures, timeouts, and server errors."""

    pass


class MinuteBackend(Protocol):
    """Remote store of Daily Minute Records for the current caller."""

    credential_changed: Signal

    @property
    def authenticated(self) -> bool: ...

    def set_credential(self, credential: str | None) -> None: ...

    def increment_minutes(self, day: dt.date, minutes: int) -> int:
        """Additively record minutes and return the day's new total."""
        ...

    def get_minutes_for_range(self, start: dt.date, end: dt.date) -> list[DailyMinutes]: ...

    def get_minutes_for_date(self, day: dt.date) -> int: ...


class StoreBackend:
    """Backend over a local ``MinuteStore``; the credential is a user id.

    SQLite errors (a locked database shared with another writer, a missing
    file) surface as ``BackendUnavailableError`` so callers buffer and retry.
    """

    def __init__(self, store: MinuteStore, user_id: str | None = None) -> None:
        self._store = store
        self._user_id = user_id
        self.credential_changed = Signal("credential_changed")

    @property
    def authenticated(self) -> bool:
        return bool(self._user_id)

    def set_credential(self, credential: str | None) -> None:
        self._user_id = credential
        self.credential_changed.emit(self.authenticated)

    def _require_user(self) -> str:
        if not self._user_id:
            raise NotAuthenticatedError()
        return self._user_id

    @contextmanager
    def _store_errors(self) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as e:
            raise BackendUnavailableError(f"Minute store unavailable: {e}") from e

    def increment_minutes(self, day: dt.date, minutes: int) -> int:
        user_id = self._require_user()
        with self._store_errors():
            return self._store.increment_minutes(user_id, day, minutes)

    def get_minutes_for_range(self, start: dt.date, end: dt.date) -> list[DailyMinutes]:
        user_id = self._require_user()
        with self._store_errors():
            return self._store.get_minutes_for_range(user_id, start, end)

    def get_minutes_for_date(self, day: dt.date) -> int:
        user_id = self._require_user()
        with self._store_errors():
            return self._store.get_minutes_for_date(user_id, day)


class FlushResponse(BaseModel):
    total_minutes: int = Field(alias="totalMinutes", ge=0)


class DayResponse(BaseModel):
    minutes: int = Field(default=0, ge=0)


_RANGE_ADAPTER = TypeAdapter(list[DailyMinutes])


class HttpBackend:
    """Client for the session-minutes HTTP API.

    Endpoints (all take ``Authorization: Bearer <token>``):
        POST /api/session/flush-minutes  {date, minutes} -> {totalMinutes}
        POST /api/session/get-range      {startDate, endDate} -> [{date, minutes}]
        GET  /api/session/get-day/<date> -> {minutes}
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        *,
        timeout: float = 30,
        session: requests.Session | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._session = session or requests.Session()
        self.credential_changed = Signal("credential_changed")

    @property
    def authenticated(self) -> bool:
        return bool(self._token)

    def set_credential(self, credential: str | None) -> None:
        self._token = credential
        self.credential_changed.emit(self.authenticated)

    def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> Any:
        if not self._token:
            raise NotAuthenticatedError()

        url = f"{self._base_url}{path}"
        headers = {"Authorization": f"Bearer {self._token}"}
        try:
            response = self._session.request(
                method, url, json=payload, headers=headers, timeout=self._timeout
            )
        except requests.exceptions.Timeout as e:
            raise BackendUnavailableError(f"Timed out calling {url}") from e
        except requests.exceptions.RequestException as e:
            raise BackendUnavailableError(f"Request to {url} failed: {e}") from e

        if response.status_code in (401, 403):
            raise NotAuthenticatedError(f"Credential rejected by {url} ({response.status_code})")
        if response.status_code >= 500:
            raise BackendUnavailableError(f"{url} returned {response.status_code}")
        if response.status_code >= 400:
            raise BackendError(f"{url} returned {response.status_code}: {response.text[:200]}")

        try:
            return response.json()
        except ValueError as e:
            raise BackendUnavailableError(f"{url} returned invalid JSON") from e

    def increment_minutes(self, day: dt.date, minutes: int) -> int:
        if minutes <= 0:
            raise ValueError(f"minutes must be positive, got {minutes}")
        data = self._request(
            "POST",
            "/api/session/flush-minutes",
            {"date": day.isoformat(), "minutes": minutes},
        )
        try:
            return FlushResponse.model_validate(data).total_minutes
        except ValidationError as e:
            raise BackendUnavailableError(f"Unexpected flush response: {e}") from e

    def get_minutes_for_range(self, start: dt.date, end: dt.date) -> list[DailyMinutes]:
        data = self._request(
            "POST",
            "/api/session/get-range",
            {"startDate": start.isoformat(), "endDate": end.isoformat()},
        )
        try:
            return _RANGE_ADAPTER.validate_python(data)
        except ValidationError as e:
            raise BackendUnavailableError(f"Unexpected range response: {e}") from e

    def get_minutes_for_date(self, day: dt.date) -> int:
        data = self._request("GET", f"/api/session/get-day/{day.isoformat()}")
        try:
            return DayResponse.model_validate(data).minutes
        except ValidationError as e:
            raise BackendUnavailableError(f"Unexpected day response: {e}") from e

from __future__ import annotations

import asyncio
import json
import pathlib
from typing import Any, Dict, List, Optional, Protocol

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .config import (
    GCAL_SCOPES,
    GOOGLE_CALENDAR_ID,
    GOOGLE_TOKEN_FILE,
    LIST_EVENTS_MAX_RESULTS,
    SEARCH_EVENTS_MAX_RESULTS,
    TASK_LISTS_MAX_RESULTS,
)
from .errors import RemoteBackendError
from .models import CalendarEvent, EventPayload, TaskItem, TaskList
from .utils import _log_debug


class CalendarBackend(Protocol):

  async def list_events(self, time_min: str, time_max: str,
                        max_results: int = LIST_EVENTS_MAX_RESULTS) -> List[CalendarEvent]:
    ...

  async def search_events(self, query: str, time_min: str,
                          time_max: str) -> List[CalendarEvent]:
    ...

  async def insert_event(self, payload: EventPayload) -> CalendarEvent:
    ...

  async def update_event(self, event_id: str,
                         payload: EventPayload) -> CalendarEvent:
    ...

  async def delete_event(self, event_id: str) -> None:
    ...


class TaskBackend(Protocol):

  async def list_task_lists(self) -> List[TaskList]:
    ...

  async def list_tasks(self, task_list_id: str,
                       show_completed: bool = False) -> List[TaskItem]:
    ...

  async def insert_task(self, task_list_id: str, title: str) -> TaskItem:
    ...

  async def patch_task_status(self, task_list_id: str, task_id: str,
                              status: str) -> TaskItem:
    ...


# -------------------------
# 인증
# -------------------------
def load_credentials(token_file: pathlib.Path = GOOGLE_TOKEN_FILE) -> Credentials:
  if not token_file.exists():
    raise RemoteBackendError(
        f"Google OAuth token not found: {token_file}",
        "❌ Google 계정이 연결되어 있지 않습니다.")
  token_data = json.loads(token_file.read_text(encoding="utf-8"))
  creds = Credentials.from_authorized_user_info(token_data, GCAL_SCOPES)

  if creds.expired and creds.refresh_token:
    creds.refresh(GoogleRequest())
    token_file.write_text(creds.to_json(), encoding="utf-8")
  return creds


async def _execute(label: str, request: Any) -> Any:
  """Run a googleapiclient request off the event loop, wrap failures."""
  try:
    return await asyncio.to_thread(request.execute)
  except HttpError as exc:
    _log_debug(f"[GCAL] {label} http error: {exc}")
    raise RemoteBackendError(f"{label} failed: {exc}") from exc
  except (GoogleAuthError, OSError) as exc:
    _log_debug(f"[GCAL] {label} transport error: {exc}")
    raise RemoteBackendError(f"{label} failed: {exc}") from exc


class GoogleCalendarBackend:

  def __init__(self,
               credentials: Optional[Credentials] = None,
               calendar_id: str = GOOGLE_CALENDAR_ID) -> None:
    self._credentials = credentials
    self._service = None
    self.calendar_id = calendar_id

  def _events(self):
    if self._service is None:
      creds = self._credentials or load_credentials()
      self._service = build("calendar", "v3", credentials=creds,
                            cache_discovery=False)
    return self._service.events()

  async def list_events(self, time_min: str, time_max: str,
                        max_results: int = LIST_EVENTS_MAX_RESULTS) -> List[CalendarEvent]:
    req = self._events().list(calendarId=self.calendar_id,
                              timeMin=time_min,
                              timeMax=time_max,
                              maxResults=max_results,
                              singleEvents=True,
                              orderBy="startTime")
    data = await _execute("events.list", req)
    return [CalendarEvent.from_api(item) for item in data.get("items", [])]

  async def search_events(self, query: str, time_min: str,
                          time_max: str) -> List[CalendarEvent]:
    req = self._events().list(calendarId=self.calendar_id,
                              q=query,
                              timeMin=time_min,
                              timeMax=time_max,
                              maxResults=SEARCH_EVENTS_MAX_RESULTS,
                              singleEvents=True,
                              orderBy="startTime")
    data = await _execute("events.search", req)
    return [CalendarEvent.from_api(item) for item in data.get("items", [])]

  async def insert_event(self, payload: EventPayload) -> CalendarEvent:
    req = self._events().insert(calendarId=self.calendar_id,
                                body=payload.to_api())
    created = await _execute("events.insert", req)
    return CalendarEvent.from_api(created)

  async def update_event(self, event_id: str,
                         payload: EventPayload) -> CalendarEvent:
    original = await _execute(
        "events.get",
        self._events().get(calendarId=self.calendar_id, eventId=event_id))
    body = dict(original)
    body.update(payload.to_api())
    # 종일/시간 지정 전환 시 반대쪽 필드가 남지 않도록 통째로 교체
    body["start"] = payload.start.to_api()
    body["end"] = payload.end.to_api()
    req = self._events().update(calendarId=self.calendar_id,
                                eventId=event_id,
                                body=body)
    updated = await _execute("events.update", req)
    return CalendarEvent.from_api(updated)

  async def delete_event(self, event_id: str) -> None:
    if not event_id:
      raise ValueError("event_id is empty")
    await _execute(
        "events.delete",
        self._events().delete(calendarId=self.calendar_id, eventId=event_id))


class GoogleTasksBackend:

  def __init__(self, credentials: Optional[Credentials] = None) -> None:
    self._credentials = credentials
    self._service = None

  def _svc(self):
    if self._service is None:
      creds = self._credentials or load_credentials()
      self._service = build("tasks", "v1", credentials=creds,
                            cache_discovery=False)
    return self._service

  async def list_task_lists(self) -> List[TaskList]:
    req = self._svc().tasklists().list(maxResults=TASK_LISTS_MAX_RESULTS)
    data = await _execute("tasklists.list", req)
    return [TaskList.model_validate(item) for item in data.get("items", [])]

  async def list_tasks(self, task_list_id: str,
                       show_completed: bool = False) -> List[TaskItem]:
    req = self._svc().tasks().list(tasklist=task_list_id,
                                   showCompleted=show_completed)
    data = await _execute("tasks.list", req)
    items: List[TaskItem] = []
    for raw in data.get("items", []):
      item = TaskItem.model_validate(raw)
      item.task_list_id = task_list_id
      items.append(item)
    return items

  async def insert_task(self, task_list_id: str, title: str) -> TaskItem:
    req = self._svc().tasks().insert(tasklist=task_list_id,
                                     body={"title": title})
    created = await _execute("tasks.insert", req)
    item = TaskItem.model_validate(created)
    item.task_list_id = task_list_id
    return item

  async def patch_task_status(self, task_list_id: str, task_id: str,
                              status: str) -> TaskItem:
    body: Dict[str, Any] = {"status": status}
    req = self._svc().tasks().patch(tasklist=task_list_id,
                                    task=task_id,
                                    body=body)
    patched = await _execute("tasks.patch", req)
    item = TaskItem.model_validate(patched)
    item.task_list_id = task_list_id
    return item

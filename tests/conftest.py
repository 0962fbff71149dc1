"""
Shared fakes for the workflow and dispatcher tests.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pytest

from elanvital.config import SEOUL
from elanvital.errors import RemoteBackendError
from elanvital.models import CalendarEvent, EventPayload, EventTime, TaskItem, TaskList
from elanvital.state import SessionStore

# 2025-10-21 (화) 10:00
FIXED_NOW = datetime(2025, 10, 21, 10, 0, tzinfo=SEOUL)


class FakeClock:

    def __init__(self, start: float = 1000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


def timed_event(event_id: str, summary: str, start: datetime,
                minutes: int = 60) -> CalendarEvent:
    return CalendarEvent(
        id=event_id,
        summary=summary,
        start=EventTime(date_time=start.isoformat(), time_zone="Asia/Seoul"),
        end=EventTime(date_time=(start + timedelta(minutes=minutes)).isoformat(),
                      time_zone="Asia/Seoul"),
    )


class FakeCalendar:

    def __init__(self, events: Optional[List[CalendarEvent]] = None) -> None:
        self.events: List[CalendarEvent] = list(events or [])
        self.inserted: List[EventPayload] = []
        self.deleted: List[str] = []
        self.updated: List[tuple] = []
        self.list_calls: List[tuple] = []
        self.fail_delete = False
        self._next_id = 100

    def _in_window(self, ev: CalendarEvent, time_min: str, time_max: str) -> bool:
        start = ev.start.as_datetime()
        if start is None:
            d = ev.start.as_date()
            start = datetime(d.year, d.month, d.day, tzinfo=SEOUL)
        return datetime.fromisoformat(time_min) <= start < datetime.fromisoformat(time_max)

    async def list_events(self, time_min: str, time_max: str,
                          max_results: int = 10) -> List[CalendarEvent]:
        self.list_calls.append((time_min, time_max, max_results))
        found = [ev for ev in self.events if self._in_window(ev, time_min, time_max)]
        return found[:max_results]

    async def search_events(self, query: str, time_min: str,
                            time_max: str) -> List[CalendarEvent]:
        return [ev for ev in self.events
                if query in ev.summary and self._in_window(ev, time_min, time_max)]

    async def insert_event(self, payload: EventPayload) -> CalendarEvent:
        self.inserted.append(payload)
        self._next_id += 1
        created = CalendarEvent(id=f"ev{self._next_id}", summary=payload.summary,
                                start=payload.start, end=payload.end,
                                description=payload.description)
        self.events.append(created)
        return created

    async def update_event(self, event_id: str, payload: EventPayload) -> CalendarEvent:
        self.updated.append((event_id, payload))
        updated = CalendarEvent(id=event_id, summary=payload.summary,
                                start=payload.start, end=payload.end,
                                description=payload.description)
        self.events = [updated if ev.id == event_id else ev for ev in self.events]
        return updated

    async def delete_event(self, event_id: str) -> None:
        if self.fail_delete:
            raise RemoteBackendError(f"delete {event_id} failed")
        self.deleted.append(event_id)
        self.events = [ev for ev in self.events if ev.id != event_id]


class FakeTasks:

    def __init__(self, lists: Optional[Dict[str, List[TaskItem]]] = None) -> None:
        self.lists: Dict[str, List[TaskItem]] = lists if lists is not None else {"default": []}
        self.patched: List[tuple] = []
        self.inserted: List[tuple] = []
        self.fail_patch = False
        self.fail_titles: set = set()

    async def list_task_lists(self) -> List[TaskList]:
        return [TaskList(id=list_id, title=list_id.title()) for list_id in self.lists]

    async def list_tasks(self, task_list_id: str,
                         show_completed: bool = False) -> List[TaskItem]:
        items = [t.model_copy() for t in self.lists.get(task_list_id, [])]
        if not show_completed:
            items = [t for t in items if not t.is_completed]
        return items

    async def insert_task(self, task_list_id: str, title: str) -> TaskItem:
        if title in self.fail_titles:
            raise RemoteBackendError(f"insert {title} failed", "서버 오류")
        self.inserted.append((task_list_id, title))
        item = TaskItem(id=f"t{len(self.inserted)}", title=title, task_list_id=task_list_id)
        self.lists.setdefault(task_list_id, []).append(item)
        return item

    async def patch_task_status(self, task_list_id: str, task_id: str,
                                status: str) -> TaskItem:
        if self.fail_patch:
            raise RemoteBackendError(f"patch {task_id} failed")
        self.patched.append((task_list_id, task_id, status))
        for item in self.lists.get(task_list_id, []):
            if item.id == task_id:
                item.status = status
                return item
        raise RemoteBackendError(f"task {task_id} not found")


class ScriptedCompleter:
    """Stands in for run_structured_completion.

    ``responses`` maps a response model name to the parsed object to return;
    anything not scripted comes back unusable, like a failed model call.
    """

    def __init__(self, responses: Optional[Dict[str, Any]] = None) -> None:
        self.responses = dict(responses or {})
        self.calls: List[Dict[str, Any]] = []

    async def __call__(self, **kwargs):
        self.calls.append(kwargs)
        name = kwargs["response_model"].__name__
        parsed = self.responses.get(name)
        if isinstance(parsed, Exception):
            raise parsed
        if parsed is None:
            return None, "", {"llm_error": "scripted_unavailable"}
        return parsed, "{}", {}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sessions(clock: FakeClock) -> SessionStore:
    return SessionStore(clock=clock)


@pytest.fixture
def completer() -> ScriptedCompleter:
    return ScriptedCompleter()


class TickingNow:
    """FIXED_NOW advancing one millisecond per call, so session ids differ."""

    def __init__(self, start: datetime = FIXED_NOW) -> None:
        self.start = start
        self.calls = 0

    def __call__(self) -> datetime:
        self.calls += 1
        return self.start + timedelta(milliseconds=self.calls)


@pytest.fixture
def fixed_now() -> TickingNow:
    return TickingNow()

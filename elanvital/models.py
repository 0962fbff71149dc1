from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from .utils import parse_iso_date, parse_iso_datetime


class EventTime(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    date_time: Optional[str] = Field(default=None, alias="dateTime")
    date: Optional[str] = None
    time_zone: Optional[str] = Field(default=None, alias="timeZone")

    @property
    def is_all_day(self) -> bool:
        return not self.date_time and bool(self.date)

    def as_datetime(self) -> Optional[datetime]:
        return parse_iso_datetime(self.date_time)

    def as_date(self) -> Optional[date]:
        if self.date_time:
            dt = self.as_datetime()
            return dt.date() if dt else None
        return parse_iso_date(self.date)

    def to_api(self) -> Dict[str, str]:
        return self.model_dump(by_alias=True, exclude_none=True)


class CalendarEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    summary: str = ""
    start: EventTime = Field(default_factory=EventTime)
    end: EventTime = Field(default_factory=EventTime)
    description: Optional[str] = None
    location: Optional[str] = None

    @property
    def title(self) -> str:
        return self.summary or "(제목 없음)"

    @property
    def is_all_day(self) -> bool:
        return self.start.is_all_day

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "CalendarEvent":
        return cls.model_validate({
            "id": item.get("id") or "",
            "summary": item.get("summary") or "",
            "start": item.get("start") or {},
            "end": item.get("end") or {},
            "description": item.get("description"),
            "location": item.get("location"),
        })


class TaskList(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    title: str = ""


class TaskItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    title: str = ""
    status: str = "needsAction"
    notes: Optional[str] = None
    due: Optional[str] = None
    task_list_id: Optional[str] = None
    task_list_title: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"


class EventPayload(BaseModel):
    """Insert/update body for the calendar backend."""
    model_config = ConfigDict(extra="ignore")

    summary: str
    start: EventTime
    end: EventTime
    description: Optional[str] = None

    def to_api(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "summary": self.summary,
            "start": self.start.to_api(),
            "end": self.end.to_api(),
        }
        if self.description is not None:
            body["description"] = self.description
        return body



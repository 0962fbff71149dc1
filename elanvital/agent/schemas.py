from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models import CalendarEvent, EventTime, TaskItem

Category = Literal["SCHEDULE", "TASK", "DRIVE", "IMAGE", "MEMORY", "HELP", "GENERAL"]
CATEGORIES = ("SCHEDULE", "TASK", "DRIVE", "IMAGE", "MEMORY", "HELP", "GENERAL")
ScheduleType = Literal["query", "add", "delete", "update"]
TaskType = Literal["query", "add", "complete"]


# ---------------------------------------------------------------------------
#  Per-category intents
# ---------------------------------------------------------------------------

class ScheduleIntent(BaseModel):
  category: Literal["SCHEDULE"] = "SCHEDULE"
  schedule_type: ScheduleType = "query"
  period: Optional[str] = None
  content: Optional[str] = None


class TaskIntent(BaseModel):
  category: Literal["TASK"] = "TASK"
  task_type: TaskType = "query"
  content: Optional[str] = None


class DriveIntent(BaseModel):
  category: Literal["DRIVE"] = "DRIVE"
  search_keyword: Optional[str] = None
  document_keyword: Optional[str] = None


class ImageIntent(BaseModel):
  category: Literal["IMAGE"] = "IMAGE"
  use_last_image: bool = False


class MemoryIntent(BaseModel):
  category: Literal["MEMORY"] = "MEMORY"


class HelpIntent(BaseModel):
  category: Literal["HELP"] = "HELP"


class GeneralIntent(BaseModel):
  category: Literal["GENERAL"] = "GENERAL"


Intent = Union[ScheduleIntent, TaskIntent, DriveIntent, ImageIntent,
               MemoryIntent, HelpIntent, GeneralIntent]


class ClassificationResult(BaseModel):
  """Produced once per utterance, consumed by exactly one dispatch."""
  model_config = ConfigDict(frozen=True)

  intent: Intent = Field(default_factory=GeneralIntent, discriminator="category")
  confidence: float = 0.0
  reason: str = ""
  source: Literal["image", "keyword", "model", "fallback"] = "fallback"

  @property
  def category(self) -> str:
    return self.intent.category

  @property
  def extracted_info(self) -> Dict[str, Any]:
    return self.intent.model_dump(exclude={"category"}, exclude_none=True)


class Attachment(BaseModel):
  name: str = ""
  content_type: str = ""
  url: Optional[str] = None

  @property
  def is_image(self) -> bool:
    return self.content_type.lower().startswith("image/")


class ClassificationRequest(BaseModel):
  text: str
  user_id: Optional[str] = None
  attachments: List[Attachment] = Field(default_factory=list)


# ---------------------------------------------------------------------------
#  LLM output schemas
# ---------------------------------------------------------------------------

class ClassifierExtractedInfo(BaseModel):
  model_config = ConfigDict(extra="ignore")

  period: Optional[str] = None
  content: Optional[str] = None
  searchKeyword: Optional[str] = None
  documentKeyword: Optional[str] = None
  scheduleType: Optional[str] = None
  taskType: Optional[str] = None


class ClassifierOutput(BaseModel):
  model_config = ConfigDict(extra="ignore")

  category: str
  confidence: float = 0.0
  reason: str = ""
  scheduleType: Optional[str] = None
  taskType: Optional[str] = None
  extractedInfo: ClassifierExtractedInfo = Field(default_factory=ClassifierExtractedInfo)

  @field_validator("extractedInfo", mode="before")
  @classmethod
  def _none_to_empty(cls, value: Any) -> Any:
    return value if value is not None else {}


class EventParseOutput(BaseModel):
  model_config = ConfigDict(extra="ignore")

  summary: str = ""
  start: EventTime = Field(default_factory=EventTime)
  end: EventTime = Field(default_factory=EventTime)


class DeleteRequestOutput(BaseModel):
  model_config = ConfigDict(extra="ignore")

  searchKeyword: str = ""
  searchDate: Optional[str] = None
  searchTimeStart: Optional[str] = None
  searchTimeEnd: Optional[str] = None
  description: str = ""


# ---------------------------------------------------------------------------
#  Candidates and confirmation sessions
# ---------------------------------------------------------------------------

class CandidateMatch(BaseModel):
  item: Union[CalendarEvent, TaskItem]
  score: float = Field(ge=0.0, le=1.0)
  # 이미 처리된 자리. 버튼 번호가 밀리지 않도록 목록에서 빼지 않는다
  removed: bool = False


SessionKind = Literal["delete", "schedule", "task_list", "task_search"]


class ConfirmationSession(BaseModel):
  """Indices into ``candidates`` stay fixed for the session's lifetime."""
  session_id: str
  kind: SessionKind
  candidates: List[CandidateMatch] = Field(default_factory=list)
  origin_keyword: str = ""
  description: str = ""
  user_id: Optional[str] = None
  created_at: datetime


# ---------------------------------------------------------------------------
#  Interaction components
# ---------------------------------------------------------------------------

class Button(BaseModel):
  custom_id: str
  label: str
  style: Literal["primary", "secondary", "success", "danger"] = "secondary"


class ActionRow(BaseModel):
  buttons: List[Button] = Field(default_factory=list)


class TextField(BaseModel):
  custom_id: str
  label: str
  value: str = ""
  placeholder: Optional[str] = None
  required: bool = False
  multiline: bool = False


class Modal(BaseModel):
  custom_id: str
  title: str
  fields: List[TextField] = Field(default_factory=list)


class WorkflowResult(BaseModel):
  success: bool
  message: str
  components: List[ActionRow] = Field(default_factory=list)
  modal: Optional[Modal] = None
  session_id: Optional[str] = None

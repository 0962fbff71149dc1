from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from ..config import PERIOD_RESOLVER
from ..dateparse import ModelPeriodResolver, PeriodResolver, RuleBasedPeriodResolver
from ..errors import InvalidSelection
from ..gcal import CalendarBackend, GoogleCalendarBackend, GoogleTasksBackend, TaskBackend
from ..memory import ContextProvider
from ..state import SessionStore
from ..utils import _log_debug
from .classifier import FallbackClassifier, build_default_classifier, general_fallback
from .llm_provider import run_structured_completion
from .schedule_workflow import ScheduleWorkflow
from .schemas import (
    Attachment,
    ClassificationRequest,
    ClassificationResult,
    ScheduleIntent,
    TaskIntent,
    WorkflowResult,
)
from .task_workflow import TaskWorkflow

logger = logging.getLogger(__name__)

ExternalHandler = Callable[[ClassificationResult, ClassificationRequest], Awaitable[WorkflowResult]]

UNKNOWN_ACTION = "❌ 알 수 없는 요청입니다."

HELP_MESSAGE = """🤖 **Elanvital Agent 기능 안내**

저는 다음과 같은 기능들을 제공합니다:

📅 **일정 관리 (Schedule)**
• 일정 추가: "내일 오후 3시에 팀 회의 추가해줘"
• 일정 조회: "오늘 일정 알려줘", "다음주 스케줄"
• 일정 삭제: "오늘 회의 취소해줘"
• 일정 수정: "내일 회의 시간 바꿔줘"
• 조회 결과의 버튼으로 바로 수정/삭제 가능

🗒️ **할 일 관리 (Task)**
• 할 일 추가: "할 일 추가: 장보기, 빨래" (여러 줄 목록도 가능)
• 할 일 조회: "할 일 목록 보여줘"
• 할 일 완료: "운동하기 완료 처리해줘"

🧠 **메모리 관리 (Memory)**
• 대화 기록 저장 및 활용
• 메모리 정리: "메모리 정리해줘", "새 대화"

💬 **일반 질문 (General)**
• 모든 종류의 질문 답변

궁금한 점이 있으시면 언제든 말씀해주세요! 😊"""

DEFAULT_NOTICES: Dict[str, str] = {
    "DRIVE": "📁 드라이브 검색 기능이 연결되어 있지 않습니다.",
    "IMAGE": "🎨 이미지 기능이 연결되어 있지 않습니다.",
    "MEMORY": "🧠 메모리 관리 기능이 연결되어 있지 않습니다.",
    "GENERAL": "💬 일반 대화 기능이 연결되어 있지 않습니다. 일정이나 할 일에 대해 말씀해주세요.",
}

# 긴 접두사부터 검사 (quick_delete_ 가 delete_ 보다 먼저)
BUTTON_PREFIXES: List[str] = ["quick_delete_", "complete_task_", "delete_", "edit_", "cancel_"]
FORM_PREFIXES: List[str] = ["edit_modal_"]


def parse_callback_id(custom_id: str, prefixes: List[str]) -> Optional[Tuple[str, str, Optional[int]]]:
  """Split ``{prefix}{session_id}[_{index}]`` into its parts.

  Session ids may contain underscores, so the index is taken from the right.
  Returns None when no prefix matches. Raises InvalidSelection when the index
  is not an integer.
  """
  for prefix in prefixes:
    if not custom_id.startswith(prefix):
      continue
    rest = custom_id[len(prefix):]
    action = prefix.rstrip("_")
    if action == "cancel":
      return action, rest, None
    session_id, sep, raw_index = rest.rpartition("_")
    if not sep or not session_id:
      raise InvalidSelection(f"no index in {custom_id!r}")
    try:
      return action, session_id, int(raw_index)
    except ValueError:
      raise InvalidSelection(f"bad index in {custom_id!r}")
  return None


class InteractionDispatcher:
  """Routes utterances to workflows and follow-up actions back to sessions."""

  def __init__(self,
               classifier: FallbackClassifier,
               schedule: ScheduleWorkflow,
               tasks: TaskWorkflow,
               handlers: Optional[Dict[str, ExternalHandler]] = None) -> None:
    self.classifier = classifier
    self.schedule = schedule
    self.tasks = tasks
    self.handlers: Dict[str, ExternalHandler] = dict(handlers or {})

  def register(self, category: str, handler: ExternalHandler) -> None:
    self.handlers[category.upper()] = handler

  # -------------------------
  # 메시지
  # -------------------------
  async def handle_message(self,
                           text: str,
                           user_id: Optional[str] = None,
                           attachments: Optional[List[Attachment]] = None
                           ) -> Tuple[ClassificationResult, WorkflowResult]:
    request = ClassificationRequest(text=text or "", user_id=user_id, attachments=attachments or [])
    try:
      classification = await self.classifier.classify(request)
    except Exception:
      logger.exception("classification failed")
      classification = general_fallback("분류 오류")
    result = await self._dispatch(classification, request)
    return classification, result

  async def _dispatch(self, classification: ClassificationResult,
                      request: ClassificationRequest) -> WorkflowResult:
    intent = classification.intent
    _log_debug(f"[DISPATCH] {classification.category} ({classification.source}) {classification.extracted_info}")
    if isinstance(intent, ScheduleIntent):
      return await self.schedule.handle(intent, request.text, request.user_id)
    if isinstance(intent, TaskIntent):
      return await self.tasks.handle(intent, request.text, request.user_id)
    if classification.category == "HELP":
      return WorkflowResult(success=True, message=HELP_MESSAGE)

    handler = self.handlers.get(classification.category)
    if handler is None:
      notice = DEFAULT_NOTICES.get(classification.category, UNKNOWN_ACTION)
      return WorkflowResult(success=False, message=notice)
    try:
      return await handler(classification, request)
    except Exception:
      logger.exception("%s handler failed", classification.category)
      return WorkflowResult(success=False, message="❌ 처리 중 오류가 발생했습니다.")

  # -------------------------
  # 버튼 / 폼
  # -------------------------
  async def on_button_activated(self, custom_id: str) -> WorkflowResult:
    try:
      parsed = parse_callback_id(custom_id or "", BUTTON_PREFIXES)
    except InvalidSelection as exc:
      return WorkflowResult(success=False, message=exc.user_message)
    if parsed is None:
      return WorkflowResult(success=False, message=UNKNOWN_ACTION)

    action, session_id, index = parsed
    _log_debug(f"[DISPATCH] button {action} {session_id} {index}")
    if action == "quick_delete":
      return await self.schedule.quick_delete(session_id, index)
    if action == "complete_task":
      return await self.tasks.execute_complete(session_id, index)
    if action == "delete":
      return await self.schedule.execute_delete(session_id, index)
    if action == "edit":
      return await self.schedule.open_edit_form(session_id, index)
    return await self.schedule.cancel_delete(session_id)

  async def on_form_submitted(self, custom_id: str, fields: Dict[str, str]) -> WorkflowResult:
    try:
      parsed = parse_callback_id(custom_id or "", FORM_PREFIXES)
    except InvalidSelection as exc:
      return WorkflowResult(success=False, message=exc.user_message)
    if parsed is None:
      return WorkflowResult(success=False, message=UNKNOWN_ACTION)
    _action, session_id, index = parsed
    return await self.schedule.submit_update(session_id, index, fields or {})


def build_dispatcher(calendar: Optional[CalendarBackend] = None,
                     tasks: Optional[TaskBackend] = None,
                     sessions: Optional[SessionStore] = None,
                     context: Optional[ContextProvider] = None,
                     completer=run_structured_completion,
                     period_resolver: Optional[PeriodResolver] = None,
                     handlers: Optional[Dict[str, ExternalHandler]] = None,
                     now=None) -> InteractionDispatcher:
  sessions = sessions if sessions is not None else SessionStore()
  if period_resolver is None:
    if PERIOD_RESOLVER == "llm":
      period_resolver = ModelPeriodResolver(completer)
    else:
      period_resolver = RuleBasedPeriodResolver()
  schedule = ScheduleWorkflow(calendar or GoogleCalendarBackend(),
                              sessions,
                              period_resolver=period_resolver,
                              completer=completer,
                              now=now)
  task_flow = TaskWorkflow(tasks or GoogleTasksBackend(), sessions, now=now)
  return InteractionDispatcher(build_default_classifier(context, completer),
                               schedule,
                               task_flow,
                               handlers=handlers)

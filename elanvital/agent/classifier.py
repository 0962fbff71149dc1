from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from ..config import CLASSIFIER_MODEL, RECENT_CONVERSATION_LIMIT
from ..dateparse import extract_period_phrase
from ..llm import CLASSIFY_PROMPT
from ..memory import ContextProvider
from ..utils import _log_debug, format_korean_date, normalize_text, now_seoul
from .llm_provider import run_structured_completion
from .schemas import (
    CATEGORIES,
    ClassificationRequest,
    ClassificationResult,
    ClassifierOutput,
    DriveIntent,
    GeneralIntent,
    HelpIntent,
    ImageIntent,
    Intent,
    MemoryIntent,
    ScheduleIntent,
    TaskIntent,
)

logger = logging.getLogger(__name__)

# -------------------------
# 키워드 테이블
# -------------------------
SCHEDULE_KEYWORDS = ("일정", "스케줄", "약속", "캘린더", "회의", "미팅", "예약")
DRIVE_KEYWORDS = ("드라이브", "drive", "구글 문서", "구글 시트", "파일 찾아", "문서 찾아")
TASK_KEYWORDS = ("할 일", "할일", "투두", "todo", "태스크", "task")
HELP_KEYWORDS = ("도움말", "help", "사용법", "기능 안내", "명령어")
MEMORY_KEYWORDS = ("메모리", "기억 지워", "기억 삭제", "기억 초기화", "새 대화", "새로운 대화",
                   "대화 기록 삭제", "new chat", "리셋")

# 순서 유지: delete > update > add, 동사가 없으면 query
SCHEDULE_TYPE_VERBS: List[Tuple[str, Tuple[str, ...]]] = [
    ("delete", ("삭제", "취소", "지워", "없애", "빼줘", "제거")),
    ("update", ("수정", "변경", "바꿔", "옮겨", "미뤄", "당겨")),
    ("add", ("추가", "등록", "잡아", "넣어", "만들어", "생성")),
]

IMAGE_EDIT_KEYWORDS = (
    "그려", "그림", "이미지", "수정", "바꿔", "변경", "만들어", "draw", "image", "modify", "change",
    "더 밝게", "더 어둡게", "색깔", "배경", "스타일", "예쁘게", "멋있게", "귀엽게",
)
IMAGE_CONTEXT_KEYWORDS = (
    "대화를 바탕으로", "컨텍스트를 바탕으로", "이전 이미지", "방금 전", "아까",
    "이번에는", "이제는", "다시", "또", "계속해서",
)

KEYWORD_CONFIDENCE = 0.9
IMAGE_CONFIDENCE = 0.95


def _contains_any(text: str, keywords: Sequence[str]) -> bool:
  lowered = text.lower()
  return any(k.lower() in lowered for k in keywords)


def detect_schedule_type(text: str) -> str:
  for schedule_type, verbs in SCHEDULE_TYPE_VERBS:
    if _contains_any(text, verbs):
      return schedule_type
  return "query"


def _schedule_intent(text: str) -> Optional[Intent]:
  schedule_type = detect_schedule_type(text)
  content = text if schedule_type in ("add", "update") else None
  return ScheduleIntent(schedule_type=schedule_type,
                        period=extract_period_phrase(text),
                        content=content)


def _no_decision(text: str) -> Optional[Intent]:
  return None


# (category, keywords, extractor). extractor 가 None 을 돌려주면 판단 보류
KEYWORD_TABLE: List[Tuple[str, Tuple[str, ...], Callable[[str], Optional[Intent]]]] = [
    ("SCHEDULE", SCHEDULE_KEYWORDS, _schedule_intent),
    ("DRIVE", DRIVE_KEYWORDS, _no_decision),
    ("TASK", TASK_KEYWORDS, _no_decision),
    ("HELP", HELP_KEYWORDS, lambda text: HelpIntent()),
    ("MEMORY", MEMORY_KEYWORDS, lambda text: MemoryIntent()),
]


class Classifier(Protocol):

  async def classify(self,
                     request: ClassificationRequest) -> Optional[ClassificationResult]:
    ...


class ImageClassifier:
  """Image attachment, or a remembered image plus an edit-style request."""

  def __init__(self, context: Optional[ContextProvider] = None) -> None:
    self.context = context

  async def classify(self,
                     request: ClassificationRequest) -> Optional[ClassificationResult]:
    if any(att.is_image for att in request.attachments):
      return ClassificationResult(intent=ImageIntent(),
                                  confidence=IMAGE_CONFIDENCE,
                                  reason="이미지 첨부",
                                  source="image")
    if self.context is None or not request.user_id or request.attachments:
      return None
    if self.context.get_last_image(request.user_id) is None:
      return None
    text = request.text
    if _contains_any(text, SCHEDULE_KEYWORDS):
      return None
    if _contains_any(text, IMAGE_EDIT_KEYWORDS) or _contains_any(text, IMAGE_CONTEXT_KEYWORDS):
      return ClassificationResult(intent=ImageIntent(use_last_image=True),
                                  confidence=KEYWORD_CONFIDENCE,
                                  reason="기억된 이미지에 대한 수정 요청",
                                  source="image")
    return None


class KeywordClassifier:

  def __init__(self, table=None) -> None:
    self.table = table if table is not None else KEYWORD_TABLE

  def match(self, text: str) -> Optional[ClassificationResult]:
    for category, keywords, extractor in self.table:
      if not _contains_any(text, keywords):
        continue
      intent = extractor(text)
      if intent is None:
        _log_debug(f"[CLASSIFY] keyword {category} deferred to model")
        return None
      return ClassificationResult(intent=intent,
                                  confidence=KEYWORD_CONFIDENCE,
                                  reason=f"{category} 키워드 일치",
                                  source="keyword")
    return None

  async def classify(self,
                     request: ClassificationRequest) -> Optional[ClassificationResult]:
    return self.match(normalize_text(request.text))


def general_fallback(reason: str = "분류 실패") -> ClassificationResult:
  return ClassificationResult(intent=GeneralIntent(),
                              confidence=0.0,
                              reason=reason,
                              source="fallback")


def _truncate(text: str, limit: int = 50) -> str:
  return text if len(text) <= limit else text[:limit] + "..."


class ModelClassifier:
  """Language-model tier. Always terminal: failures collapse to GENERAL."""

  def __init__(self,
               context: Optional[ContextProvider] = None,
               completer=run_structured_completion,
               model: str = CLASSIFIER_MODEL,
               now: Optional[Callable[[], datetime]] = None) -> None:
    self.context = context
    self.completer = completer
    self.model = model
    self.now = now or now_seoul

  def _payload(self, request: ClassificationRequest):
    now = self.now()
    recent = []
    has_last_image = False
    last_document = None
    if self.context is not None and request.user_id:
      for turn in self.context.get_recent_conversations(request.user_id,
                                                        RECENT_CONVERSATION_LIMIT):
        recent.append({
            "category": turn.category,
            "user": _truncate(turn.user_message),
            "bot": _truncate(turn.bot_response),
        })
      has_last_image = self.context.get_last_image(request.user_id) is not None
      doc = self.context.get_last_document(request.user_id)
      last_document = doc.title if doc else None
    return {
        "now": now.strftime("%Y-%m-%dT%H:%M"),
        "weekday": format_korean_date(now.date()),
        "text": request.text,
        "attachments": [{
            "name": att.name,
            "content_type": att.content_type
        } for att in request.attachments],
        "has_last_image": has_last_image,
        "last_document": last_document,
        "recent_conversations": recent,
    }

  async def classify(self,
                     request: ClassificationRequest) -> Optional[ClassificationResult]:
    parsed, _raw, meta = await self.completer(
        model=self.model,
        system_prompt=CLASSIFY_PROMPT,
        developer_prompt=None,
        user_payload=self._payload(request),
        response_model=ClassifierOutput,
        max_completion_tokens=300,
    )
    if parsed is None:
      _log_debug(f"[CLASSIFY] model unusable: {meta.get('llm_error') or meta.get('unavailable_reason')}")
      return general_fallback("모델 응답 없음")
    category = (parsed.category or "").strip().upper()
    if category not in CATEGORIES:
      return general_fallback(f"알 수 없는 카테고리: {parsed.category}")
    intent = self._intent_from_output(category, parsed, request)
    confidence = min(max(float(parsed.confidence or 0.0), 0.0), 1.0)
    return ClassificationResult(intent=intent,
                                confidence=confidence,
                                reason=parsed.reason or "",
                                source="model")

  def _intent_from_output(self, category: str, parsed: ClassifierOutput,
                          request: ClassificationRequest) -> Intent:
    info = parsed.extractedInfo
    if category == "SCHEDULE":
      schedule_type = (parsed.scheduleType or info.scheduleType or "query").strip().lower()
      if schedule_type not in ("query", "add", "delete", "update"):
        schedule_type = "query"
      content = info.content or None
      if content is None and schedule_type in ("add", "update"):
        content = request.text
      return ScheduleIntent(schedule_type=schedule_type,
                            period=info.period or extract_period_phrase(request.text),
                            content=content)
    if category == "TASK":
      task_type = (parsed.taskType or info.taskType or "query").strip().lower()
      if task_type not in ("query", "add", "complete"):
        task_type = "query"
      return TaskIntent(task_type=task_type, content=info.content or None)
    if category == "DRIVE":
      return DriveIntent(search_keyword=info.searchKeyword,
                         document_keyword=info.documentKeyword)
    if category == "IMAGE":
      return ImageIntent(use_last_image=not request.attachments)
    if category == "MEMORY":
      return MemoryIntent()
    if category == "HELP":
      return HelpIntent()
    return GeneralIntent()


class FallbackClassifier:
  """Tries each tier in order; the first non-None result wins."""

  def __init__(self, tiers: Sequence[Classifier]) -> None:
    self.tiers = list(tiers)

  async def classify(self, request: ClassificationRequest) -> ClassificationResult:
    for tier in self.tiers:
      try:
        result = await tier.classify(request)
      except Exception:
        logger.exception("classifier tier %s failed", type(tier).__name__)
        continue
      if result is not None:
        _log_debug(f"[CLASSIFY] {result.source}: {result.category} {result.extracted_info}")
        return result
    return general_fallback()


def build_default_classifier(context: Optional[ContextProvider] = None,
                             completer=run_structured_completion) -> FallbackClassifier:
  return FallbackClassifier([
      ImageClassifier(context),
      KeywordClassifier(),
      ModelClassifier(context, completer=completer),
  ])

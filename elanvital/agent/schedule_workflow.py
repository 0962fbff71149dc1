from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..config import (
    AUTO_COMMIT_SCORE,
    DELETE_PARSER_MODEL,
    DELETE_SESSION_TTL_SECONDS,
    EVENT_PARSER_MODEL,
    LIST_EVENTS_MAX_RESULTS,
    MATCH_SCORE_FLOOR,
    MAX_BUTTON_TITLE,
    MAX_DELETE_CANDIDATES,
    QUERY_BUTTONS_PER_ROW,
    SCHEDULE_SESSION_TTL_SECONDS,
    SEARCH_EVENTS_MAX_RESULTS,
    SEOUL,
)
from ..dateparse import (
    CalendarRange,
    PeriodResolver,
    RuleBasedPeriodResolver,
    extract_period_phrase,
    format_for_calendar,
    parse_relative_expression,
    strip_temporal_phrases,
)
from ..errors import (
    AssistantError,
    InputValidationError,
    InvalidSelection,
    NoMatchFound,
    ParseFailure,
    SessionExpired,
)
from ..gcal import CalendarBackend
from ..llm import DELETE_PARSE_PROMPT, EVENT_PARSE_PROMPT
from ..models import CalendarEvent, EventPayload, EventTime
from ..similarity import rank_candidates
from ..state import SessionStore, new_session_id
from ..utils import _log_debug, format_korean_date, format_month_day, now_seoul, truncate_title
from .llm_provider import run_structured_completion
from .normalizer import coerce_rfc3339, validate_form_date, validate_form_time
from .schemas import (
    ActionRow,
    Button,
    CandidateMatch,
    ConfirmationSession,
    DeleteRequestOutput,
    EventParseOutput,
    Modal,
    ScheduleIntent,
    TextField,
    WorkflowResult,
)

logger = logging.getLogger(__name__)

ADD_PARSE_FAILED = "일정을 이해하지 못했어요. 좀 더 명확하게 말씀해주시겠어요? (예: 내일 오후 3시 팀 회의)"
TARGET_PARSE_FAILED = ("삭제할 일정을 이해하지 못했어요. 좀 더 명확하게 말씀해주시겠어요? "
                       "(예: 오늘 회의 취소해줘, 내일 저녁식사 삭제)")
PERIOD_PARSE_FAILED = "기간을 이해하지 못했습니다. 다시 시도해주세요. (예: 오늘, 내일, 이번주, 지난주, 이번달)"
DELETE_EXPIRED = "⏰ 삭제 요청이 만료되었습니다. 다시 시도해주세요."
ALREADY_DELETED = "❌ 이미 삭제된 일정입니다."

_ADD_COMMAND_RE = re.compile(
    r"\s*(?:일정)?\s*(?:을|를)?\s*(?:추가|등록|잡아|넣어|만들어|생성)\s*"
    r"(?:해\s*줘|해\s*주세요|해줘|해주세요|해|줘|하기)?\s*[.!~]*\s*$")
_TARGET_COMMAND_RE = re.compile(
    r"\s*(?:을|를)?\s*(?:삭제|취소|지워|없애|빼|제거|수정|변경|바꿔|옮겨|미뤄|당겨)\S*(?:\s*(?:줘|주세요))?\s*[.!~]*")
_SCHEDULE_NOISE_RE = re.compile(r"(?<!\S)(?:일정|스케줄)\s*(?:중에|중|에서|에)?(?!\S)")


def extract_event_title(text: str) -> str:
  t = strip_temporal_phrases(text)
  t = _ADD_COMMAND_RE.sub("", t).strip()
  t = re.sub(r"(?<!\S)일정$", "", t).strip()
  return t.strip(" .,!~")


def extract_target_keyword(text: str) -> str:
  t = strip_temporal_phrases(text)
  t = _TARGET_COMMAND_RE.sub(" ", t)
  t = _SCHEDULE_NOISE_RE.sub(" ", t)
  t = re.sub(r"(?<!\S)(?:을|를|좀)(?!\S)", " ", t)
  return re.sub(r"\s+", " ", t).strip(" .,!~")


def _event_date_label(event: CalendarEvent) -> str:
  d = event.start.as_date()
  return format_month_day(d) if d else "날짜 미상"


def _event_time_label(event: CalendarEvent, compact: bool = False) -> str:
  if event.is_all_day:
    return "종일"
  dt = event.start.as_datetime()
  if dt is None:
    return "시간 미상"
  if compact and dt.minute == 0:
    return f"{dt.hour}시"
  return dt.strftime("%H:%M")


def _rows(buttons: List[Button], per_row: int) -> List[ActionRow]:
  return [ActionRow(buttons=buttons[i:i + per_row]) for i in range(0, len(buttons), per_row)]


class ScheduleWorkflow:
  """Add/query/delete/update against the calendar backend.

  Mutations on one confirmation session run under ``sessions.lock(id)``.
  """

  def __init__(self,
               calendar: CalendarBackend,
               sessions: SessionStore,
               period_resolver: Optional[PeriodResolver] = None,
               completer: Callable[..., Awaitable[Tuple[Any, str, Dict[str, Any]]]] = run_structured_completion,
               now: Optional[Callable[[], datetime]] = None) -> None:
    self.calendar = calendar
    self.sessions = sessions
    self.rules = RuleBasedPeriodResolver()
    self.period_resolver = period_resolver or self.rules
    self.completer = completer
    self.now = now or now_seoul

  async def _guarded(self, action: str, func, *args) -> WorkflowResult:
    try:
      return await func(*args)
    except AssistantError as exc:
      _log_debug(f"[SCHEDULE] {action}: {exc}")
      return WorkflowResult(success=False, message=exc.user_message)
    except Exception:
      logger.exception("schedule %s failed", action)
      return WorkflowResult(success=False, message=f"일정 {action} 중 오류가 발생했습니다.")

  async def handle(self, intent: ScheduleIntent, text: str,
                   user_id: Optional[str] = None) -> WorkflowResult:
    if intent.schedule_type == "add":
      return await self.add_event(text)
    if intent.schedule_type == "delete":
      return await self.request_delete(text, user_id)
    if intent.schedule_type == "update":
      return await self.request_update(text, user_id)
    return await self.query_events(intent.period or "오늘", user_id)

  # -------------------------
  # 추가
  # -------------------------
  async def add_event(self, text: str) -> WorkflowResult:
    return await self._guarded("추가", self._add_event, text)

  async def _add_event(self, text: str) -> WorkflowResult:
    payload = await self._parse_event(text)
    if payload is None:
      raise ParseFailure(f"no event summary in {text!r}", ADD_PARSE_FAILED)
    created = await self.calendar.insert_event(payload)
    title = truncate_title(created.summary or payload.summary)
    return WorkflowResult(
        success=True,
        message=f"✅ {_event_date_label(created)} {_event_time_label(created)} - {title} 일정이 추가되었습니다.")

  async def _parse_event(self, text: str) -> Optional[EventPayload]:
    now = self.now()
    parsed, _raw, _meta = await self.completer(
        model=EVENT_PARSER_MODEL,
        system_prompt=EVENT_PARSE_PROMPT,
        developer_prompt=None,
        user_payload={
            "now": now.strftime("%Y-%m-%dT%H:%M"),
            "weekday": format_korean_date(now.date()),
            "text": text,
        },
        response_model=EventParseOutput,
        max_completion_tokens=400,
    )
    payload = self._payload_from_model(parsed)
    if payload is not None:
      return payload

    title = extract_event_title(text)
    if not title:
      return None
    expr = parse_relative_expression(text, now)
    _log_debug(f"[SCHEDULE] rule parse: {title!r} {expr.date} {expr.time} all_day={expr.is_all_day}")
    return format_for_calendar(expr, title)

  @staticmethod
  def _payload_from_model(parsed: Optional[EventParseOutput]) -> Optional[EventPayload]:
    if parsed is None or not parsed.summary.strip():
      return None
    start, end = parsed.start, parsed.end
    if start.date_time:
      start_dt = start.as_datetime()
      if start_dt is None:
        return None
      end_dt = end.as_datetime()
      if end_dt is None or end_dt <= start_dt:
        end_dt = start_dt + timedelta(hours=1)
      return EventPayload(
          summary=parsed.summary.strip(),
          start=EventTime(date_time=start_dt.isoformat(), time_zone="Asia/Seoul"),
          end=EventTime(date_time=end_dt.isoformat(), time_zone="Asia/Seoul"))
    start_day = start.as_date()
    if start_day is None:
      return None
    end_day = end.as_date()
    if end_day is None or end_day <= start_day:
      end_day = start_day + timedelta(days=1)
    return EventPayload(summary=parsed.summary.strip(),
                        start=EventTime(date=start_day.isoformat()),
                        end=EventTime(date=end_day.isoformat()))

  # -------------------------
  # 조회
  # -------------------------
  async def query_events(self, period: str, user_id: Optional[str] = None) -> WorkflowResult:
    return await self._guarded("조회", self._query_events, period, user_id)

  async def _query_events(self, period: str, user_id: Optional[str]) -> WorkflowResult:
    now = self.now()
    rng = await self.period_resolver.to_calendar_range(period, now)
    if rng is None:
      raise ParseFailure(f"unresolvable period {period!r}", PERIOD_PARSE_FAILED)
    description = rng.description or period
    events = await self.calendar.list_events(rng.time_min(), rng.time_max(),
                                             LIST_EVENTS_MAX_RESULTS)
    if not events:
      return WorkflowResult(success=True, message=f"**{description}**에 예정된 일정이 없습니다.")

    session_id = new_session_id(user_id, now)
    self.sessions.put(session_id,
                      ConfirmationSession(session_id=session_id,
                                          kind="schedule",
                                          candidates=[CandidateMatch(item=ev, score=1.0) for ev in events],
                                          origin_keyword=period,
                                          description=description,
                                          user_id=user_id,
                                          created_at=now),
                      SCHEDULE_SESSION_TTL_SECONDS)

    buttons: List[Button] = []
    lines: List[str] = []
    for i, ev in enumerate(events):
      buttons.append(Button(custom_id=f"edit_{session_id}_{i}", label=f"{i + 1}.✏️"))
      buttons.append(Button(custom_id=f"quick_delete_{session_id}_{i}", label=f"{i + 1}.🗑️"))
      lines.append(f"**{i + 1}.** `{_event_date_label(ev)} {_event_time_label(ev, compact=True)}` "
                   f"**{truncate_title(ev.title)}**")
    message = f"**{description} 일정:**\n\n" + "\n".join(lines) + "\n\n🔧 **아래 버튼으로 수정/삭제하세요:**"
    return WorkflowResult(success=True,
                          message=message,
                          components=_rows(buttons, QUERY_BUTTONS_PER_ROW),
                          session_id=session_id)

  # -------------------------
  # 삭제/수정 대상 검색
  # -------------------------
  async def _parse_target_request(self, text: str) -> Tuple[str, CalendarRange]:
    now = self.now()
    parsed, _raw, _meta = await self.completer(
        model=DELETE_PARSER_MODEL,
        system_prompt=DELETE_PARSE_PROMPT,
        developer_prompt=None,
        user_payload={
            "now": now.strftime("%Y-%m-%dT%H:%M"),
            "weekday": format_korean_date(now.date()),
            "text": text,
        },
        response_model=DeleteRequestOutput,
        max_completion_tokens=300,
    )
    keyword = ""
    if isinstance(parsed, DeleteRequestOutput):
      keyword = parsed.searchKeyword.strip()
      start = coerce_rfc3339(parsed.searchTimeStart)
      end = coerce_rfc3339(parsed.searchTimeEnd)
      if keyword and start and end and end > start:
        return keyword, CalendarRange(start=start, end=end,
                                      description=parsed.description or "검색 기간")

    keyword = keyword or extract_target_keyword(text)
    if not keyword:
      raise ParseFailure(f"no target keyword in {text!r}", TARGET_PARSE_FAILED)
    rng = self.rules.resolve(extract_period_phrase(text), now)
    if rng is None:
      rng = self.rules.resolve("오늘", now)
    _log_debug(f"[SCHEDULE] rule target: {keyword!r} {rng.start} ~ {rng.end}")
    return keyword, rng

  # -------------------------
  # 삭제
  # -------------------------
  async def request_delete(self, text: str, user_id: Optional[str] = None) -> WorkflowResult:
    return await self._guarded("삭제", self._request_delete, text, user_id)

  async def _request_delete(self, text: str, user_id: Optional[str]) -> WorkflowResult:
    keyword, rng = await self._parse_target_request(text)
    events = await self.calendar.list_events(rng.time_min(), rng.time_max(),
                                             SEARCH_EVENTS_MAX_RESULTS)
    if not events:
      return WorkflowResult(success=False, message=f"{rng.description}에 일정이 없습니다.")

    ranked = rank_candidates(keyword, events, lambda ev: ev.summary, MATCH_SCORE_FLOOR)
    if not ranked:
      raise NoMatchFound(keyword)

    best, best_score = ranked[0]
    if len(ranked) == 1 and best_score >= AUTO_COMMIT_SCORE:
      await self.calendar.delete_event(best.id)
      return WorkflowResult(
          success=True,
          message=(f"🗑️ **자동 삭제 완료!**\n일정 **'{best.title}'**을(를) 삭제했습니다. "
                   f"(유사도: {round(best_score * 100)}%)"))

    now = self.now()
    candidates = [CandidateMatch(item=ev, score=score) for ev, score in ranked[:MAX_DELETE_CANDIDATES]]
    session_id = new_session_id(user_id, now)
    self.sessions.put(session_id,
                      ConfirmationSession(session_id=session_id,
                                          kind="delete",
                                          candidates=candidates,
                                          origin_keyword=keyword,
                                          description=rng.description,
                                          user_id=user_id,
                                          created_at=now),
                      DELETE_SESSION_TTL_SECONDS)

    rows: List[ActionRow] = []
    lines: List[str] = []
    for i, match in enumerate(candidates):
      ev = match.item
      when = f"{_event_date_label(ev)} {_event_time_label(ev)}"
      rows.append(ActionRow(buttons=[
          Button(custom_id=f"delete_{session_id}_{i}",
                 label=f"{when} - {truncate_title(ev.title, MAX_BUTTON_TITLE)}",
                 style="danger")
      ]))
      lines.append(f"{i + 1}. **{when}** - {ev.title} *({match.score * 100:.1f}% 유사)*")
    rows.append(ActionRow(buttons=[Button(custom_id=f"cancel_{session_id}", label="❌ 취소")]))
    message = f"🔍 **\"{keyword}\"** 검색 결과:\n\n" + "\n".join(lines) + "\n\n❓ **삭제할 일정을 선택해주세요:**"
    return WorkflowResult(success=True, message=message, components=rows, session_id=session_id)

  def _session_or_raise(self, session_id: str, kinds: Tuple[str, ...],
                        expired_message: Optional[str] = None) -> ConfirmationSession:
    session = self.sessions.get(session_id)
    if not isinstance(session, ConfirmationSession) or session.kind not in kinds:
      raise SessionExpired(f"session {session_id} not found", expired_message)
    return session

  @staticmethod
  def _candidate_or_raise(session: ConfirmationSession, index: int) -> CandidateMatch:
    if index < 0 or index >= len(session.candidates):
      raise InvalidSelection(f"index {index} out of range for {session.session_id}")
    match = session.candidates[index]
    if match.removed:
      raise InvalidSelection(f"index {index} already removed from {session.session_id}",
                             ALREADY_DELETED)
    return match

  async def execute_delete(self, session_id: str, index: int) -> WorkflowResult:
    return await self._guarded("삭제", self._execute_delete, session_id, index)

  async def _execute_delete(self, session_id: str, index: int) -> WorkflowResult:
    async with self.sessions.lock(session_id):
      session = self._session_or_raise(session_id, ("delete",), DELETE_EXPIRED)
      match = self._candidate_or_raise(session, index)
      event = match.item
      await self.calendar.delete_event(event.id)
      self.sessions.delete(session_id)

    return WorkflowResult(
        success=True,
        message=(f"✅ **일정이 삭제되었습니다!**\n\n🗑️ **{_event_date_label(event)} {_event_time_label(event)}** - "
                 f"{truncate_title(event.title, 50)}\n*({match.score * 100:.1f}% 유사도로 매칭)*"))

  async def cancel_delete(self, session_id: str) -> WorkflowResult:
    return await self._guarded("취소", self._cancel_delete, session_id)

  async def _cancel_delete(self, session_id: str) -> WorkflowResult:
    async with self.sessions.lock(session_id):
      self._session_or_raise(session_id, ("delete",), DELETE_EXPIRED)
      self.sessions.delete(session_id)
    return WorkflowResult(success=True, message="❌ **일정 삭제가 취소되었습니다.**")

  async def quick_delete(self, session_id: str, index: int) -> WorkflowResult:
    return await self._guarded("삭제", self._quick_delete, session_id, index)

  async def _quick_delete(self, session_id: str, index: int) -> WorkflowResult:
    async with self.sessions.lock(session_id):
      session = self._session_or_raise(session_id, ("schedule",))
      match = self._candidate_or_raise(session, index)
      event = match.item
      await self.calendar.delete_event(event.id)
      match.removed = True
      self.sessions.put(session_id, session, SCHEDULE_SESSION_TTL_SECONDS)

    return WorkflowResult(
        success=True,
        message=f"✅ **일정이 삭제되었습니다!**\n\n🗑️ **{_event_date_label(event)} {_event_time_label(event)}** - {event.title}")

  # -------------------------
  # 수정
  # -------------------------
  async def request_update(self, text: str, user_id: Optional[str] = None) -> WorkflowResult:
    return await self._guarded("수정", self._request_update, text, user_id)

  async def _request_update(self, text: str, user_id: Optional[str]) -> WorkflowResult:
    keyword, rng = await self._parse_target_request(text)
    events = await self.calendar.search_events(keyword, rng.time_min(), rng.time_max())
    if not events:
      events = await self.calendar.list_events(rng.time_min(), rng.time_max(),
                                               SEARCH_EVENTS_MAX_RESULTS)
    ranked = rank_candidates(keyword, events, lambda ev: ev.summary, MATCH_SCORE_FLOOR)
    if not ranked:
      raise NoMatchFound(keyword)

    now = self.now()
    candidates = [CandidateMatch(item=ev, score=score) for ev, score in ranked[:MAX_DELETE_CANDIDATES]]
    session_id = new_session_id(user_id, now)
    self.sessions.put(session_id,
                      ConfirmationSession(session_id=session_id,
                                          kind="schedule",
                                          candidates=candidates,
                                          origin_keyword=keyword,
                                          description=rng.description,
                                          user_id=user_id,
                                          created_at=now),
                      SCHEDULE_SESSION_TTL_SECONDS)

    rows: List[ActionRow] = []
    lines: List[str] = []
    for i, match in enumerate(candidates):
      ev = match.item
      when = f"{_event_date_label(ev)} {_event_time_label(ev)}"
      rows.append(ActionRow(buttons=[
          Button(custom_id=f"edit_{session_id}_{i}",
                 label=f"{i + 1}.✏️ {when} - {truncate_title(ev.title, MAX_BUTTON_TITLE)}",
                 style="primary")
      ]))
      lines.append(f"{i + 1}. **{when}** - {ev.title} *({match.score * 100:.1f}% 유사)*")
    message = f"✏️ **\"{keyword}\"** 검색 결과:\n\n" + "\n".join(lines) + "\n\n❓ **수정할 일정을 선택해주세요:**"
    return WorkflowResult(success=True, message=message, components=rows, session_id=session_id)

  async def open_edit_form(self, session_id: str, index: int) -> WorkflowResult:
    return await self._guarded("수정", self._open_edit_form, session_id, index)

  async def _open_edit_form(self, session_id: str, index: int) -> WorkflowResult:
    session = self._session_or_raise(session_id, ("schedule",))
    event = self._candidate_or_raise(session, index).item

    day = event.start.as_date()
    start_time = end_time = ""
    if not event.is_all_day:
      start_dt = event.start.as_datetime()
      end_dt = event.end.as_datetime()
      start_time = start_dt.strftime("%H:%M") if start_dt else ""
      end_time = end_dt.strftime("%H:%M") if end_dt else ""

    modal = Modal(
        custom_id=f"edit_modal_{session_id}_{index}",
        title="일정 수정",
        fields=[
            TextField(custom_id="title", label="일정 제목", value=event.summary, required=True),
            TextField(custom_id="date", label="날짜 (YYYY-MM-DD)",
                      value=day.isoformat() if day else "", required=True),
            TextField(custom_id="start_time", label="시작 시간", value=start_time,
                      placeholder="09:30 또는 9시 30분 (종일일정은 비워두세요)"),
            TextField(custom_id="end_time", label="종료 시간", value=end_time,
                      placeholder="10:30 또는 10시 30분 (종일일정은 비워두세요)"),
            TextField(custom_id="description", label="설명 (선택사항)",
                      value=event.description or "", multiline=True),
        ])
    return WorkflowResult(success=True, message=f"✏️ '{truncate_title(event.title)}' 수정",
                          modal=modal, session_id=session_id)

  async def submit_update(self, session_id: str, index: int,
                          fields: Dict[str, str]) -> WorkflowResult:
    return await self._guarded("수정", self._submit_update, session_id, index, fields)

  @staticmethod
  def _payload_from_form(fields: Dict[str, str], original: CalendarEvent) -> EventPayload:
    day = validate_form_date(fields.get("date"))
    start_time = validate_form_time(fields.get("start_time"), "start_time")
    end_time = validate_form_time(fields.get("end_time"), "end_time")
    title = (fields.get("title") or "").strip() or original.summary
    description = (fields.get("description") or "").strip()

    if start_time is None:
      if end_time is not None:
        raise InputValidationError("start_time", "❌ 시작 시간을 입력해주세요.")
      return EventPayload(summary=title,
                          start=EventTime(date=day.isoformat()),
                          end=EventTime(date=(day + timedelta(days=1)).isoformat()),
                          description=description)

    sh, sm = (int(p) for p in start_time.split(":"))
    start_dt = datetime(day.year, day.month, day.day, sh, sm, tzinfo=SEOUL)
    if end_time is None:
      end_dt = start_dt + timedelta(hours=1)
    else:
      eh, em = (int(p) for p in end_time.split(":"))
      end_dt = datetime(day.year, day.month, day.day, eh, em, tzinfo=SEOUL)
      if end_dt <= start_dt:
        raise InputValidationError("end_time", "❌ 종료 시간은 시작 시간보다 늦어야 합니다.")
    return EventPayload(summary=title,
                        start=EventTime(date_time=start_dt.isoformat(), time_zone="Asia/Seoul"),
                        end=EventTime(date_time=end_dt.isoformat(), time_zone="Asia/Seoul"),
                        description=description)

  async def _submit_update(self, session_id: str, index: int,
                           fields: Dict[str, str]) -> WorkflowResult:
    async with self.sessions.lock(session_id):
      session = self._session_or_raise(session_id, ("schedule",))
      match = self._candidate_or_raise(session, index)
      payload = self._payload_from_form(fields, match.item)
      updated = await self.calendar.update_event(match.item.id, payload)
      session.candidates[index] = CandidateMatch(item=updated, score=match.score)
      self.sessions.put(session_id, session, SCHEDULE_SESSION_TTL_SECONDS)

    return WorkflowResult(
        success=True,
        message=f"✅ **일정이 수정되었습니다!**\n\n📝 **{_event_date_label(updated)} {_event_time_label(updated)}** - {updated.title}")

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from ..config import (
    AUTO_COMMIT_SCORE,
    MATCH_SCORE_FLOOR,
    MAX_TASK_BUTTONS,
    TASK_BUTTONS_PER_ROW,
    TASK_SESSION_TTL_SECONDS,
)
from ..errors import AssistantError, InvalidSelection, NoMatchFound, ParseFailure, SessionExpired
from ..gcal import TaskBackend
from ..models import TaskItem
from ..similarity import rank_candidates
from ..state import SessionStore, new_session_id
from ..utils import _log_debug, now_seoul
from .schemas import ActionRow, Button, CandidateMatch, ConfirmationSession, TaskIntent, WorkflowResult
from .task_parser import parse_multiple_tasks

logger = logging.getLogger(__name__)

TASK_EXPIRED = "⏰ 세션이 만료되었거나 유효하지 않습니다. 다시 목록을 조회해주세요."
NO_TASK_LISTS = "🚫 **태스크 리스트 없음!**\nGoogle Tasks에서 태스크 리스트를 먼저 생성해주세요."
ALREADY_COMPLETED = "❌ 이미 완료한 할 일입니다."

_COMPLETE_VERB_RE = re.compile(
    r"\s*(?:을|를)?\s*(?:완료|끝냈|끝났|다\s*했|했어|체크)\S*"
    r"(?:\s*(?:처리|표시|해줘|해\s*줘|해주세요|줘|주세요))*\s*[.!~]*")
_TASK_WORD_RE = re.compile(r"(?<!\S)(?:할\s*일|할일|투두|todo|태스크|task)(?:\s*(?:중에|중|에서))?(?!\S)",
                           re.IGNORECASE)


def extract_task_keyword(text: str) -> str:
  t = _COMPLETE_VERB_RE.sub(" ", text or "")
  t = _TASK_WORD_RE.sub(" ", t)
  t = re.sub(r"(?<!\S)(?:을|를|좀)(?!\S)", " ", t)
  return re.sub(r"\s+", " ", t).strip(" .,!~")


class TaskWorkflow:
  """Query/add/complete against the task backend."""

  def __init__(self,
               tasks: TaskBackend,
               sessions: SessionStore,
               now: Optional[Callable[[], datetime]] = None) -> None:
    self.tasks = tasks
    self.sessions = sessions
    self.now = now or now_seoul

  async def _guarded(self, action: str, func, *args) -> WorkflowResult:
    try:
      return await func(*args)
    except AssistantError as exc:
      _log_debug(f"[TASK] {action}: {exc}")
      return WorkflowResult(success=False, message=exc.user_message)
    except Exception:
      logger.exception("task %s failed", action)
      return WorkflowResult(success=False, message="❌ 할 일 처리 중 오류가 발생했습니다.")

  async def handle(self, intent: TaskIntent, text: str,
                   user_id: Optional[str] = None) -> WorkflowResult:
    if intent.task_type == "add":
      return await self.add_tasks(intent.content or text)
    if intent.task_type == "complete":
      return await self.complete_by_keyword(intent.content or text, user_id)
    return await self.list_open_tasks(user_id)

  async def _open_tasks(self) -> List[TaskItem]:
    result: List[TaskItem] = []
    for task_list in await self.tasks.list_task_lists():
      for item in await self.tasks.list_tasks(task_list.id, show_completed=False):
        if item.is_completed:
          continue
        item.task_list_id = item.task_list_id or task_list.id
        item.task_list_title = task_list.title
        result.append(item)
    return result

  def _store(self, kind: str, candidates: List[CandidateMatch], keyword: str,
             user_id: Optional[str]) -> str:
    now = self.now()
    session_id = new_session_id(user_id, now)
    self.sessions.put(session_id,
                      ConfirmationSession(session_id=session_id,
                                          kind=kind,
                                          candidates=candidates,
                                          origin_keyword=keyword,
                                          user_id=user_id,
                                          created_at=now),
                      TASK_SESSION_TTL_SECONDS)
    return session_id

  @staticmethod
  def _buttons(session_id: str, count: int, style: str) -> List[ActionRow]:
    buttons = [
        Button(custom_id=f"complete_task_{session_id}_{i}", label=f"✅ {i + 1}", style=style)
        for i in range(min(count, MAX_TASK_BUTTONS))
    ]
    return [ActionRow(buttons=buttons[i:i + TASK_BUTTONS_PER_ROW])
            for i in range(0, len(buttons), TASK_BUTTONS_PER_ROW)]

  # -------------------------
  # 조회
  # -------------------------
  async def list_open_tasks(self, user_id: Optional[str] = None) -> WorkflowResult:
    return await self._guarded("조회", self._list_open_tasks, user_id)

  async def _list_open_tasks(self, user_id: Optional[str]) -> WorkflowResult:
    items = await self._open_tasks()
    if not items:
      return WorkflowResult(success=True, message="🗒️ 완료할 할 일이 없습니다.")
    session_id = self._store("task_list", [CandidateMatch(item=t, score=1.0) for t in items],
                             "", user_id)
    lines = "\n".join(f"{i + 1}. **{t.title}**" for i, t in enumerate(items))
    return WorkflowResult(
        success=True,
        message=f"🗒️ **완료할 작업을 선택해주세요:**\n\n{lines}\n\n아래 번호를 클릭하여 완료 처리하세요:",
        components=self._buttons(session_id, len(items), "primary"),
        session_id=session_id)

  # -------------------------
  # 완료
  # -------------------------
  async def complete_by_keyword(self, text: str, user_id: Optional[str] = None) -> WorkflowResult:
    return await self._guarded("완료", self._complete_by_keyword, text, user_id)

  async def _complete_by_keyword(self, text: str, user_id: Optional[str]) -> WorkflowResult:
    keyword = extract_task_keyword(text)
    if not keyword:
      raise ParseFailure(f"no task keyword in {text!r}",
                         "완료할 할 일을 이해하지 못했어요. (예: 운동하기 완료 처리해줘)")
    items = await self._open_tasks()
    ranked: List[Tuple[TaskItem, float]] = rank_candidates(keyword, items, lambda t: t.title,
                                                           MATCH_SCORE_FLOOR)
    if not ranked:
      raise NoMatchFound(keyword, f"🔍 **'{keyword}'**와 관련된 할 일을 찾을 수 없습니다.")

    best, best_score = ranked[0]
    if len(ranked) == 1 and best_score >= AUTO_COMMIT_SCORE:
      try:
        await self.tasks.patch_task_status(best.task_list_id, best.id, "completed")
      except AssistantError as exc:
        _log_debug(f"[TASK] auto complete failed, falling back to selection: {exc}")
      else:
        return WorkflowResult(
            success=True,
            message=(f"✅ **자동 완료!**\n할 일 **'{best.title}'**을(를) 완료했습니다. "
                     f"(유사도: {round(best_score * 100)}%)"))

    candidates = [CandidateMatch(item=t, score=s) for t, s in ranked]
    session_id = self._store("task_search", candidates, keyword, user_id)
    lines = "\n".join(f"{i + 1}. **{m.item.title}** - 유사도: {round(m.score * 100)}%"
                      for i, m in enumerate(candidates))
    return WorkflowResult(
        success=True,
        message=f"🔍 **'{keyword}'**와 관련된 할 일을 찾았습니다:\n\n{lines}\n\n완료할 작업의 번호를 클릭해주세요:",
        components=self._buttons(session_id, len(candidates), "success"),
        session_id=session_id)

  async def execute_complete(self, session_id: str, index: int) -> WorkflowResult:
    return await self._guarded("완료", self._execute_complete, session_id, index)

  async def _execute_complete(self, session_id: str, index: int) -> WorkflowResult:
    async with self.sessions.lock(session_id):
      session = self.sessions.get(session_id)
      if not isinstance(session, ConfirmationSession) or session.kind not in ("task_list", "task_search"):
        raise SessionExpired(f"task session {session_id} not found", TASK_EXPIRED)
      if index < 0 or index >= len(session.candidates):
        raise InvalidSelection(f"index {index} out of range", "❌ 잘못된 번호를 선택했습니다.")
      match = session.candidates[index]
      if match.removed:
        raise InvalidSelection(f"index {index} already completed", ALREADY_COMPLETED)
      task = match.item
      await self.tasks.patch_task_status(task.task_list_id, task.id, "completed")
      if session.kind == "task_list":
        match.removed = True
        self.sessions.put(session_id, session, TASK_SESSION_TTL_SECONDS)
      else:
        self.sessions.delete(session_id)

    return WorkflowResult(success=True, message=f"✅ **'{task.title}'** 할 일을 완료처리 했습니다.")

  # -------------------------
  # 추가
  # -------------------------
  async def add_tasks(self, text: str) -> WorkflowResult:
    return await self._guarded("추가", self._add_tasks, text)

  async def _add_tasks(self, text: str) -> WorkflowResult:
    titles = parse_multiple_tasks(text)
    if not titles:
      raise ParseFailure(f"no task title in {text!r}",
                         "추가할 할 일을 이해하지 못했어요. (예: 할 일 추가: 장보기, 빨래)")
    task_lists = await self.tasks.list_task_lists()
    if not task_lists:
      return WorkflowResult(success=False, message=NO_TASK_LISTS)
    list_id = task_lists[0].id

    if len(titles) == 1:
      created = await self.tasks.insert_task(list_id, titles[0])
      return WorkflowResult(success=True,
                            message=f"✅ **Google Tasks에 할 일을 추가했습니다!**\n**할 일:** {created.title}")

    created_items: List[TaskItem] = []
    errors: List[Tuple[str, str]] = []
    for title in titles:
      try:
        created_items.append(await self.tasks.insert_task(list_id, title))
      except AssistantError as exc:
        errors.append((title, exc.user_message))

    message = f"✅ **Google Tasks에 {len(created_items)}개의 할 일을 추가했습니다!**\n\n"
    if created_items:
      message += "**추가된 할 일:**\n"
      message += "".join(f"{i + 1}. {t.title}\n" for i, t in enumerate(created_items))
    if errors:
      message += f"\n⚠️ **실패한 할 일 ({len(errors)}개):**\n"
      message += "".join(f"{i + 1}. {title} - {err}\n" for i, (title, err) in enumerate(errors))
    return WorkflowResult(success=bool(created_items), message=message.rstrip())

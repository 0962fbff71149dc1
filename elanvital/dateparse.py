from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from pydantic import BaseModel, ConfigDict

from .config import PERIOD_RANGE_MODEL, SEOUL
from .llm import PERIOD_RANGE_PROMPT
from .models import EventPayload, EventTime
from .utils import _log_debug, format_korean_date, now_seoul, parse_iso_datetime

# -------------------------
# 패턴
# -------------------------
PM_MARKERS = ("오후", "저녁", "밤")
AM_MARKERS = ("오전", "새벽", "아침")

TIME_RE = re.compile(
    r"(오전|오후|새벽|아침|저녁|밤)?\s*(?<!\d)(\d{1,2})\s*시(?!간)\s*(?:(\d{1,2})\s*분|(반))?")
CLOCK_RE = re.compile(r"(?<![\d:])([01]?\d|2[0-3]):([0-5]\d)(?![\d:])")
END_TIME_RE = re.compile(
    r"(?:부터|~|-)\s*(오전|오후|새벽|아침|저녁|밤)?\s*(\d{1,2})\s*시(?!간)\s*(?:(\d{1,2})\s*분|(반))?")
BARE_HOUR_RE = re.compile(r"(?:^|\s)시(?:에|부터|까지|쯤|경|로|에는)?(?=\s|$)")
HOURS_DURATION_RE = re.compile(r"(\d{1,2})\s*시간\s*(?:(\d{1,2})\s*분|(반))?")
MINUTES_DURATION_RE = re.compile(r"(\d{1,3})\s*분\s*(?:간|동안)")

ISO_DAY_RE = re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})")
MONTH_DAY_RE = re.compile(r"(\d{1,2})\s*월\s*(\d{1,2})\s*일")
WEEKS_LATER_RE = re.compile(r"(\d+)\s*주\s*(?:후|뒤)")
WEEKDAY_RE = re.compile(r"([월화수목금토일])요일")

WEEKDAY_INDEX = {"월": 0, "화": 1, "수": 2, "목": 3, "금": 4, "토": 5, "일": 6}
ALL_DAY_KEYWORDS = ("하루종일", "종일", "전일", "올데이", "all day", "allday")

# 긴 토큰이 먼저 와야 한다 (내일모레 > 내일)
DAY_OFFSETS: List[Tuple[str, int]] = [
    ("내일모레", 2),
    ("내일", 1),
    ("모레", 2),
    ("글피", 3),
    ("오늘", 0),
    ("어제", -1),
]

PERIOD_TOKENS = [
    "이번 주말", "이번주말", "다음 주말", "다음주 주말", "다음주말", "지난 주말", "지난주말",
    "차차주",
    "다음주", "다음 주", "차주",
    "이번주", "이번 주", "금주",
    "지난주", "지난 주", "저번주", "저번 주",
    "이번달", "이번 달",
    "다음달", "다음 달",
    "지난달", "지난 달", "저번달",
    "주말",
    "내일모레", "오늘", "내일", "모레", "글피", "어제",
]


class TemporalExpression(BaseModel):
  """One resolved date/time phrase.

  ``time`` is "00:00" and meaningless when ``is_all_day`` is set.
  """
  model_config = ConfigDict(extra="ignore")

  date: date
  time: str = "00:00"
  is_all_day: bool = True
  original_phrase: str = ""
  duration_minutes: int = 60

  def start_datetime(self) -> datetime:
    hour, minute = (int(part) for part in self.time.split(":"))
    return datetime(self.date.year, self.date.month, self.date.day,
                    hour, minute, tzinfo=SEOUL)

  def end_datetime(self) -> datetime:
    return self.start_datetime() + timedelta(minutes=self.duration_minutes)


# -------------------------
# 시간 추출
# -------------------------
def _apply_meridiem(marker: Optional[str], hour: int) -> int:
  if marker in AM_MARKERS:
    return 0 if hour == 12 else hour
  if marker in PM_MARKERS:
    return hour if hour == 12 else hour + 12
  # 오전/오후 표기가 없으면 1~7시는 오후로 본다
  if 1 <= hour <= 7:
    return hour + 12
  return hour


def _match_to_hhmm(marker: Optional[str], hour_raw: str, minute_raw: Optional[str],
                   half: Optional[str]) -> Optional[Tuple[int, int]]:
  hour = int(hour_raw)
  minute = 30 if half else int(minute_raw or 0)
  if hour > 24 or minute > 59:
    return None
  if hour == 24:
    hour = 0
  hour = _apply_meridiem(marker, hour)
  if hour > 23:
    return None
  return hour, minute


def _extract_start_time(text: str) -> Optional[Tuple[int, int]]:
  for m in TIME_RE.finditer(text):
    resolved = _match_to_hhmm(m.group(1), m.group(2), m.group(3), m.group(4))
    if resolved:
      return resolved
  m = CLOCK_RE.search(text)
  if m:
    return int(m.group(1)), int(m.group(2))
  if BARE_HOUR_RE.search(text):
    return 13, 0
  return None


def _extract_duration_minutes(text: str,
                              start: Tuple[int, int]) -> Optional[int]:
  m = END_TIME_RE.search(text)
  if m:
    end = _match_to_hhmm(m.group(1), m.group(2), m.group(3), m.group(4))
    if end:
      start_minutes = start[0] * 60 + start[1]
      end_minutes = end[0] * 60 + end[1]
      if end_minutes <= start_minutes and end[0] < 12:
        end_minutes += 12 * 60
      if end_minutes <= start_minutes:
        end_minutes += 24 * 60
      return end_minutes - start_minutes

  m = HOURS_DURATION_RE.search(text)
  if m:
    minutes = int(m.group(1)) * 60
    if m.group(3):
      minutes += 30
    elif m.group(2):
      minutes += int(m.group(2))
    if minutes > 0:
      return minutes

  m = MINUTES_DURATION_RE.search(text)
  if m and int(m.group(1)) > 0:
    return int(m.group(1))
  return None


def _is_all_day_phrase(text: str) -> bool:
  lowered = text.lower()
  return any(k in lowered for k in ALL_DAY_KEYWORDS)


# -------------------------
# 날짜 추출
# -------------------------
def _safe_date(year: int, month: int, day: int) -> Optional[date]:
  try:
    return date(year, month, day)
  except ValueError:
    return None


def _explicit_date(text: str, today: date) -> Optional[date]:
  m = ISO_DAY_RE.search(text)
  if m:
    found = _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    if found:
      return found
  m = MONTH_DAY_RE.search(text)
  if m:
    return _safe_date(today.year, int(m.group(1)), int(m.group(2)))
  return None


def _week_shift(text: str) -> Optional[int]:
  """Days to add for a named relative week, None when no week is named."""
  if "차차주" in text:
    return 14
  m = WEEKS_LATER_RE.search(text)
  if m:
    return int(m.group(1)) * 7
  if "차주" in text or "다음주" in text or "다음 주" in text:
    return 7
  if "이번주" in text or "이번 주" in text or "금주" in text:
    return 0
  return None


def find_weekday(text: str) -> Optional[int]:
  """Monday=0 ... Sunday=6."""
  m = WEEKDAY_RE.search(text)
  if not m:
    return None
  return WEEKDAY_INDEX[m.group(1)]


def monday_of(d: date) -> date:
  return d - timedelta(days=d.weekday())


def resolve_date(text: str, today: date) -> date:
  explicit = _explicit_date(text, today)
  if explicit:
    return explicit

  shift = _week_shift(text)
  base = today + timedelta(days=shift or 0)
  weekday = find_weekday(text)
  if weekday is not None:
    return monday_of(base) + timedelta(days=weekday)
  if shift is not None:
    return base

  for token, offset in DAY_OFFSETS:
    if token in text:
      return today + timedelta(days=offset)
  return today


def parse_relative_expression(phrase: str,
                              now: Optional[datetime] = None) -> TemporalExpression:
  """Resolve a Korean relative date/time phrase against ``now`` (Seoul)."""
  now = now or now_seoul()
  text = (phrase or "").strip()
  target = resolve_date(text, now.date())

  start = None if _is_all_day_phrase(text) else _extract_start_time(text)
  if start is None:
    _log_debug(f"[DATEPARSE] {text!r} -> {target} (종일)")
    return TemporalExpression(date=target, is_all_day=True, original_phrase=text)

  duration = _extract_duration_minutes(text, start) or 60
  hhmm = f"{start[0]:02d}:{start[1]:02d}"
  _log_debug(f"[DATEPARSE] {text!r} -> {target} {hhmm} ({duration}분)")
  return TemporalExpression(date=target,
                            time=hhmm,
                            is_all_day=False,
                            original_phrase=text,
                            duration_minutes=duration)


def format_for_calendar(expr: TemporalExpression, summary: str,
                        description: Optional[str] = None) -> EventPayload:
  if expr.is_all_day:
    # 종일 일정 종료일은 배타적(다음날)
    return EventPayload(
        summary=summary,
        start=EventTime(date=expr.date.isoformat()),
        end=EventTime(date=(expr.date + timedelta(days=1)).isoformat()),
        description=description,
    )
  return EventPayload(
      summary=summary,
      start=EventTime(date_time=expr.start_datetime().isoformat(),
                      time_zone="Asia/Seoul"),
      end=EventTime(date_time=expr.end_datetime().isoformat(),
                    time_zone="Asia/Seoul"),
      description=description,
  )


def expression_from_event(start: EventTime,
                          end: Optional[EventTime] = None,
                          original_phrase: str = "") -> Optional[TemporalExpression]:
  """Rebuild an expression from calendar ``{date}``/``{dateTime}`` fields."""
  if start.is_all_day:
    d = start.as_date()
    if d is None:
      return None
    return TemporalExpression(date=d, is_all_day=True, original_phrase=original_phrase)

  start_dt = start.as_datetime()
  if start_dt is None:
    return None
  duration = 60
  end_dt = end.as_datetime() if end else None
  if end_dt and end_dt > start_dt:
    duration = int((end_dt - start_dt).total_seconds() // 60)
  return TemporalExpression(date=start_dt.date(),
                            time=start_dt.strftime("%H:%M"),
                            is_all_day=False,
                            original_phrase=original_phrase,
                            duration_minutes=duration)


def extract_period_phrase(text: str) -> str:
  """Pick the period part of an utterance for range resolution.

  Earliest named period token (with a weekday right after it), else the first
  date pattern, else the whole text.
  """
  t = (text or "").strip()
  best: Optional[Tuple[int, str]] = None
  for token in PERIOD_TOKENS:
    idx = t.find(token)
    if idx == -1:
      continue
    if best is None or idx < best[0] or (idx == best[0] and len(token) > len(best[1])):
      best = (idx, token)
  if best is not None:
    idx, token = best
    rest = t[idx + len(token):]
    m = re.match(r"\s*([월화수목금토일]요일)", rest)
    if m:
      return f"{token} {m.group(1)}"
    return token

  for pattern in (ISO_DAY_RE, MONTH_DAY_RE, WEEKDAY_RE):
    m = pattern.search(t)
    if m:
      return m.group(0)
  return t


_PARTICLE_RE = re.compile(r"(?<!\S)(?:에|에는|에서|부터|까지|동안|간|쯤|경|중에|로|으로)(?!\S)")


def strip_temporal_phrases(text: str) -> str:
  """Remove date/time/duration expressions, leaving the subject words."""
  t = f" {text or ''} "
  t = re.sub(END_TIME_RE.pattern + r"\s*(?:까지)?", " ", t)
  t = HOURS_DURATION_RE.sub(" ", t)
  t = MINUTES_DURATION_RE.sub(" ", t)
  t = TIME_RE.sub(" ", t)
  t = CLOCK_RE.sub(" ", t)
  t = BARE_HOUR_RE.sub(" ", t)
  for pattern in (ISO_DAY_RE, MONTH_DAY_RE, WEEKS_LATER_RE, WEEKDAY_RE):
    t = pattern.sub(" ", t)
  for token in sorted(PERIOD_TOKENS + list(ALL_DAY_KEYWORDS), key=len, reverse=True):
    t = t.replace(token, " ")
  t = _PARTICLE_RE.sub(" ", t)
  return re.sub(r"\s+", " ", t).strip()


# -------------------------
# 조회 기간 (반열림 구간)
# -------------------------
class CalendarRange(BaseModel):
  start: datetime
  end: datetime
  description: str = ""

  def time_min(self) -> str:
    return self.start.isoformat()

  def time_max(self) -> str:
    return self.end.isoformat()


class PeriodRangeOutput(BaseModel):
  model_config = ConfigDict(extra="ignore")

  start: str
  end: str
  description: str = ""


class PeriodResolver(Protocol):

  async def to_calendar_range(self, period: str,
                              now: Optional[datetime] = None) -> Optional[CalendarRange]:
    ...


def _day_start(d: date) -> datetime:
  return datetime(d.year, d.month, d.day, tzinfo=SEOUL)


def _day_range(d: date, description: str) -> CalendarRange:
  return CalendarRange(start=_day_start(d),
                       end=_day_start(d + timedelta(days=1)),
                       description=description)


def _month_range(year: int, month: int, description: str) -> CalendarRange:
  start = date(year, month, 1)
  end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
  return CalendarRange(start=_day_start(start), end=_day_start(end),
                       description=description)


def _shift_month(year: int, month: int, delta: int) -> Tuple[int, int]:
  index = year * 12 + (month - 1) + delta
  return index // 12, index % 12 + 1


class RuleBasedPeriodResolver:
  """Deterministic phrase -> range. Weeks run Monday to Sunday."""

  async def to_calendar_range(self, period: str,
                              now: Optional[datetime] = None) -> Optional[CalendarRange]:
    return self.resolve(period, now)

  def resolve(self, period: str,
              now: Optional[datetime] = None) -> Optional[CalendarRange]:
    now = now or now_seoul()
    today = now.date()
    text = (period or "").strip()
    if not text:
      return None

    explicit = _explicit_date(text, today)
    if explicit:
      return _day_range(explicit, format_korean_date(explicit))

    shift = _week_shift(text)
    if shift is None and ("지난주" in text or "지난 주" in text or "저번주" in text
                          or "저번 주" in text):
      shift = -7
    if "주말" in text:
      saturday = monday_of(today + timedelta(days=shift or 0)) + timedelta(days=5)
      return CalendarRange(start=_day_start(saturday),
                           end=_day_start(saturday + timedelta(days=2)),
                           description=text)

    weekday = find_weekday(text)
    if weekday is not None:
      target = monday_of(today + timedelta(days=shift or 0)) + timedelta(days=weekday)
      return _day_range(target, text)
    if shift is not None:
      monday = monday_of(today + timedelta(days=shift))
      return CalendarRange(start=_day_start(monday),
                           end=_day_start(monday + timedelta(days=7)),
                           description=text)

    if "이번달" in text or "이번 달" in text:
      return _month_range(today.year, today.month, text)
    if "다음달" in text or "다음 달" in text:
      return _month_range(*_shift_month(today.year, today.month, 1), text)
    if "지난달" in text or "지난 달" in text or "저번달" in text:
      return _month_range(*_shift_month(today.year, today.month, -1), text)

    for token, offset in DAY_OFFSETS:
      if token in text:
        return _day_range(today + timedelta(days=offset), token)
    return None


Completer = Callable[..., Awaitable[Tuple[Optional[Any], str, Dict[str, Any]]]]


class ModelPeriodResolver:
  """Language-model backed range resolution, rules as the fallback."""

  def __init__(self,
               completer: Completer,
               fallback: Optional[RuleBasedPeriodResolver] = None,
               model: str = PERIOD_RANGE_MODEL) -> None:
    self.completer = completer
    self.fallback = fallback or RuleBasedPeriodResolver()
    self.model = model

  async def to_calendar_range(self, period: str,
                              now: Optional[datetime] = None) -> Optional[CalendarRange]:
    now = now or now_seoul()
    parsed, _raw, meta = await self.completer(
        model=self.model,
        system_prompt=PERIOD_RANGE_PROMPT,
        developer_prompt=None,
        user_payload={
            "period": period,
            "now": now.strftime("%Y-%m-%dT%H:%M"),
            "weekday": format_korean_date(now.date()),
        },
        response_model=PeriodRangeOutput,
        max_completion_tokens=300,
    )
    resolved = self._to_range(parsed)
    if resolved is None:
      _log_debug(f"[PERIOD] model range unusable ({meta.get('llm_error')}), rules fallback")
      return self.fallback.resolve(period, now)
    return resolved

  @staticmethod
  def _to_range(parsed: Optional[PeriodRangeOutput]) -> Optional[CalendarRange]:
    if parsed is None:
      return None
    start = parse_iso_datetime(parsed.start)
    end = parse_iso_datetime(parsed.end)
    if start is None or end is None or end <= start:
      return None
    return CalendarRange(start=start, end=end, description=parsed.description)

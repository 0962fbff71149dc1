from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional
import re

from ..config import HHMM_RE, ISO_DATE_RE, SEOUL
from ..errors import InputValidationError

_KOREAN_TIME_RE = re.compile(
    r"^(오전|오후)?\s*(\d{1,2})\s*시\s*(?:(\d{1,2})\s*분?|(반))?$")
_COLON_TIME_RE = re.compile(r"^(\d{1,2})\s*[:.]\s*(\d{1,2})$")
_COMPACT_TIME_RE = re.compile(r"^\d{3,4}$")
_HOUR_ONLY_RE = re.compile(r"^\d{1,2}$")


def normalize_input_as_text(value: Optional[str]) -> str:
  if not isinstance(value, str):
    return ""
  return value.strip()


def normalize_form_time(value: Optional[str]) -> str:
  """Informal time notation -> ``HH:MM``; empty stays empty.

  Unrecognised input is returned stripped so validation can reject it.
  """
  raw = normalize_input_as_text(value)
  if not raw:
    return ""

  m = _KOREAN_TIME_RE.match(raw)
  if m:
    hour = int(m.group(2))
    minute = 30 if m.group(4) else int(m.group(3) or 0)
    if m.group(1) == "오후" and hour < 12:
      hour += 12
    elif m.group(1) == "오전" and hour == 12:
      hour = 0
    return f"{hour:02d}:{minute:02d}"

  m = _COLON_TIME_RE.match(raw)
  if m:
    return f"{int(m.group(1)):02d}:{int(m.group(2)):02d}"

  if _COMPACT_TIME_RE.match(raw):
    padded = raw.zfill(4)
    return f"{padded[:2]}:{padded[2:]}"

  if _HOUR_ONLY_RE.match(raw):
    return f"{int(raw):02d}:00"
  return raw


def validate_form_date(value: Optional[str]) -> date:
  raw = normalize_input_as_text(value)
  if not ISO_DATE_RE.match(raw):
    raise InputValidationError(
        "date", "❌ 날짜 형식이 올바르지 않습니다. YYYY-MM-DD 형식으로 입력해주세요.")
  try:
    return datetime.strptime(raw, "%Y-%m-%d").date()
  except ValueError as exc:
    raise InputValidationError(
        "date", "❌ 존재하지 않는 날짜입니다. 날짜를 다시 확인해주세요.") from exc


def validate_form_time(value: Optional[str], field: str) -> Optional[str]:
  """Normalized ``HH:MM`` or None for an empty field."""
  normalized = normalize_form_time(value)
  if not normalized:
    return None
  if not HHMM_RE.match(normalized):
    label = "시작 시간" if field == "start_time" else "종료 시간"
    raise InputValidationError(
        field, f"❌ {label} 형식이 올바르지 않습니다. HH:MM 형식으로 입력해주세요.")
  hour, minute = normalized.split(":")
  return f"{int(hour):02d}:{minute}"


def coerce_rfc3339(value: Any) -> Optional[datetime]:
  if not isinstance(value, str):
    return None
  raw = value.strip()
  if not raw:
    return None
  # "13: 00: 00+09: 00" 같은 출력 보정
  raw = re.sub(r"\s*:\s*", ":", raw)
  try:
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
  except ValueError:
    return None
  if parsed.tzinfo is None:
    parsed = parsed.replace(tzinfo=SEOUL)
  return parsed.astimezone(SEOUL)

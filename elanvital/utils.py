from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional
import re

from .config import LLM_DEBUG, MAX_TITLE_DISPLAY, MESSAGE_CHUNK_LIMIT, SEOUL

WEEKDAY_KO = ["월", "화", "수", "목", "금", "토", "일"]


def _log_debug(message: str) -> None:
    if LLM_DEBUG:
        print(message, flush=True)


def now_seoul() -> datetime:
    return datetime.now(SEOUL)


def normalize_text(text: str) -> str:
    t = (text or "").strip()
    t = re.sub(r"\s+", " ", t)
    return t


def truncate_title(title: Optional[str], limit: int = MAX_TITLE_DISPLAY) -> str:
    t = (title or "").strip()
    if len(t) <= limit:
        return t
    return t[:limit] + "..."


def format_month_day(d: date) -> str:
    """``10/21(수)`` style label."""
    return f"{d.month}/{d.day}({WEEKDAY_KO[d.weekday()]})"


def format_korean_date(d: date) -> str:
    return f"{d.year}년 {d.month}월 {d.day}일 ({WEEKDAY_KO[d.weekday()]})"


def format_hhmm(dt: datetime) -> str:
    return dt.strftime("%H:%M")


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=SEOUL)
    return dt.astimezone(SEOUL)


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    if not isinstance(value, str) or len(value.strip()) < 10:
        return None
    try:
        return datetime.strptime(value.strip()[:10], "%Y-%m-%d").date()
    except ValueError:
        return None


def split_message_for_mobile(message: str,
                             limit: int = MESSAGE_CHUNK_LIMIT) -> List[str]:
    """Split a long reply into chunks of at most ``limit`` chars on line boundaries."""
    if len(message) <= limit:
        return [message]

    chunks: List[str] = []
    current = ""
    for line in message.split("\n"):
        # 한 줄 자체가 한도를 넘는 경우
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit:
            chunks.append(current)
            current = line
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks

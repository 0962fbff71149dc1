from __future__ import annotations

import re
from typing import List

_BULLET_RE = re.compile(
    r"^\s*(?:(?:[-*•·▪◦]+|\d{1,3}[.)]|\(\d{1,3}\)|\[\s?[xX]?\s?\])\s*)+")
_COMMAND_RE = re.compile(
    r"\s*(?:을|를)?\s*(?:할\s*일|할일|투두|todo|태스크|task)?\s*(?:에|으로|로)?\s*"
    r"(?:추가|등록|넣어|만들어|생성)\s*(?:해\s*줘|해줘|해\s*주세요|해주세요|하기|해|줘)?\s*[.!~]*\s*$",
    re.IGNORECASE)
_LEADING_TASK_WORD_RE = re.compile(r"^(?:할\s*일|할일|투두|todo|태스크|task)\s*[:：]?\s*",
                                   re.IGNORECASE)
_INLINE_SPLIT_RE = re.compile(r"\s*(?:,|、)\s*|\s+그리고\s+")
_COMMAND_VERBS = ("추가", "등록", "넣어", "만들어", "생성", "해줘", "해주세요")


def _strip_bullet(line: str) -> str:
  return _BULLET_RE.sub("", line, count=1).strip()


def _has_bullet(line: str) -> bool:
  return bool(_BULLET_RE.match(line)) and bool(_strip_bullet(line))


def _is_instruction_line(line: str) -> bool:
  """Header or instruction lines such as "할 일 추가해줘:" carry no item."""
  stripped = line.strip()
  if stripped.endswith(":") or stripped.endswith("："):
    return True
  if _has_bullet(line):
    return False
  return any(verb in stripped for verb in _COMMAND_VERBS)


def _clean_single(text: str) -> str:
  t = _LEADING_TASK_WORD_RE.sub("", text.strip())
  t = _COMMAND_RE.sub("", t).strip()
  return t.strip(" .,!~")


def _dedupe(items: List[str]) -> List[str]:
  seen = set()
  result: List[str] = []
  for item in items:
    key = item.lower()
    if not item or key in seen:
      continue
    seen.add(key)
    result.append(item)
  return result


def parse_multiple_tasks(text: str) -> List[str]:
  """Split a request into task titles.

  Multi-line input: bullet/numbered/checkbox markers are stripped and header or
  instruction lines are skipped. A single line has its command phrase removed
  and is split on commas.
  """
  raw = (text or "").strip()
  if not raw:
    return []

  lines = [line for line in raw.splitlines() if line.strip()]
  if len(lines) > 1:
    items = []
    for line in lines:
      if _is_instruction_line(line):
        continue
      item = _strip_bullet(line).strip(" .,!~")
      if item:
        items.append(item)
    return _dedupe(items)

  single = _clean_single(_strip_bullet(lines[0]))
  if not single:
    return []
  parts = [p.strip(" .,!~") for p in _INLINE_SPLIT_RE.split(single)]
  return _dedupe([p for p in parts if p])

from __future__ import annotations

import asyncio
import json
import os
import re
from typing import Any, Dict, Iterator, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..config import LLM_TIMEOUT_SECONDS
from ..llm import get_async_client
from ..utils import _log_debug

try:
  from google import genai  # type: ignore
  from google.genai import types as genai_types  # type: ignore
except ImportError:  # pragma: no cover - optional dependency
  genai = None  # type: ignore
  genai_types = None  # type: ignore

T = TypeVar("T", bound=BaseModel)

# OpenAI JSON 모드는 지시문 어딘가에 'json' 이 있어야 한다
JSON_ONLY_SUFFIX = "\n\n응답은 반드시 하나의 JSON 객체로만 작성한다."
DEFAULT_GEMINI_MODEL = "gemini-flash-latest"

_FENCE_RE = re.compile(r"^```[\w-]*\s*|\s*```$")

_gemini_clients: Dict[str, Any] = {}


class _Unavailable(Exception):
  """Provider cannot be called at all (missing key or package)."""

  def __init__(self, reason: str) -> None:
    super().__init__(reason)
    self.reason = reason


def select_provider(model: str) -> str:
  forced = os.getenv("AGENT_LLM_PROVIDER", "auto").strip().lower()
  if forced in ("openai", "gemini"):
    return forced
  name = (model or "").strip().lower()
  return "gemini" if name.removeprefix("models/").startswith("gemini") else "openai"


# -------------------------
# JSON 복구
# -------------------------
def _json_candidates(raw_output: str) -> Iterator[str]:
  """As-is, without a markdown fence, then the outermost ``{...}``."""
  seen = set()
  text = (raw_output or "").strip()
  unfenced = _FENCE_RE.sub("", text).strip()
  left, right = unfenced.find("{"), unfenced.rfind("}")
  sliced = unfenced[left:right + 1] if 0 <= left < right else ""
  for candidate in (text, unfenced, sliced):
    if candidate and candidate not in seen:
      seen.add(candidate)
      yield candidate


def validate_structured_response(response_model: Type[T],
                                 raw_output: str) -> Optional[T]:
  for candidate in _json_candidates(raw_output):
    try:
      return response_model.model_validate_json(candidate)
    except ValidationError:
      continue
  return None


# -------------------------
# 프로바이더 호출
# -------------------------
def _message_text(content: Any) -> str:
  if isinstance(content, str):
    return content.strip()
  if isinstance(content, list):
    parts = [part.get("text", "") if isinstance(part, dict) else part for part in content]
    return " ".join(p.strip() for p in parts if isinstance(p, str) and p.strip())
  return ""


async def _openai_text(model: str, instruction: str, user_content: str,
                       max_tokens: int, timeout: float) -> str:
  try:
    client = get_async_client()
  except RuntimeError:
    raise _Unavailable("openai_api_key_missing")
  completion = await asyncio.wait_for(
      client.chat.completions.create(
          model=model,
          messages=[
              {"role": "system", "content": instruction},
              {"role": "user", "content": user_content},
          ],
          response_format={"type": "json_object"},
          max_completion_tokens=max_tokens,
      ),
      timeout=timeout)
  return _message_text(completion.choices[0].message.content)


def _gemini_client() -> Any:
  if genai is None:
    raise _Unavailable("google_genai_not_installed")
  api_key = os.getenv("GEMINI_API_KEY", "").strip()
  if not api_key:
    raise _Unavailable("gemini_api_key_missing")
  if api_key not in _gemini_clients:
    _gemini_clients.clear()
    _gemini_clients[api_key] = genai.Client(api_key=api_key)
  return _gemini_clients[api_key]


async def _gemini_text(model: str, instruction: str, user_content: str,
                       max_tokens: int, timeout: float) -> str:
  client = _gemini_client()
  name = (model or "").strip() or DEFAULT_GEMINI_MODEL
  if not name.startswith("models/"):
    name = f"models/{name}"
  config: Any = {"response_mime_type": "application/json", "max_output_tokens": max_tokens}
  if genai_types is not None:
    config = genai_types.GenerateContentConfig(**config)

  def call() -> str:
    response = client.models.generate_content(
        model=name, contents=f"{instruction}\n\nUser:\n{user_content}", config=config)
    return str(getattr(response, "text", "") or "").strip()

  return await asyncio.wait_for(asyncio.to_thread(call), timeout=timeout)


_PROVIDERS = {
    "openai": _openai_text,
    "gemini": _gemini_text,
}


async def run_structured_completion(
    *,
    model: str,
    system_prompt: str,
    developer_prompt: Optional[str],
    user_payload: Dict[str, Any],
    response_model: Type[T],
    max_completion_tokens: int,
    timeout: float = LLM_TIMEOUT_SECONDS,
) -> Tuple[Optional[T], str, Dict[str, Any]]:
  """Ask for one JSON object shaped like ``response_model``.

  Never raises. Returns ``(parsed, raw_output, meta)``; ``parsed`` is None when
  the provider is unavailable (``meta["unavailable_reason"]``), the call failed,
  or the output could not be validated (``meta["llm_error"]``).
  """
  provider = select_provider(model)
  meta: Dict[str, Any] = {"model": model, "provider": provider}
  instruction = system_prompt
  if developer_prompt and developer_prompt.strip():
    instruction = f"{instruction}\n\n{developer_prompt.strip()}"
  if "json" not in instruction.lower():
    instruction += JSON_ONLY_SUFFIX
  user_content = json.dumps(user_payload, ensure_ascii=False)

  try:
    raw_output = await _PROVIDERS[provider](model, instruction, user_content,
                                            max_completion_tokens, timeout)
  except _Unavailable as exc:
    meta.update(llm_available=False, unavailable_reason=exc.reason)
    return None, "", meta
  except Exception as exc:
    print(f"[AGENT LLM ERROR] model={model} provider={provider} error={exc!r}", flush=True)
    meta.update(llm_available=True, llm_error=str(exc) or type(exc).__name__)
    return None, "", meta

  _log_debug(f"[AGENT LLM RAW] {provider}/{model} -> {raw_output or '(empty)'}")
  meta["llm_available"] = True
  parsed = validate_structured_response(response_model, raw_output)
  if parsed is None:
    meta["llm_error"] = "unparseable_output"
  return parsed, raw_output, meta

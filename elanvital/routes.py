from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from .agent.dispatcher import InteractionDispatcher
from .agent.schemas import Attachment, WorkflowResult
from .config import MESSAGE_CHUNK_LIMIT
from .memory import InMemoryContextProvider
from .utils import _log_debug, split_message_for_mobile

logger = logging.getLogger(__name__)

router = APIRouter()


# -------------------------
# 요청 모델
# -------------------------
class MessageRequest(BaseModel):
  text: str = ""
  user_id: Optional[str] = None
  attachments: List[Attachment] = Field(default_factory=list)


class ButtonRequest(BaseModel):
  custom_id: str
  user_id: Optional[str] = None


class FormRequest(BaseModel):
  custom_id: str
  fields: Dict[str, str] = Field(default_factory=dict)
  user_id: Optional[str] = None


def _dispatcher(request: Request) -> InteractionDispatcher:
  return request.app.state.dispatcher


def _render(result: WorkflowResult, **extra: Any) -> Dict[str, Any]:
  body = result.model_dump()
  body["chunks"] = split_message_for_mobile(result.message, MESSAGE_CHUNK_LIMIT)
  body.update(extra)
  return body


@router.get("/api/health")
def health(request: Request):
  return {"ok": True, "sessions": len(_dispatcher(request).schedule.sessions)}


@router.post("/api/message")
async def post_message(body: MessageRequest, request: Request):
  text = (body.text or "").strip()
  if not text and not body.attachments:
    raise HTTPException(status_code=422, detail="text or attachments is required.")

  classification, result = await _dispatcher(request).handle_message(text, body.user_id,
                                                                     body.attachments)
  context = getattr(request.app.state, "context", None)
  if isinstance(context, InMemoryContextProvider) and body.user_id:
    for att in body.attachments:
      if att.is_image and att.url:
        context.remember_image(body.user_id, att.url, att.content_type)
    context.record_turn(body.user_id, text, result.message, classification.category)
  _log_debug(f"[ROUTES] message -> {classification.category} success={result.success}")
  return _render(result,
                 category=classification.category,
                 extracted_info=classification.extracted_info)


@router.post("/api/interactions/button")
async def post_button(body: ButtonRequest, request: Request):
  result = await _dispatcher(request).on_button_activated(body.custom_id)
  return _render(result)


@router.post("/api/interactions/form")
async def post_form(body: FormRequest, request: Request):
  result = await _dispatcher(request).on_form_submitted(body.custom_id, body.fields)
  return _render(result)

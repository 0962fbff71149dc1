from __future__ import annotations

from collections import deque
from typing import Any, Deque, Dict, List, Optional, Protocol

from pydantic import BaseModel

from .config import MEMORY_MAX_TURNS


class ConversationTurn(BaseModel):
  user_message: str
  bot_response: str
  category: str = "GENERAL"


class RememberedImage(BaseModel):
  url: str
  mime_type: str = "image/png"


class RememberedDocument(BaseModel):
  title: str
  content: str = ""


class ContextProvider(Protocol):
  """Read side consumed by the classifier."""

  def get_recent_conversations(self, user_id: str,
                               limit: int) -> List[ConversationTurn]:
    ...

  def get_last_image(self, user_id: str) -> Optional[RememberedImage]:
    ...

  def get_last_document(self, user_id: str) -> Optional[RememberedDocument]:
    ...


class InMemoryContextProvider:
  """Per-user recent turns plus the last image/document, process local."""

  def __init__(self, max_turns: int = MEMORY_MAX_TURNS) -> None:
    self.max_turns = max_turns
    self._turns: Dict[str, Deque[ConversationTurn]] = {}
    self._images: Dict[str, RememberedImage] = {}
    self._documents: Dict[str, RememberedDocument] = {}

  def get_recent_conversations(self, user_id: str,
                               limit: int) -> List[ConversationTurn]:
    turns = self._turns.get(user_id)
    if not turns or limit <= 0:
      return []
    return list(turns)[-limit:]

  def get_last_image(self, user_id: str) -> Optional[RememberedImage]:
    return self._images.get(user_id)

  def get_last_document(self, user_id: str) -> Optional[RememberedDocument]:
    return self._documents.get(user_id)

  def record_turn(self, user_id: str, user_message: str, bot_response: str,
                  category: str = "GENERAL") -> None:
    turns = self._turns.get(user_id)
    if turns is None:
      turns = deque(maxlen=self.max_turns)
      self._turns[user_id] = turns
    turns.append(ConversationTurn(user_message=user_message,
                                  bot_response=bot_response,
                                  category=category))

  def remember_image(self, user_id: str, url: str,
                     mime_type: str = "image/png") -> None:
    self._images[user_id] = RememberedImage(url=url, mime_type=mime_type)

  def remember_document(self, user_id: str, title: str,
                        content: str = "") -> None:
    self._documents[user_id] = RememberedDocument(title=title, content=content)

  def clear(self, user_id: str) -> Dict[str, Any]:
    removed = {
        "turns": len(self._turns.pop(user_id, None) or []),
        "image": self._images.pop(user_id, None) is not None,
        "document": self._documents.pop(user_id, None) is not None,
    }
    return removed

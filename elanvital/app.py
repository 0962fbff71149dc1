from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Optional

from fastapi import FastAPI

from .agent.dispatcher import InteractionDispatcher, build_dispatcher
from .agent.schemas import ClassificationRequest, ClassificationResult, WorkflowResult
from .config import SESSION_SWEEP_INTERVAL_SECONDS
from .memory import InMemoryContextProvider
from .routes import router

logger = logging.getLogger(__name__)


def _memory_handler(context: InMemoryContextProvider):

  async def handle(classification: ClassificationResult,
                   request: ClassificationRequest) -> WorkflowResult:
    if not request.user_id:
      return WorkflowResult(success=False, message="🧠 사용자 정보가 없어 메모리를 정리할 수 없습니다.")
    removed = context.clear(request.user_id)
    return WorkflowResult(
        success=True,
        message=f"🧠 **메모리를 정리했습니다!**\n대화 {removed['turns']}개를 삭제하고 새 대화를 시작합니다.")

  return handle


def create_app(dispatcher: Optional[InteractionDispatcher] = None,
               context: Optional[InMemoryContextProvider] = None,
               sweep_interval: float = SESSION_SWEEP_INTERVAL_SECONDS) -> FastAPI:
  context = context if context is not None else InMemoryContextProvider()
  if dispatcher is None:
    dispatcher = build_dispatcher(context=context)
  if "MEMORY" not in dispatcher.handlers:
    dispatcher.register("MEMORY", _memory_handler(context))

  @contextlib.asynccontextmanager
  async def lifespan(app: FastAPI):
    sweeper = asyncio.create_task(dispatcher.schedule.sessions.run_sweeper(sweep_interval))
    try:
      yield
    finally:
      sweeper.cancel()
      with contextlib.suppress(asyncio.CancelledError):
        await sweeper

  app = FastAPI(title="Elanvital Agent", lifespan=lifespan)
  app.state.dispatcher = dispatcher
  app.state.context = context
  app.include_router(router)
  return app

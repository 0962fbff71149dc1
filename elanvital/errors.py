from __future__ import annotations

from typing import Optional


class AssistantError(Exception):
    """Base error. ``user_message`` is what the chat user sees."""

    default_message = "처리 중 오류가 발생했습니다."

    def __init__(self, detail: str = "", user_message: Optional[str] = None) -> None:
        super().__init__(detail or user_message or self.default_message)
        self.detail = detail
        self.user_message = user_message or self.default_message


class ParseFailure(AssistantError):
    default_message = "요청을 이해하지 못했어요. 좀 더 명확하게 말씀해주시겠어요?"


class NoMatchFound(AssistantError):

    def __init__(self, keyword: str, user_message: Optional[str] = None) -> None:
        super().__init__(
            f"no candidate above floor for {keyword!r}",
            user_message or f'"{keyword}"와 유사한 일정을 찾을 수 없습니다.')
        self.keyword = keyword


class SessionExpired(AssistantError):
    default_message = "⏰ 세션이 만료되었습니다. 다시 시도해주세요."


class InvalidSelection(AssistantError):
    default_message = "❌ 잘못된 선택입니다."


class RemoteBackendError(AssistantError):
    default_message = "❌ 처리 중 오류가 발생했습니다."


class InputValidationError(AssistantError):

    def __init__(self, field: str, user_message: str) -> None:
        super().__init__(f"invalid {field}", user_message)
        self.field = field

"""
일정/할 일 의도 분류 및 확인 워크플로우
"""

from .classifier import FallbackClassifier, KeywordClassifier, ModelClassifier
from .dispatcher import InteractionDispatcher, build_dispatcher
from .schedule_workflow import ScheduleWorkflow
from .task_workflow import TaskWorkflow

__all__ = [
    "FallbackClassifier",
    "KeywordClassifier",
    "ModelClassifier",
    "InteractionDispatcher",
    "build_dispatcher",
    "ScheduleWorkflow",
    "TaskWorkflow",
]

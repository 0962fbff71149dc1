from __future__ import annotations

import os
import pathlib
import re
from zoneinfo import ZoneInfo

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
SEOUL = ZoneInfo("Asia/Seoul")
LLM_DEBUG = os.getenv("LLM_DEBUG", "0") == "1"

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
HHMM_RE = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")

# -------------------------
# LLM 설정
# -------------------------
CLASSIFIER_MODEL = os.getenv("CLASSIFIER_MODEL", "gpt-4o-mini").strip()
EVENT_PARSER_MODEL = os.getenv("EVENT_PARSER_MODEL", "gpt-4o-mini").strip()
PERIOD_RANGE_MODEL = os.getenv("PERIOD_RANGE_MODEL", "gpt-4o-mini").strip()
DELETE_PARSER_MODEL = os.getenv("DELETE_PARSER_MODEL", "gpt-4o-mini").strip()
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "20"))
# "llm" | "rules"
PERIOD_RESOLVER = os.getenv("PERIOD_RESOLVER", "llm").strip().lower()

# -------------------------
# Google Calendar / Tasks 설정
# -------------------------
BASE_DIR = pathlib.Path(__file__).resolve().parent.parent
GOOGLE_TOKEN_FILE = pathlib.Path(
    os.getenv("GOOGLE_TOKEN_FILE", str(BASE_DIR / "token.json")))
GOOGLE_CALENDAR_ID = os.getenv("GOOGLE_CALENDAR_ID", "primary")
GCAL_SCOPES = [
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/tasks",
]
LIST_EVENTS_MAX_RESULTS = int(os.getenv("LIST_EVENTS_MAX_RESULTS", "10"))
SEARCH_EVENTS_MAX_RESULTS = int(os.getenv("SEARCH_EVENTS_MAX_RESULTS", "50"))
TASK_LISTS_MAX_RESULTS = 10

# -------------------------
# 매칭/세션 기본값
# -------------------------
MATCH_SCORE_FLOOR = float(os.getenv("MATCH_SCORE_FLOOR", "0.3"))
AUTO_COMMIT_SCORE = float(os.getenv("AUTO_COMMIT_SCORE", "0.8"))
MAX_DELETE_CANDIDATES = 5
DELETE_SESSION_TTL_SECONDS = int(os.getenv("DELETE_SESSION_TTL_SECONDS", str(10 * 60)))
SCHEDULE_SESSION_TTL_SECONDS = int(
    os.getenv("SCHEDULE_SESSION_TTL_SECONDS", str(30 * 60)))
TASK_SESSION_TTL_SECONDS = int(os.getenv("TASK_SESSION_TTL_SECONDS", str(10 * 60)))
SESSION_SWEEP_INTERVAL_SECONDS = int(
    os.getenv("SESSION_SWEEP_INTERVAL_SECONDS", "60"))

# -------------------------
# 표시 제한
# -------------------------
MAX_TITLE_DISPLAY = 30
MAX_BUTTON_TITLE = 60
MAX_TASK_BUTTONS = 10
QUERY_BUTTONS_PER_ROW = 4
TASK_BUTTONS_PER_ROW = 5
MESSAGE_CHUNK_LIMIT = 1800
RECENT_CONVERSATION_LIMIT = 3
MEMORY_MAX_TURNS = 20

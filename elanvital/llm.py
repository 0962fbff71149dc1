from __future__ import annotations

from typing import Optional

from openai import AsyncOpenAI

from .config import OPENAI_API_KEY

async_client: Optional[AsyncOpenAI] = AsyncOpenAI(api_key=OPENAI_API_KEY) if OPENAI_API_KEY else None


def get_async_client() -> AsyncOpenAI:
  if async_client is None:
    raise RuntimeError("OPENAI_API_KEY is not set")
  return async_client

# -------------------------
# LLM 프롬프트
# -------------------------
CLASSIFY_PROMPT = """너는 사용자 입력을 카테고리로 분류하는 분류기다. 반드시 JSON 한 개만 반환한다. 설명 금지.
입력 형식:
{
  "now": "YYYY-MM-DDTHH:MM",
  "weekday": string,
  "text": string,
  "attachments": [{"name": string, "content_type": string}],
  "has_last_image": boolean,
  "last_document": string | null,
  "recent_conversations": [{"category": string, "user": string, "bot": string}]
}

카테고리:
1. SCHEDULE - 일정 추가/조회/삭제/수정. 날짜, 시간 표현 포함.
   - query: "오늘/내일/이번주/다음주 일정 알려줘" -> period 추출
   - add: "내일 6시에 영준이와 저녁식사" -> content 에 원문 전체 보존
   - delete: "오늘 회의 취소해줘"
   - update: "내일 회의 4시로 옮겨줘"
2. TASK - 할 일 관리. taskType 은 query | add | complete.
   - add: content 에 추가할 할 일 (여러 줄 가능)
   - complete: content 에 완료할 할 일 키워드
3. DRIVE - 구글 드라이브 파일 검색/읽기. searchKeyword, documentKeyword 추출.
4. IMAGE - 이미지 생성, 수정 요청 ("그려줘", "이미지", "더 밝게").
5. MEMORY - 메모리/대화 기록 정리, 새 대화 시작.
6. HELP - 사용법, 기능 안내.
7. GENERAL - 위에 해당하지 않는 모든 것. 확실하지 않으면 GENERAL.

규칙:
- 최근 대화는 참고용으로만 사용하고 강제 분류하지 않는다.
- 애매한 일정 요청은 scheduleType 을 query 로 둔다.
- 일정 추가(add)는 시간과 내용을 분리하지 말고 원문 전체를 content 에 보존한다.

출력 스키마:
{
  "category": "SCHEDULE" | "TASK" | "DRIVE" | "IMAGE" | "MEMORY" | "HELP" | "GENERAL",
  "confidence": number,
  "reason": string,
  "scheduleType": "query" | "add" | "delete" | "update" | null,
  "taskType": "query" | "add" | "complete" | null,
  "extractedInfo": {
    "period": string | null,
    "content": string | null,
    "searchKeyword": string | null,
    "documentKeyword": string | null
  }
}
"""

EVENT_PARSE_PROMPT = """너는 한국어 자연어를 일정 데이터로 변환한다. 반드시 JSON 한 개만 반환한다. 설명 금지.
입력 형식:
{
  "now": "YYYY-MM-DDTHH:MM",
  "weekday": string,
  "text": string
}

시간 해석:
- "6시" 처럼 오전/오후 표기가 없는 1~7시는 오후로 본다.
- "오전 6시" = 06:00, "오후 6시" = 18:00, "새벽 2시" = 02:00, "밤 11시" = 23:00
- "1시반" = 13:30
- "이번주" = 현재 주 월요일~일요일, "다음주" = 다음 주 월요일~일요일

지속시간:
- "9시부터 3시간동안" -> 09:00 ~ 12:00
- "2시부터 1시간 30분" -> 14:00 ~ 15:30
- "10시부터 45분간" -> 10:00 ~ 10:45
- "3시부터 5시까지" -> 15:00 ~ 17:00
- 종료가 없으면 시작 + 1시간

종일 일정:
- "종일", "하루종일", "전일", "올데이", "all day" 포함
- 구체적인 시간이 전혀 없는 경우 ("내일 회의", "오늘 휴가")
- 종일 일정의 end.date 는 시작일 다음날 (배타적)

summary 에는 날짜/시간 표현과 "추가해줘" 같은 명령어를 뺀 일정 제목만 넣는다.

출력 스키마 (시간 지정):
{
  "summary": string,
  "start": {"dateTime": "YYYY-MM-DDTHH:MM:SS+09:00", "timeZone": "Asia/Seoul"},
  "end": {"dateTime": "YYYY-MM-DDTHH:MM:SS+09:00", "timeZone": "Asia/Seoul"}
}
출력 스키마 (종일):
{
  "summary": string,
  "start": {"date": "YYYY-MM-DD"},
  "end": {"date": "YYYY-MM-DD"}
}
"""

PERIOD_RANGE_PROMPT = """너는 한국어 기간 표현을 날짜 범위로 변환한다. 반드시 JSON 한 개만 반환한다. 설명 금지.
입력 형식:
{
  "period": string,
  "now": "YYYY-MM-DDTHH:MM",
  "weekday": string
}

주 계산 (월요일부터 일요일까지):
- 이번주: 현재 날짜가 포함된 주의 월요일 00:00 ~ 다음 월요일 00:00
- 다음주: 이번주 다음 주의 월요일 00:00 ~ 그 다음 월요일 00:00
- 지난주: 이번주 이전 주의 월요일 00:00 ~ 이번주 월요일 00:00
  예: 현재가 9월 8일(일)이면 이번주 = 9월 2일(월) ~ 9월 9일(월) 00:00

기타:
- 오늘 = 오늘 00:00 ~ 내일 00:00
- 내일, 어제, 모레 = 해당 날짜 00:00 ~ 다음날 00:00
- 이번달/다음달/지난달 = 해당 달 1일 00:00 ~ 다음 달 1일 00:00

end 는 배타적이다. 시간대는 항상 +09:00.

출력 스키마:
{
  "start": "YYYY-MM-DDTHH:MM:SS+09:00",
  "end": "YYYY-MM-DDTHH:MM:SS+09:00",
  "description": string
}
"""

DELETE_PARSE_PROMPT = """너는 한국어 일정 삭제/수정 요청을 분석한다. 반드시 JSON 한 개만 반환한다. 설명 금지.
입력 형식:
{
  "now": "YYYY-MM-DDTHH:MM",
  "weekday": string,
  "text": string
}

규칙:
- searchKeyword 는 대상 일정의 핵심 단어만 (예: 점심, 회의, 워크샵). 날짜 표현과 "취소해줘" 같은 명령어는 뺀다.
- "이번주", "다음주", "다음주 일정중에" 는 해당 주 월요일 00:00 ~ 다음 월요일 00:00 전체를 검색한다.
- 날짜가 없으면 오늘 하루를 검색한다.
- searchTimeEnd 는 배타적이다. 시간대는 항상 +09:00.

예시:
- "오늘 회의 취소해줘" -> searchKeyword: "회의", 오늘 하루
- "이번주 워크샵 없애줘" -> searchKeyword: "워크샵", 이번주 전체
- "다음주 일정중에 점심 약속 삭제" -> searchKeyword: "점심", 다음주 전체

출력 스키마:
{
  "searchKeyword": string,
  "searchDate": "YYYY-MM-DD",
  "searchTimeStart": "YYYY-MM-DDTHH:MM:SS+09:00",
  "searchTimeEnd": "YYYY-MM-DDTHH:MM:SS+09:00",
  "description": string
}
"""

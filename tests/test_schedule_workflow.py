from datetime import date, datetime

import pytest

from conftest import FIXED_NOW, FakeCalendar, ScriptedCompleter, timed_event
from elanvital.agent.schedule_workflow import (
    ScheduleWorkflow,
    extract_event_title,
    extract_target_keyword,
)
from elanvital.agent.schemas import DeleteRequestOutput, EventParseOutput, ScheduleIntent
from elanvital.config import SEOUL
from elanvital.models import CalendarEvent, EventTime


def today_at(hour, minute=0, day=21):
    return datetime(2025, 10, day, hour, minute, tzinfo=SEOUL)


@pytest.fixture
def calendar():
    return FakeCalendar([
        timed_event("e1", "오전 회의", today_at(9)),
        timed_event("e2", "팀 회의", today_at(14)),
        timed_event("e3", "치과 예약", today_at(18)),
        timed_event("e4", "저녁 식사", today_at(19, day=22)),
    ])


@pytest.fixture
def workflow(calendar, sessions, completer, fixed_now):
    return ScheduleWorkflow(calendar, sessions, completer=completer, now=fixed_now)


def button_ids(result):
    return [b.custom_id for row in result.components for b in row.buttons]


class TestExtraction:

    @pytest.mark.parametrize("text,title", [
        ("내일 오후 3시에 팀 회의 추가해줘", "팀 회의"),
        ("다음주 금요일 저녁 7시 동창회 일정 잡아줘", "동창회"),
        ("10월 30일 종일 워크숍 등록", "워크숍"),
        ("내일 3시", ""),
    ])
    def test_event_title(self, text, title):
        assert extract_event_title(text) == title

    @pytest.mark.parametrize("text,keyword", [
        ("오늘 회의 취소해줘", "회의"),
        ("내일 저녁식사 삭제", "저녁식사"),
        ("이번주 일정 중에 치과 예약 지워줘", "치과 예약"),
        ("내일 회의 4시로 옮겨줘", "회의"),
    ])
    def test_target_keyword(self, text, keyword):
        assert extract_target_keyword(text) == keyword


class TestAdd:

    async def test_rule_fallback_inserts_event(self, workflow, calendar):
        result = await workflow.add_event("내일 오후 3시에 팀 회의 추가해줘")
        assert result.success
        payload = calendar.inserted[0]
        assert "회의" in payload.summary
        assert payload.start.as_datetime() == datetime(2025, 10, 22, 15, 0, tzinfo=SEOUL)
        assert payload.end.as_datetime() == datetime(2025, 10, 22, 16, 0, tzinfo=SEOUL)
        assert result.message == "✅ 10/22(수) 15:00 - 팀 회의 일정이 추가되었습니다."

    async def test_model_payload_preferred(self, calendar, sessions, fixed_now):
        completer = ScriptedCompleter({
            "EventParseOutput": EventParseOutput(
                summary="영준이와 저녁식사",
                start=EventTime(date_time="2025-10-22T18:00:00+09:00"),
                end=EventTime()),
        })
        flow = ScheduleWorkflow(calendar, sessions, completer=completer, now=fixed_now)
        result = await flow.add_event("내일 6시에 영준이와 저녁식사")
        payload = calendar.inserted[0]
        assert payload.summary == "영준이와 저녁식사"
        assert payload.end.as_datetime().hour == 19
        assert result.success
        assert completer.calls[0]["user_payload"]["text"] == "내일 6시에 영준이와 저녁식사"

    async def test_all_day_without_time(self, workflow, calendar):
        result = await workflow.add_event("10월 30일 워크숍 추가")
        payload = calendar.inserted[0]
        assert payload.start.date == "2025-10-30"
        assert payload.end.date == "2025-10-31"
        assert "종일" in result.message

    async def test_long_title_truncated(self, workflow):
        result = await workflow.add_event("내일 " + "가" * 40 + " 추가해줘")
        assert "가" * 30 + "..." in result.message

    async def test_unparseable(self, workflow, calendar):
        result = await workflow.add_event("내일 3시 추가해줘")
        assert not result.success
        assert "일정을 이해하지 못했어요" in result.message
        assert calendar.inserted == []

    async def test_backend_error_is_generic(self, workflow, calendar):

        async def broken(payload):
            raise RuntimeError("network down")

        calendar.insert_event = broken
        result = await workflow.add_event("내일 오후 3시 팀 회의 추가")
        assert not result.success
        assert result.message == "일정 추가 중 오류가 발생했습니다."


class TestQuery:

    async def test_builds_session_and_buttons(self, workflow, sessions):
        result = await workflow.query_events("오늘", "u1")
        assert result.success
        assert result.session_id in sessions
        ids = button_ids(result)
        sid = result.session_id
        assert ids[:2] == [f"edit_{sid}_0", f"quick_delete_{sid}_0"]
        assert len(ids) == 6
        assert all(len(row.buttons) <= 4 for row in result.components)
        assert "**1.** `10/21(화) 9시` **오전 회의**" in result.message
        assert "🔧" in result.message

    async def test_empty_period(self, workflow, sessions):
        result = await workflow.query_events("지난주", "u1")
        assert result.success
        assert "예정된 일정이 없습니다" in result.message
        assert len(sessions) == 0

    async def test_unknown_period(self, workflow):
        result = await workflow.query_events("언젠가", "u1")
        assert not result.success
        assert "기간을 이해하지 못했습니다" in result.message

    async def test_session_ttl_is_thirty_minutes(self, workflow, sessions, clock):
        result = await workflow.query_events("오늘", "u1")
        clock.advance(29 * 60)
        assert result.session_id in sessions
        clock.advance(60)
        assert result.session_id not in sessions


class TestDelete:

    async def test_ambiguous_creates_session(self, workflow, calendar, sessions):
        result = await workflow.request_delete("오늘 회의 취소해줘", "u1")
        assert result.success
        assert calendar.deleted == []
        session = sessions.get(result.session_id)
        assert session.kind == "delete"
        assert [c.item.id for c in session.candidates] == ["e2", "e1"]
        scores = [c.score for c in session.candidates]
        assert scores == sorted(scores, reverse=True)
        ids = button_ids(result)
        assert ids[-1] == f"cancel_{result.session_id}"
        assert f"delete_{result.session_id}_0" in ids

    async def test_auto_commit_single_strong_match(self, workflow, calendar, sessions):
        result = await workflow.request_delete("오늘 치과 예약 삭제해줘", "u1")
        assert calendar.deleted == ["e3"]
        assert "자동 삭제 완료" in result.message
        assert len(sessions) == 0

    async def test_single_weak_match_needs_confirmation(self, calendar, sessions, fixed_now):
        calendar.events = [timed_event("w1", "치과 방문", today_at(11))]
        flow = ScheduleWorkflow(calendar, sessions, completer=ScriptedCompleter(), now=fixed_now)
        result = await flow.request_delete("오늘 치과 예약 취소", "u1")
        assert calendar.deleted == []
        assert len(sessions.get(result.session_id).candidates) == 1

    async def test_no_match(self, workflow, calendar):
        result = await workflow.request_delete("오늘 골프 취소해줘", "u1")
        assert not result.success
        assert "골프" in result.message
        assert calendar.deleted == []

    async def test_no_events_in_window(self, workflow):
        result = await workflow.request_delete("지난주 회의 삭제해줘", "u1")
        assert not result.success
        assert result.message.endswith("에 일정이 없습니다.")

    async def test_model_window_used(self, calendar, sessions, fixed_now):
        completer = ScriptedCompleter({
            "DeleteRequestOutput": DeleteRequestOutput(
                searchKeyword="저녁 식사",
                searchTimeStart="2025-10-22T00:00:00+09:00",
                searchTimeEnd="2025-10-23T00:00:00+09:00",
                description="내일"),
        })
        flow = ScheduleWorkflow(calendar, sessions, completer=completer, now=fixed_now)
        result = await flow.request_delete("내일 저녁 약속 지워줘", "u1")
        assert calendar.deleted == ["e4"]
        assert result.success

    async def test_top_five_only(self, calendar, sessions, fixed_now):
        calendar.events = [timed_event(f"m{i}", f"회의 {i}", today_at(8 + i)) for i in range(7)]
        flow = ScheduleWorkflow(calendar, sessions, completer=ScriptedCompleter(), now=fixed_now)
        result = await flow.request_delete("오늘 회의 삭제", "u1")
        assert len(sessions.get(result.session_id).candidates) == 5

    async def test_execute_is_exactly_once(self, workflow, calendar, sessions):
        pending = await workflow.request_delete("오늘 회의 취소해줘", "u1")
        done = await workflow.execute_delete(pending.session_id, 1)
        assert done.success
        assert calendar.deleted == ["e1"]
        assert "오전 회의" in done.message
        assert sessions.get(pending.session_id) is None
        again = await workflow.execute_delete(pending.session_id, 0)
        assert not again.success
        assert again.message == "⏰ 삭제 요청이 만료되었습니다. 다시 시도해주세요."
        assert calendar.deleted == ["e1"]

    async def test_invalid_index(self, workflow, sessions):
        pending = await workflow.request_delete("오늘 회의 취소해줘", "u1")
        result = await workflow.execute_delete(pending.session_id, 7)
        assert result.message == "❌ 잘못된 선택입니다."
        assert pending.session_id in sessions

    async def test_expired_session(self, workflow, clock):
        pending = await workflow.request_delete("오늘 회의 취소해줘", "u1")
        clock.advance(601)
        result = await workflow.execute_delete(pending.session_id, 0)
        assert "만료" in result.message

    async def test_cancel(self, workflow, calendar, sessions):
        pending = await workflow.request_delete("오늘 회의 취소해줘", "u1")
        result = await workflow.cancel_delete(pending.session_id)
        assert result.message == "❌ **일정 삭제가 취소되었습니다.**"
        assert pending.session_id not in sessions
        assert calendar.deleted == []

    async def test_cancel_only_applies_to_delete_sessions(self, workflow, sessions):
        listing = await workflow.query_events("오늘", "u1")
        result = await workflow.cancel_delete(listing.session_id)
        assert not result.success
        assert "만료" in result.message
        assert listing.session_id in sessions

    async def test_remote_failure_keeps_session(self, workflow, calendar, sessions):
        pending = await workflow.request_delete("오늘 회의 취소해줘", "u1")
        calendar.fail_delete = True
        result = await workflow.execute_delete(pending.session_id, 0)
        assert not result.success
        assert result.message == "❌ 처리 중 오류가 발생했습니다."
        assert pending.session_id in sessions


class TestQuickDeleteAndEdit:

    async def test_quick_delete_keeps_positions(self, workflow, calendar, sessions):
        listing = await workflow.query_events("오늘", "u1")
        result = await workflow.quick_delete(listing.session_id, 0)
        assert result.success
        assert calendar.deleted == ["e1"]
        remaining = sessions.get(listing.session_id).candidates
        assert [(c.item.id, c.removed) for c in remaining] == [("e1", True), ("e2", False), ("e3", False)]

    async def test_second_button_from_same_listing(self, workflow, calendar):
        listing = await workflow.query_events("오늘", "u1")
        await workflow.quick_delete(listing.session_id, 0)
        await workflow.quick_delete(listing.session_id, 1)
        assert calendar.deleted == ["e1", "e2"]

        form = await workflow.open_edit_form(listing.session_id, 2)
        assert form.modal.fields[0].value == "치과 예약"

    async def test_deleted_slot_rejects_buttons(self, workflow, calendar):
        listing = await workflow.query_events("오늘", "u1")
        await workflow.quick_delete(listing.session_id, 1)
        again = await workflow.quick_delete(listing.session_id, 1)
        edit = await workflow.open_edit_form(listing.session_id, 1)
        assert again.message == edit.message == "❌ 이미 삭제된 일정입니다."
        assert calendar.deleted == ["e2"]

    async def test_open_edit_form_prefills(self, workflow):
        listing = await workflow.query_events("오늘", "u1")
        result = await workflow.open_edit_form(listing.session_id, 1)
        modal = result.modal
        assert modal.custom_id == f"edit_modal_{listing.session_id}_1"
        values = {f.custom_id: f.value for f in modal.fields}
        assert values == {
            "title": "팀 회의",
            "date": "2025-10-21",
            "start_time": "14:00",
            "end_time": "15:00",
            "description": "",
        }

    async def test_submit_timed_update(self, workflow, calendar, sessions):
        listing = await workflow.query_events("오늘", "u1")
        result = await workflow.submit_update(listing.session_id, 1, {
            "title": "팀 회의 (변경)",
            "date": "2025-10-22",
            "start_time": "4시 반",
            "end_time": "",
        })
        assert result.success
        event_id, payload = calendar.updated[0]
        assert event_id == "e2"
        assert payload.start.as_datetime() == datetime(2025, 10, 22, 4, 30, tzinfo=SEOUL)
        assert payload.end.as_datetime() == datetime(2025, 10, 22, 5, 30, tzinfo=SEOUL)
        assert sessions.get(listing.session_id).candidates[1].item.summary == "팀 회의 (변경)"

    async def test_submit_all_day_update_keeps_title(self, workflow, calendar):
        listing = await workflow.query_events("오늘", "u1")
        await workflow.submit_update(listing.session_id, 0, {"title": " ", "date": "2025-10-23"})
        _, payload = calendar.updated[0]
        assert payload.summary == "오전 회의"
        assert (payload.start.date, payload.end.date) == ("2025-10-23", "2025-10-24")

    @pytest.mark.parametrize("fields,needle", [
        ({"date": "10/23"}, "YYYY-MM-DD"),
        ({"date": "2025-10-23", "start_time": "25:99"}, "시작 시간"),
        ({"date": "2025-10-23", "start_time": "15:00", "end_time": "14:00"}, "종료 시간"),
        ({"date": "2025-10-23", "end_time": "14:00"}, "시작 시간"),
    ])
    async def test_validation_errors_skip_backend(self, workflow, calendar, fields, needle):
        listing = await workflow.query_events("오늘", "u1")
        result = await workflow.submit_update(listing.session_id, 0, fields)
        assert not result.success
        assert needle in result.message
        assert calendar.updated == []

    async def test_request_update_offers_edit_buttons(self, workflow, sessions):
        result = await workflow.request_update("오늘 치과 예약 바꿔줘", "u1")
        assert result.success
        assert button_ids(result) == [f"edit_{result.session_id}_0"]
        assert sessions.get(result.session_id).kind == "schedule"

    async def test_handle_routes_by_type(self, workflow, calendar):
        await workflow.handle(ScheduleIntent(schedule_type="add"), "내일 오후 2시 요가 추가", "u1")
        assert calendar.inserted[0].summary == "요가"
        result = await workflow.handle(ScheduleIntent(schedule_type="query", period=None), "일정", "u1")
        assert "오늘" in result.message


def test_all_day_event_labels():
    ev = CalendarEvent(id="a", summary="휴가", start=EventTime(date="2025-10-21"),
                       end=EventTime(date="2025-10-22"))
    assert ev.is_all_day
    assert ev.start.as_date() == date(2025, 10, 21)

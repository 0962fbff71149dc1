from datetime import date, datetime

from elanvital.config import SEOUL
from elanvital.utils import (
    format_korean_date,
    format_month_day,
    parse_iso_date,
    parse_iso_datetime,
    split_message_for_mobile,
    truncate_title,
)


def test_truncate_title():
    assert truncate_title("짧은 제목") == "짧은 제목"
    assert truncate_title("가" * 31) == "가" * 30 + "..."
    assert truncate_title(None) == ""


def test_korean_date_labels():
    d = date(2025, 10, 21)
    assert format_month_day(d) == "10/21(화)"
    assert format_korean_date(d) == "2025년 10월 21일 (화)"


def test_parse_iso_datetime_normalizes_to_seoul():
    dt = parse_iso_datetime("2025-10-21T01:00:00Z")
    assert dt == datetime(2025, 10, 21, 10, 0, tzinfo=SEOUL)
    assert parse_iso_datetime("2025-10-21T10:00").tzinfo is not None
    assert parse_iso_datetime("not a date") is None
    assert parse_iso_date("2025-10-21T10:00:00+09:00") == date(2025, 10, 21)
    assert parse_iso_date("2025-13-40") is None


def test_split_message_keeps_short_messages():
    assert split_message_for_mobile("hello") == ["hello"]


def test_split_message_on_line_boundaries():
    lines = [f"{i}. " + "가" * 50 for i in range(100)]
    message = "\n".join(lines)
    chunks = split_message_for_mobile(message, limit=500)
    assert all(len(c) <= 500 for c in chunks)
    assert "\n".join(chunks) == message


def test_split_message_breaks_overlong_line():
    chunks = split_message_for_mobile("x" * 1200, limit=500)
    assert [len(c) for c in chunks] == [500, 500, 200]

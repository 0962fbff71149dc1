from datetime import date

import pytest

from elanvital.agent.normalizer import (
    coerce_rfc3339,
    normalize_form_time,
    validate_form_date,
    validate_form_time,
)
from elanvital.errors import InputValidationError


@pytest.mark.parametrize("raw,expected", [
    ("9시 20분", "09:20"),
    ("9시 반", "09:30"),
    ("오후 3시", "15:00"),
    ("오전 12시", "00:00"),
    ("930", "09:30"),
    ("1430", "14:30"),
    ("9.20", "09:20"),
    ("9:05", "09:05"),
    ("9", "09:00"),
    ("", ""),
    (None, ""),
])
def test_normalize_form_time(raw, expected):
    assert normalize_form_time(raw) == expected


def test_validate_form_time():
    assert validate_form_time("21:15", "start_time") == "21:15"
    assert validate_form_time("  ", "end_time") is None
    with pytest.raises(InputValidationError) as exc:
        validate_form_time("25:00", "end_time")
    assert exc.value.field == "end_time"
    assert "종료 시간" in exc.value.user_message


def test_validate_form_date():
    assert validate_form_date("2025-10-21") == date(2025, 10, 21)
    with pytest.raises(InputValidationError) as exc:
        validate_form_date("10/21")
    assert "YYYY-MM-DD" in exc.value.user_message
    with pytest.raises(InputValidationError) as exc:
        validate_form_date("2025-02-30")
    assert "존재하지 않는 날짜" in exc.value.user_message


def test_coerce_rfc3339():
    assert coerce_rfc3339("2025-10-21T13: 00: 00+09: 00").hour == 13
    assert coerce_rfc3339("2025-10-21T04:00:00Z").hour == 13
    assert coerce_rfc3339("garbage") is None
    assert coerce_rfc3339(None) is None

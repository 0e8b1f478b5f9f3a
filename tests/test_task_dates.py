# tests/test_task_dates.py

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from taskgrove.core.errors import ValidationError
from taskgrove.tasks.task_dates import parse_due_date

NOW = datetime(2024, 2, 27, 9, 30)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("today", NOW),
        ("Tomorrow", datetime(2024, 2, 28, 9, 30)),
        ("+3d", datetime(2024, 3, 1, 9, 30)),
        ("2024-03-05", datetime(2024, 3, 5)),
        ("2024-03-05 14:30", datetime(2024, 3, 5, 14, 30)),
        ("2024-03-05T14:30:15", datetime(2024, 3, 5, 14, 30, 15)),
    ],
)
def test_parse_due_date_accepts_supported_forms(text: str, expected: datetime) -> None:
    assert parse_due_date(text, NOW) == expected


def test_parse_due_date_empty_means_none() -> None:
    assert parse_due_date(None) is None
    assert parse_due_date("   ") is None


@pytest.mark.parametrize("text", ["next week", "05/03/2024", "+d", "2024-13-40"])
def test_parse_due_date_rejects_garbage(text: str) -> None:
    with pytest.raises(ValidationError):
        parse_due_date(text, NOW)


def test_parse_due_date_converts_offsets_to_local_time() -> None:
    parsed = parse_due_date("2024-05-01T10:00+02:00", NOW)

    assert parsed.tzinfo is None
    expected = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
    assert parsed == expected

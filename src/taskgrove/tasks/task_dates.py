# src/taskgrove/tasks/task_dates.py

from __future__ import annotations

import re
from datetime import datetime, timedelta

from ..core.errors import ValidationError
from .task_models import to_local_naive

_RELATIVE_DAYS = re.compile(r"^\+(\d+)d$")
_FORMATS = ("%Y-%m-%d %H:%M", "%Y-%m-%d")


def parse_due_date(text: str | None, now: datetime | None = None) -> datetime | None:
    """
    Parse user input for a due date.

    Supports: today, tomorrow, +Nd (N days from now), YYYY-MM-DD,
    YYYY-MM-DD HH:MM and full ISO 8601. Empty input means "no due date".
    """
    if text is None or not text.strip():
        return None
    raw = text.strip()
    low = raw.lower()
    now = to_local_naive(now) if now is not None else datetime.now()

    if low == "today":
        return now
    if low == "tomorrow":
        return now + timedelta(days=1)
    m = _RELATIVE_DAYS.match(low)
    if m:
        return now + timedelta(days=int(m.group(1)))

    for fmt in _FORMATS:
        try:
            return datetime.strptime(raw, fmt)
        except ValueError:
            continue
    try:
        return to_local_naive(datetime.fromisoformat(raw))
    except ValueError:
        pass
    raise ValidationError(
        "Invalid date format. Use YYYY-MM-DD, YYYY-MM-DD HH:MM, "
        "or relative dates (today, tomorrow, +3d)"
    )

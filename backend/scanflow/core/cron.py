# scanflow/core/cron.py
"""
Cron helpers built on APScheduler's CronTrigger.

Only the standard 5-field format is accepted:

    minute hour day month weekday

Weekdays follow crontab numbering (0 and 7 are Sunday, 1 is Monday).
APScheduler counts from Monday = 0, so numeric weekday tokens are
rewritten to day names before the trigger is built.

Validation happens at create/update time so a bad expression never
reaches the timer.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional

from apscheduler.triggers.cron import CronTrigger

from scanflow.core.base import now_utc
from scanflow.errors import ValidationError

# Index is the crontab weekday number
DAY_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun"]


def _weekday_number(token: str, field: str) -> int:
    try:
        day = int(token)
    except ValueError:
        raise ValidationError(f"Invalid weekday '{token}' in '{field}'")
    if not 0 <= day <= 7:
        raise ValidationError(f"Weekday {day} out of range (0-7) in '{field}'")
    return day


def translate_weekdays(field: str) -> str:
    """
    Rewrite a crontab weekday field into APScheduler day names.

        "1-5"  -> "mon,tue,wed,thu,fri"
        "0,7"  -> "sun"
        "*/2"  -> "sun,tue,thu,sat"

    Name-based parts (e.g. "mon-fri") are passed through.
    """
    if field == "*":
        return field

    names: List[str] = []
    for part in field.split(","):
        if any(c.isalpha() for c in part):
            names.append(part.lower())
            continue

        base, _, step_text = part.partition("/")
        step = 1
        if step_text:
            try:
                step = int(step_text)
            except ValueError:
                raise ValidationError(f"Invalid step '{step_text}' in weekday field '{field}'")
            if step < 1:
                raise ValidationError(f"Step must be positive in weekday field '{field}'")

        if base == "*":
            first, last = 0, 7
        elif "-" in base:
            low, _, high = base.partition("-")
            first, last = _weekday_number(low, field), _weekday_number(high, field)
            if first > last:
                raise ValidationError(f"Weekday range '{base}' runs backwards in '{field}'")
        else:
            first = _weekday_number(base, field)
            last = 7 if step_text else first

        for day in range(first, last + 1, step):
            name = DAY_NAMES[day]
            if name not in names:
                names.append(name)

    return ",".join(names)


def build_trigger(expression: str, timezone: str = "UTC") -> CronTrigger:
    """Parse a 5-field cron expression. Raises ValidationError if malformed."""
    if not isinstance(expression, str) or not expression.strip():
        raise ValidationError("cronExpression is required")

    fields = expression.split()
    if len(fields) != 5:
        raise ValidationError(
            f"Invalid cron expression '{expression}': expected 5 fields "
            f"(minute hour day month weekday), got {len(fields)}"
        )

    minute, hour, day, month, weekday = fields
    try:
        return CronTrigger(
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=translate_weekdays(weekday),
            timezone=timezone,
        )
    except ValidationError as e:
        raise ValidationError(f"Invalid cron expression '{expression}': {e.message}")
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Invalid cron expression '{expression}': {e}")


def validate(expression: str) -> None:
    build_trigger(expression)


def next_run(
    expression: str,
    after: Optional[datetime] = None,
    timezone: str = "UTC",
) -> datetime:
    """
    Next fire time strictly after `after` (default: now).

    CronTrigger may return `after` itself when it falls exactly on a
    boundary, so the search starts one microsecond later.
    """
    trigger = build_trigger(expression, timezone)
    after = after or now_utc()
    fire = trigger.get_next_fire_time(None, after + timedelta(microseconds=1))
    if fire is None:
        raise ValidationError(f"Cron expression '{expression}' never fires")
    return fire

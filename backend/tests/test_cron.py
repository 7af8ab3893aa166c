"""Cron parsing and next-run computation."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from scanflow.core import cron
from scanflow.core.base import now_utc
from scanflow.errors import ValidationError


@pytest.mark.parametrize(
    "expression",
    ["* * * * *", "0 */6 * * *", "30 2 * * 1", "15 8 1 * *", "0 0 1 1 *"],
)
def test_next_run_is_strictly_after_reference_time(expression):
    created = now_utc()
    assert cron.next_run(expression, created) > created


def test_next_run_on_exact_boundary_moves_to_following_slot():
    boundary = datetime(2026, 1, 1, 6, 0, tzinfo=timezone.utc)
    fire = cron.next_run("0 */6 * * *", boundary)
    assert fire == datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def test_next_run_every_six_hours_from_mid_slot():
    fire = cron.next_run("0 */6 * * *", datetime(2026, 3, 4, 7, 45, tzinfo=timezone.utc))
    assert (fire.hour, fire.minute) == (12, 0)


@pytest.mark.parametrize(
    "expression",
    ["", "   ", "* * * *", "* * * * * *", "61 * * * *", "* 25 * * *", "not a cron"],
)
def test_invalid_expressions_are_rejected(expression):
    with pytest.raises(ValidationError):
        cron.validate(expression)


def test_non_string_expression_is_rejected():
    with pytest.raises(ValidationError):
        cron.build_trigger(None)


# 2026-01-04 is a Sunday
SUNDAY_MORNING = datetime(2026, 1, 4, 10, 0, tzinfo=timezone.utc)
FRIDAY_MORNING = datetime(2026, 1, 9, 10, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "expression, after, expected_day",
    [
        ("0 9 * * 1", SUNDAY_MORNING, datetime(2026, 1, 5)),
        ("0 9 * * 0", SUNDAY_MORNING, datetime(2026, 1, 11)),
        ("0 9 * * 7", SUNDAY_MORNING, datetime(2026, 1, 11)),
        ("0 9 * * 1-5", SUNDAY_MORNING, datetime(2026, 1, 5)),
        ("0 9 * * 1-5", FRIDAY_MORNING, datetime(2026, 1, 12)),
        ("0 9 * * 5-7", SUNDAY_MORNING, datetime(2026, 1, 9)),
        ("0 9 * * 6,0", FRIDAY_MORNING, datetime(2026, 1, 10)),
        ("0 9 * * mon-fri", FRIDAY_MORNING, datetime(2026, 1, 12)),
    ],
)
def test_weekdays_use_crontab_numbering(expression, after, expected_day):
    fire = cron.next_run(expression, after)
    assert (fire.year, fire.month, fire.day, fire.hour) == (
        expected_day.year, expected_day.month, expected_day.day, 9,
    )


@pytest.mark.parametrize(
    "field, expected",
    [
        ("1-5", "mon,tue,wed,thu,fri"),
        ("0,7", "sun"),
        ("*/2", "sun,tue,thu,sat"),
        ("1-5/2", "mon,wed,fri"),
        ("*", "*"),
        ("MON-FRI", "mon-fri"),
    ],
)
def test_translate_weekdays(field, expected):
    assert cron.translate_weekdays(field) == expected


@pytest.mark.parametrize("expression", ["0 9 * * 8", "0 9 * * 1-8", "0 9 * * 5-1", "0 9 * * */0", "0 9 * * x?"])
def test_invalid_weekdays_are_rejected(expression):
    with pytest.raises(ValidationError):
        cron.validate(expression)

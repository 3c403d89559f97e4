"""
Cron expression parsing, validation and schedule queries.

Schedules use seven space-separated fields:

    {sec} {min} {hour} {day of month} {month} {day of week} {year}

Field grammar (wildcards, ranges, lists, steps and names) is handled by
croniter. This module adds the structural field-count check in front of it
and turns a parsed expression into a lazy sequence of matching instants.

All instants are naive datetimes in the host's local wall-clock time.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterator, Optional

from croniter import croniter, CroniterBadDateError

logger = logging.getLogger(__name__)

FIELD_COUNT = 7
FIELD_NAMES = (
    "second", "minute", "hour", "day of month", "month", "day of week", "year"
)
FIELD_TEMPLATE = "{sec} {min} {hour} {day of month} {month} {day of week} {year}"
DAY_OF_WEEK_NUMBERING = "0-7 (0 and 7 are Sunday, 1 is Monday) or sun-sat"


class CronError(ValueError):
    """Base class for cron expression errors."""

    def __init__(self, expression: str, message: str):
        self.expression = expression
        super().__init__(message)


class MalformedFieldCountError(CronError):
    """Raised when an expression does not split into exactly seven fields."""

    def __init__(self, expression: str, field_count: int):
        self.field_count = field_count
        super().__init__(
            expression,
            f"Cron '{expression}' is invalid: there needs to be {FIELD_COUNT} "
            f"fields, got {field_count} (e.g. {FIELD_TEMPLATE})"
        )


class InvalidFieldGrammarError(CronError):
    """Raised when a field cannot be parsed as cron grammar."""

    def __init__(self, expression: str, detail: str):
        self.detail = detail
        super().__init__(expression, f"Cron '{expression}' is invalid: {detail}")


def _split_fields(text: str) -> list:
    # Single-space separators only: doubled spaces produce empty fields.
    return text.split(' ')


_DAY_OF_WEEK_INDEX = FIELD_NAMES.index("day of week")
_NUMERIC_ITEM = re.compile(r"(\d+)(?:-(\d+))?(?:/(\d+))?")


def _normalize_day_of_week_item(item: str) -> str:
    match = _NUMERIC_ITEM.fullmatch(item)
    if not match:
        return item
    first, last, step = match.groups()
    first = int(first)

    if last is None:
        return "0" if first == 7 and step is None else item
    last = int(last)
    if last != 7 or first > last:
        return item
    # Spell out ranges ending on Sunday as a day list, e.g. 5-7 -> 0,5,6
    days = sorted({day % 7 for day in range(first, last + 1, int(step or 1))})
    return ",".join(str(day) for day in days)


def _normalize_day_of_week(field: str) -> str:
    """Rewrite Sunday-as-7 (alone, as a range end or stepped) to 0."""
    return ",".join(_normalize_day_of_week_item(item) for item in field.split(","))


def _build_iterator(expression: str, start: datetime) -> croniter:
    # croniter only accepts 0-6 for the weekday when seconds are present
    fields = _split_fields(expression)
    fields[_DAY_OF_WEEK_INDEX] = _normalize_day_of_week(fields[_DAY_OF_WEEK_INDEX])
    return croniter(" ".join(fields), start, second_at_beginning=True)


@dataclass(frozen=True)
class CronSchedule:
    """
    Parsed, immutable seven-field cron schedule.

    Instances are created by parse(); every instance is known to be
    accepted by croniter, so queries never fail on grammar.
    """
    expression: str

    @property
    def fields(self) -> dict:
        """Field name -> raw field text."""
        return dict(zip(FIELD_NAMES, _split_fields(self.expression)))

    def next_after(self, after: datetime) -> Optional[datetime]:
        """
        Get the first matching instant strictly after a point in time.

        Args:
            after: Reference instant (naive local time)

        Returns:
            The next match, or None if the schedule has no further matches
        """
        # Matches fall on whole seconds, so searching from the truncated
        # second keeps results strictly greater than `after`.
        start = after.replace(microsecond=0)
        try:
            return _build_iterator(self.expression, start).get_next(datetime)
        except CroniterBadDateError:
            return None

    def matches(self, instant: datetime) -> bool:
        """Check whether an instant (truncated to the second) matches."""
        instant = instant.replace(microsecond=0)
        return self.next_after(instant - timedelta(seconds=1)) == instant

    def upcoming(self, after: datetime) -> Iterator[datetime]:
        """Shortcut for upcoming(self, after)."""
        return upcoming(self, after)

    def __str__(self):
        return self.expression


def check(text: str) -> Optional[str]:
    """
    Check a cron expression and describe what is wrong with it.

    The field count is checked first so that a wrong number of fields is
    reported as such, without asking croniter to parse anything.

    Args:
        text: Cron expression

    Returns:
        Human-readable error message, or None if the expression is valid
    """
    try:
        parse(text)
    except CronError as e:
        return str(e)
    return None


def validate(text: str) -> bool:
    """
    Validate a cron expression, logging the reason when it is invalid.

    Never raises; callers decide whether to register the job.
    """
    try:
        parse(text)
    except MalformedFieldCountError as e:
        logger.warning(str(e))
        logger.warning(f"Fields: {', '.join(FIELD_NAMES)}")
        return False
    except InvalidFieldGrammarError as e:
        logger.warning(str(e))
        return False
    return True


def parse(text: str) -> CronSchedule:
    """
    Parse a seven-field cron expression.

    Args:
        text: Cron expression, e.g. "0 30 9 * * mon-fri *"

    Returns:
        CronSchedule

    Raises:
        MalformedFieldCountError: If the text is not exactly seven fields
        InvalidFieldGrammarError: If croniter rejects a field
    """
    field_count = len(_split_fields(text))
    if field_count != FIELD_COUNT:
        raise MalformedFieldCountError(text, field_count)

    # croniter errors all derive from ValueError
    try:
        _build_iterator(text, datetime.now())
    except ValueError as e:
        raise InvalidFieldGrammarError(text, str(e) or type(e).__name__) from e

    return CronSchedule(text)


def upcoming(schedule: CronSchedule, after: datetime) -> Iterator[datetime]:
    """
    Lazily yield every instant matching a schedule, strictly after `after`.

    The generator holds its own cursor and computes one instant per step,
    so separate calls never share state. It stops when croniter finds no
    further match (impossible dates, years already past).
    """
    cursor = after
    while True:
        instant = schedule.next_after(cursor)
        if instant is None:
            return
        yield instant
        cursor = instant


def next_fire_time(text: str, after: Optional[datetime] = None) -> Optional[datetime]:
    """
    Preview the next fire time of a cron expression.

    Args:
        text: Cron expression
        after: Reference instant (default: now)

    Returns:
        Next matching instant, or None if the text is invalid or exhausted
    """
    try:
        schedule = parse(text)
    except CronError:
        return None
    return schedule.next_after(after or datetime.now())

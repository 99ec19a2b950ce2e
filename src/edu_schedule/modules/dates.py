import re
from datetime import date
from typing import Iterable

import arrow
from arrow.parser import ParserError

from .constants import (
    DATE_FORMATS,
    LAST_AFTERNOON_PERIOD,
    LAST_MORNING_PERIOD,
    LAST_PERIOD,
)
from .models import (
    ClassShift,
    Holiday,
    SchoolClass,
    SessionLabel,
    SessionStatus,
    Subject,
)


def today() -> date:
    """Return the local calendar date."""
    return arrow.now().date()


def parse_local_date(value: date | str | None) -> date:
    """
    Parse a "YYYY-MM-DD" string into a calendar date.

    The string is read as a local calendar date, no timezone conversion takes
    place. Malformed or empty input falls back to today.

    Args:
        value (datetime.date | str, optional): Date or date string.

    Returns:
        datetime.date: Parsed date, or today's date.
    """
    if isinstance(value, date):
        return value
    if not value:
        return today()
    try:
        return arrow.get(value.strip(), DATE_FORMATS).date()
    except (ParserError, ValueError, TypeError, AttributeError):
        return today()


def week_start(day: date) -> date:
    """Return the Monday of the week containing `day`."""
    return arrow.get(day).floor("week").date()


def session_label_from_period(start_period: int) -> SessionLabel:
    """
    Return the part of the day a start period belongs to.

    Args:
        start_period (int): Period number (1-14).

    Returns:
        SessionLabel: Morning up to period 5, afternoon up to 10, else evening.
    """
    if start_period <= LAST_MORNING_PERIOD:
        return SessionLabel.MORNING
    if start_period <= LAST_AFTERNOON_PERIOD:
        return SessionLabel.AFTERNOON
    return SessionLabel.EVENING


def max_periods_from(start_period: int) -> int:
    """Return how many periods remain in the shift starting at `start_period`."""
    if start_period <= LAST_MORNING_PERIOD:
        return LAST_MORNING_PERIOD + 1 - start_period
    if start_period <= LAST_AFTERNOON_PERIOD:
        return LAST_AFTERNOON_PERIOD + 1 - start_period
    return LAST_PERIOD + 1 - start_period


def effective_total_periods(subject: Subject, school_class: SchoolClass | None = None) -> int:
    """
    Return the curriculum length of a subject for a class.

    Evening classes use `total_periods_evening` when it is a positive number.

    Args:
        subject (Subject): Subject.
        school_class (SchoolClass, optional): Class taking the subject.

    Returns:
        int: Number of periods the class must accumulate.
    """
    if (
        school_class is not None
        and school_class.shift == ClassShift.EVENING
        and subject.total_periods_evening
        and subject.total_periods_evening > 0
    ):
        return subject.total_periods_evening
    return subject.total_periods


def find_holiday(day: date, holidays: Iterable[Holiday]) -> Holiday | None:
    """Return the first holiday whose inclusive range contains `day`."""
    for holiday in holidays:
        if holiday.contains(day):
            return holiday
    return None


def is_holiday(day: date, holidays: Iterable[Holiday]) -> bool:
    return find_holiday(day, holidays) is not None


def campus_from_name(name: str) -> int:
    """
    Derive the campus number from a legacy class name.

    - "24..." names ending in "01" or "02" belong to campus 1 or 2.
    - Names with a year prefix of 25 or later belong to campus 1 if the rest
      of the name contains "1", else campus 2 if it contains "2".

    Args:
        name (str): Class name.

    Returns:
        int: 1, 2, or 0 when unknown.
    """
    if not name:
        return 0
    name = name.strip().upper()

    if name.startswith("24"):
        if name.endswith("01"):
            return 1
        if name.endswith("02"):
            return 2

    match = re.match(r"^(\d{2})", name)
    if match and int(match.group(1)) >= 25:
        # Skip the year so the "2" of "25" is not read as a campus
        body = name[2:]
        if "1" in body:
            return 1
        if "2" in body:
            return 2

    return 0


def resolve_campus(school_class: SchoolClass | None) -> int:
    """Return the explicit campus of a class, or the one derived from its name."""
    if school_class is None:
        return 0
    if school_class.campus is not None:
        return school_class.campus
    return campus_from_name(school_class.name)


def determine_status(
    day: date, current: SessionStatus, reference: date | None = None
) -> SessionStatus:
    """
    Compute the display status of a session from its date.

    Cancelled and makeup sessions keep their status.

    Args:
        day (datetime.date): Session date.
        current (SessionStatus): Stored status.
        reference (datetime.date, optional): Date treated as today.

    Returns:
        SessionStatus: Completed, pending, ongoing, or the stored status.
    """
    if current in (SessionStatus.OFF, SessionStatus.MAKEUP):
        return current

    reference = reference or today()
    if day < reference:
        return SessionStatus.COMPLETED
    if day > reference:
        return SessionStatus.PENDING
    return SessionStatus.ONGOING

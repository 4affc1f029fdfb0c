"""Date and time parsing for natural-language notes."""

import re
from datetime import date, datetime, timedelta
from typing import Optional

from dateutil import parser as dateutil_parser
from dateutil.relativedelta import relativedelta

WEEKDAYS = {
    'monday': 0,
    'tuesday': 1,
    'wednesday': 2,
    'thursday': 3,
    'friday': 4,
    'saturday': 5,
    'sunday': 6,
}

NUMBER_WORDS = {
    'a': 1, 'an': 1, 'one': 1, 'two': 2, 'three': 3, 'four': 4, 'five': 5,
    'six': 6, 'seven': 7, 'eight': 8, 'nine': 9, 'ten': 10,
}

MONTHS = r'(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)'

PM_QUALIFIERS = ('pm', 'p.m.', 'p.m', 'afternoon', 'evening', 'night', 'tonight')
AM_QUALIFIERS = ('am', 'a.m.', 'a.m', 'morning')

_AMPM = r'(a\.?m\.?|p\.?m\.?)'
_PERIOD = r'(?:o\'?clock\s+)?(?:in\s+the\s+|at\s+)(morning|afternoon|evening|night)'

TIME_PATTERNS = [
    re.compile(r'\b(\d{1,2})(?::(\d{2}))?\s*' + _AMPM + r'(?![a-z])'),
    re.compile(r'\b(\d{1,2})(?::(\d{2}))?\s*' + _PERIOD + r'\b'),
]
NAMED_TIME = re.compile(r'\b(noon|midday|midnight)\b')
CLOCK_TIME = re.compile(r'\b(?:at\s+)?([01]?\d|2[0-3]):([0-5]\d)\b')

ISO_DATE = re.compile(r'\b(\d{4})-(\d{2})-(\d{2})\b')
MONTH_DAY = re.compile(r'\b' + MONTHS + r'\.?\s+(\d{1,2})(?:st|nd|rd|th)?\b(?:,?\s+(\d{4}))?')
DAY_MONTH = re.compile(r'\b(\d{1,2})(?:st|nd|rd|th)?\s+(?:of\s+)?' + MONTHS + r'\b(?:,?\s+(\d{4}))?')
RELATIVE_AMOUNT = re.compile(r'\bin\s+(\d+|a|an|one|two|three|four|five|six|seven|eight|nine|ten)\s+(day|week)s?\b')
WEEKDAY = re.compile(r'\b(?:(next|this|on|coming)\s+)?(monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b')
DAY_OF_MONTH = re.compile(r'\b(?:on\s+)?the\s+(\d{1,2})(?:st|nd|rd|th)\b')


def _to_24h(hour: int, minute: int, qualifier: Optional[str]) -> Optional[str]:
    if qualifier:
        qualifier = qualifier.lower()
        if hour > 12:
            return None
        if qualifier in PM_QUALIFIERS and 1 <= hour <= 11:
            hour += 12
        elif hour == 12 and qualifier in AM_QUALIFIERS + ('night',):
            hour = 0
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return f"{hour:02d}:{minute:02d}"


def _match_time(text: str, anchored: bool) -> Optional[str]:
    search = (lambda p: p.fullmatch(text)) if anchored else (lambda p: p.search(text))

    match = search(NAMED_TIME)
    if match:
        return "00:00" if match.group(1) == 'midnight' else "12:00"

    for pattern in TIME_PATTERNS:
        match = search(pattern)
        if match:
            hour = int(match.group(1))
            minute = int(match.group(2) or 0)
            return _to_24h(hour, minute, match.group(3))

    match = search(CLOCK_TIME)
    if match:
        return _to_24h(int(match.group(1)), int(match.group(2)), None)
    return None


def normalize_time(value: Optional[str]) -> Optional[str]:
    """Normalize a time expression to 24h "HH:MM".

    Supports:
    - 12-hour: '3pm', '3 p.m.', '3:30pm', '10am'
    - Day periods: '7 in the evening', '9 in the morning'
    - Named: 'noon', 'midnight'
    - 24-hour: '15:00', '9:05'

    Returns:
        "HH:MM" or None if the value is not a recognizable time
    """
    if not value:
        return None
    return _match_time(value.strip().lower(), anchored=True)


def find_time(text: str) -> Optional[str]:
    """Find the first time expression inside free text and normalize it."""
    if not text:
        return None
    return _match_time(text.lower(), anchored=False)


def _next_weekday(reference: date, target: int) -> date:
    days_ahead = target - reference.weekday()
    if days_ahead <= 0:  # Target day already happened this week
        days_ahead += 7
    return reference + timedelta(days=days_ahead)


def _parse_month_date(snippet: str, has_year: bool, today: date) -> Optional[date]:
    try:
        parsed = dateutil_parser.parse(snippet, default=datetime(today.year, today.month, 1)).date()
    except (ValueError, OverflowError, dateutil_parser.ParserError):
        return None
    if not has_year and parsed < today:
        parsed = parsed + relativedelta(years=1)
    return parsed


def resolve_date(text: str, reference: datetime) -> Optional[str]:
    """Resolve the first date mentioned in text against a reference time.

    Supports:
    - ISO: '2025-10-15'
    - Month names: 'October 15', '15th of October', 'oct 3, 2026'
    - Relative: 'today', 'tonight', 'tomorrow', 'day after tomorrow',
      'in 3 days', 'in two weeks', 'next week'
    - Weekdays: 'monday', 'next friday', 'on sunday' (next occurrence)
    - Day of month: 'the 15th' (this month, or next month if already past)

    Returns:
        ISO date string or None if no date is mentioned
    """
    if not text:
        return None
    lowered = text.lower()
    today = reference.date()

    match = ISO_DATE.search(lowered)
    if match:
        try:
            return date(int(match.group(1)), int(match.group(2)), int(match.group(3))).isoformat()
        except ValueError:
            pass

    for pattern in (MONTH_DAY, DAY_MONTH):
        match = pattern.search(lowered)
        if match:
            parsed = _parse_month_date(match.group(0), bool(match.group(2)), today)
            if parsed:
                return parsed.isoformat()

    if 'day after tomorrow' in lowered:
        return (today + timedelta(days=2)).isoformat()

    if re.search(r'\btomorrow\b', lowered):
        return (today + timedelta(days=1)).isoformat()

    if re.search(r'\b(today|tonight|this (morning|afternoon|evening))\b', lowered):
        return today.isoformat()

    match = RELATIVE_AMOUNT.search(lowered)
    if match:
        raw = match.group(1)
        amount = int(raw) if raw.isdigit() else NUMBER_WORDS[raw]
        days = amount * 7 if match.group(2) == 'week' else amount
        return (today + timedelta(days=days)).isoformat()

    if re.search(r'\bnext week\b', lowered):
        return (today + timedelta(weeks=1)).isoformat()

    match = WEEKDAY.search(lowered)
    if match:
        return _next_weekday(today, WEEKDAYS[match.group(2)]).isoformat()

    match = DAY_OF_MONTH.search(lowered)
    if match:
        day = int(match.group(1))
        candidate = today.replace(day=1)
        if day < today.day:
            candidate = candidate + relativedelta(months=1)
        try:
            return candidate.replace(day=day).isoformat()
        except ValueError:
            return None

    return None


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def build_start_datetime(date_str: str, time_str: Optional[str]) -> str:
    """Event start as local "YYYY-MM-DDTHH:MM:00"; a missing time means midnight."""
    return f"{date_str}T{time_str or '00:00'}:00"

from __future__ import annotations

import calendar
import logging
import re
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from leave_portal.config import settings

logger = logging.getLogger(__name__)

ISO_DATE_RE = re.compile(r'^\d{4}-\d{2}-\d{2}$')
ISO_MONTH_RE = re.compile(r'^\d{4}-\d{2}$')
WEEKDAY_CODES = ('MON', 'TUE', 'WED', 'THU', 'FRI', 'SAT', 'SUN')


def is_iso_date(value: str) -> bool:
    if not ISO_DATE_RE.match(value or ''):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def is_iso_month(value: str) -> bool:
    if not ISO_MONTH_RE.match(value or ''):
        return False
    return int(value[:4]) >= 1 and 1 <= int(value[5:7]) <= 12


def parse_month(value: str) -> tuple[int, int]:
    if not is_iso_month(value):
        raise ValueError(f'Invalid month: {value!r}')
    return int(value[:4]), int(value[5:7])


def days_in_month(month: str) -> int:
    year, month_number = parse_month(month)
    return calendar.monthrange(year, month_number)[1]


def month_dates(month: str) -> list[str]:
    return [f'{month}-{day:02d}' for day in range(1, days_in_month(month) + 1)]


def weekday_code(iso_date: str) -> str:
    return WEEKDAY_CODES[date.fromisoformat(iso_date).weekday()]


def resolve_timezone(name: str | None) -> ZoneInfo | timezone:
    try:
        return ZoneInfo(name or settings.default_timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning('Unknown store timezone %r, falling back to UTC', name)
        return timezone.utc


def day_of_month_in_timezone(timezone_name: str | None, now: datetime | None = None) -> int:
    moment = now or datetime.now(tz=timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(resolve_timezone(timezone_name)).day

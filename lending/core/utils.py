import calendar
import datetime
import re


CODE_RE = re.compile(r'^(\d{13}|\d{9}[\dX])$')


def utcnow() -> datetime.datetime:
    """Naive UTC timestamp; every stored datetime is naive UTC."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def as_utc(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is not None:
        value = value.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return value


def normalize_email(email: str) -> str:
    return email.strip().lower()


def clean_code(code: str) -> str:
    """Strips dashes and spaces from an ISBN-like catalog code and
    returns it, or None when it is not 10 or 13 characters long."""
    cleaned = code.replace('-', '').replace(' ', '').upper()
    return cleaned if CODE_RE.match(cleaned) else None


def add_months(value: datetime.datetime, months: int) -> datetime.datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)

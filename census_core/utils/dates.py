"""
Timestamp helpers for census records and audit entries.

Records store ``lastUpdated`` as an ISO-8601 UTC string with millisecond
precision (``2024-05-01T08:30:00.000Z``), so timestamps written by any client
compare the same way whether parsed or sorted as text.
"""

from datetime import date, datetime, timezone
from typing import Callable, Optional, Union

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Format an aware datetime as a millisecond ISO string in UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def utc_now_iso(clock: Optional[Clock] = None) -> str:
    return to_iso((clock or utc_now)())


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse a stored timestamp; returns None for missing or malformed values.

    Accepts the trailing ``Z`` form and naive strings (treated as UTC).
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def is_newer(candidate: Union[str, None], reference: Union[str, None]) -> bool:
    """True when ``candidate`` is strictly later than ``reference``.

    A missing reference loses to any parseable candidate.
    """
    candidate_dt = parse_timestamp(candidate)
    if candidate_dt is None:
        return False
    reference_dt = parse_timestamp(reference)
    return reference_dt is None or candidate_dt > reference_dt


def next_timestamp(previous: Union[str, None], clock: Optional[Clock] = None) -> str:
    """Stamp for a new write that never goes backwards relative to ``previous``."""
    now = (clock or utc_now)()
    previous_dt = parse_timestamp(previous)
    if previous_dt is not None and previous_dt > now:
        now = previous_dt
    return to_iso(now)


def parse_record_date(value: str) -> date:
    """Parse a ``YYYY-MM-DD`` record key."""
    return datetime.strptime(value, "%Y-%m-%d").date()


def is_valid_record_date(value) -> bool:
    if not isinstance(value, str):
        return False
    try:
        parse_record_date(value)
    except ValueError:
        return False
    return True


def is_future_date(value: Optional[str], today: Optional[date] = None) -> bool:
    """True if a ``YYYY-MM-DD`` (or ISO datetime) string lies after today."""
    if not value:
        return False
    try:
        day = parse_record_date(value[:10])
    except ValueError:
        return False
    return day > (today or date.today())


def format_duration(seconds: float) -> str:
    """Format elapsed seconds as ``"{minutes}m {seconds}s"``."""
    total = max(0, int(seconds))
    minutes, secs = divmod(total, 60)
    return f"{minutes}m {secs}s"

# Utils package
from .dates import (
    Clock,
    utc_now,
    utc_now_iso,
    to_iso,
    parse_timestamp,
    is_newer,
    next_timestamp,
    parse_record_date,
    is_valid_record_date,
    is_future_date,
    format_duration,
)

__all__ = [
    "Clock",
    "utc_now",
    "utc_now_iso",
    "to_iso",
    "parse_timestamp",
    "is_newer",
    "next_timestamp",
    "parse_record_date",
    "is_valid_record_date",
    "is_future_date",
    "format_duration",
]

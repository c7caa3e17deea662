"""Timestamp normalization for history writes.

Callers hand over ``(timestamp_string, number)`` pairs. Depending on the
``TimestampConvention`` the strings are either RFC3339 with an explicit
offset (re-expressed in the caller's zone) or naive civil date-times read
as UTC wall clock. Normalization is pure: no I/O, no network.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Sequence, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import TimestampParseError, TimezoneResolutionError
from .models import HisSample, TimestampConvention

logger = logging.getLogger(__name__)

Number = Union[int, float]

_RFC3339 = re.compile(
    r"([0-9]{4})-([0-9]{2})-([0-9]{2})[Tt ]([0-9]{2}):([0-9]{2}):([0-9]{2})(?:\.([0-9]+))?"
    r"(?:([Zz])|([+-])([0-9]{2}):([0-9]{2}))"
)

# %Y-%m-%dT%H:%M:%S with an optional fraction
_NAIVE = re.compile(r"([0-9]{4})-([0-9]{2})-([0-9]{2})T([0-9]{2}):([0-9]{2}):([0-9]{2})(?:\.([0-9]+))?")


def _microseconds(fraction: str) -> int:
    # Digits past microsecond precision are truncated
    if not fraction:
        return 0
    return int(fraction[:6].ljust(6, "0"))


def _civil(year, month, day, hour, minute, second, fraction, tzinfo) -> datetime:
    second = int(second)
    microsecond = _microseconds(fraction)
    # Leap second: datetime has no :60, so clamp to the last representable instant
    if second == 60:
        second, microsecond = 59, 999999
    return datetime(
        int(year), int(month), int(day),
        int(hour), int(minute), second,
        microsecond,
        tzinfo=tzinfo,
    )


def resolve_timezone(name: str) -> ZoneInfo:
    """Look up an IANA timezone name in the timezone database."""
    if not isinstance(name, str) or not name:
        raise TimezoneResolutionError(f"invalid timezone name {name!r}")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError) as e:
        raise TimezoneResolutionError(f"unknown timezone {name!r}: {e}") from e


def parse_rfc3339(value: str) -> datetime:
    """Parse an RFC3339 date-time that carries an explicit UTC offset."""
    match = _RFC3339.fullmatch(value) if isinstance(value, str) else None
    if match is None:
        raise TimestampParseError(str(value), "not an RFC3339 date-time with offset")

    year, month, day, hour, minute, second, fraction, zulu, sign, off_h, off_m = match.groups()
    try:
        if zulu:
            tzinfo = timezone.utc
        else:
            if int(off_m) >= 60:
                raise ValueError(f"offset minutes must be in 0..59, got {off_m}")
            offset = timedelta(hours=int(off_h), minutes=int(off_m))
            tzinfo = timezone(-offset if sign == "-" else offset)
        return _civil(year, month, day, hour, minute, second, fraction, tzinfo)
    except ValueError as e:
        raise TimestampParseError(value, str(e)) from e


def parse_naive_utc(value: str) -> datetime:
    """Parse a civil date-time without offset and pin it to UTC."""
    match = _NAIVE.fullmatch(value) if isinstance(value, str) else None
    if match is None:
        raise TimestampParseError(str(value), "not a %Y-%m-%dT%H:%M:%S[.fraction] date-time")

    try:
        return _civil(*match.groups(), tzinfo=timezone.utc)
    except ValueError as e:
        raise TimestampParseError(value, str(e)) from e


def _check_number(value) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"history value must be a number, got {value!r}")
    return float(value)


def normalize_samples(
    data: Iterable[Tuple[str, Number]],
    tz_name: str,
    convention: TimestampConvention = TimestampConvention.OFFSET_AWARE,
) -> List[HisSample]:
    """Turn ``(timestamp_string, number)`` pairs into HisSamples.

    Input order and pairing are preserved; duplicates are passed through.
    Any bad element aborts the whole batch.

    Args:
        data: Pairs of timestamp string and numeric value
        tz_name: IANA timezone name. Applied to each sample for
            OFFSET_AWARE, ignored here for NAIVE_UTC (the zone is
            forwarded to the server instead)
        convention: How to read the timestamp strings

    Returns:
        List of HisSample, one per input pair
    """
    convention = TimestampConvention(convention)
    pairs: Sequence[Tuple[str, Number]] = list(data)

    if convention is TimestampConvention.OFFSET_AWARE:
        zone = resolve_timezone(tz_name)
        samples = [
            HisSample(ts=parse_rfc3339(ts).astimezone(zone), val=_check_number(val))
            for ts, val in pairs
        ]
    else:
        samples = [
            HisSample(ts=parse_naive_utc(ts), val=_check_number(val))
            for ts, val in pairs
        ]

    logger.debug(f"Normalized {len(samples)} samples ({convention.value}, tz={tz_name})")
    return samples

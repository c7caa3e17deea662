"""Data models for SkySpark history writes."""

import math
import re
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import InvalidReferenceError

# Haystack ref: "@" followed by ASCII letters, digits and _ : - . ~
REF_PATTERN = re.compile(r"@[A-Za-z0-9_:\-.~]+")


class TimestampConvention(str, Enum):
    """How the timestamp strings of a write request are interpreted."""

    # RFC3339 strings with an explicit offset, re-expressed in the named zone
    OFFSET_AWARE = "offset_aware"
    # Civil date-times read as UTC wall clock; zone name forwarded to the server
    NAIVE_UTC = "naive_utc"


class Ref(BaseModel):
    """Validated reference to an entity on the SkySpark server."""

    model_config = ConfigDict(frozen=True)

    value: str

    @field_validator("value")
    @classmethod
    def _check_syntax(cls, value: str) -> str:
        if not REF_PATTERN.fullmatch(value):
            raise ValueError(f"invalid Haystack ref {value!r}")
        return value

    @classmethod
    def parse(cls, value: str) -> "Ref":
        """Validate a ref string, raising InvalidReferenceError on bad syntax."""
        if not isinstance(value, str):
            raise InvalidReferenceError(f"ref must be a string, got {type(value).__name__}")
        try:
            return cls(value=value)
        except ValidationError as e:
            raise InvalidReferenceError(e.errors()[0]["msg"]) from e

    @property
    def name(self) -> str:
        """Ref without the leading '@'."""
        return self.value[1:]

    def to_json(self) -> str:
        """Haystack JSON encoding, e.g. 'r:p:demo:r:1'."""
        return f"r:{self.name}"

    def __str__(self):
        return self.value


class HisSample(BaseModel):
    """A single (timestamp, number) history item."""

    ts: datetime
    val: float

    @field_validator("ts")
    @classmethod
    def _require_aware(cls, ts: datetime) -> datetime:
        if ts.tzinfo is None:
            raise ValueError("history timestamps must be timezone-aware")
        return ts

    @property
    def ts_utc(self) -> datetime:
        """Timestamp as a UTC datetime."""
        return self.ts.astimezone(timezone.utc)


class HisWriteRequest(BaseModel):
    """Everything needed for one hisWrite call.

    ``time_zone_name`` is only set for the naive convention, where the
    samples carry UTC instants and the server-side zone travels separately.
    """

    ref: Ref
    samples: List[HisSample] = Field(default_factory=list)
    unit: Optional[str] = None
    convention: TimestampConvention = TimestampConvention.OFFSET_AWARE
    time_zone_name: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return len(self.samples) == 0


def haystack_tz_name(iana_name: str) -> str:
    """Haystack timezone name for an IANA zone ("America/New_York" -> "New_York")."""
    return iana_name.rsplit("/", 1)[-1]


def encode_number(value: float, unit: Optional[str] = None) -> str:
    """Haystack JSON number, e.g. 'n:42.0 kWh'."""
    if math.isnan(value):
        text = "NaN"
    elif math.isinf(value):
        text = "INF" if value > 0 else "-INF"
    else:
        text = repr(float(value))
    if unit:
        return f"n:{text} {unit}"
    return f"n:{text}"


def encode_datetime(ts: datetime, iana_name: str) -> str:
    """Haystack JSON dateTime, e.g. 't:2023-01-01T00:00:00Z UTC'."""
    text = ts.isoformat()
    if text.endswith("+00:00"):
        text = text[:-6] + "Z"
    return f"t:{text} {haystack_tz_name(iana_name)}"

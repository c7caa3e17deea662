"""Blocking SkySpark client for writing numeric history."""

from .client import SkySparkClient
from .config import Settings, create_settings
from .errors import ErrorCategory, SkySparkError
from .models import TimestampConvention

__version__ = "0.1.0"

__all__ = [
    "SkySparkClient",
    "SkySparkError",
    "ErrorCategory",
    "TimestampConvention",
    "Settings",
    "create_settings",
]

"""Error types for the SkySpark history client.

Internally every failure is raised as a specific subclass of ``ClientFault``.
Public methods of ``SkySparkClient`` translate those into a single
``SkySparkError`` before they reach the caller.
"""

import logging
from contextlib import contextmanager
from enum import Enum
from typing import Iterator

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    """Category tag attached to every error crossing the public boundary."""

    RUNTIME_INIT = "RuntimeInitError"
    SEED_CONSTRUCTION = "SeedConstructionError"
    URL_PARSE = "UrlParseError"
    TIMESTAMP_PARSE = "TimestampParseError"
    TIMEZONE_RESOLUTION = "TimezoneResolutionError"
    INVALID_REFERENCE = "InvalidReferenceError"
    AUTHENTICATION = "AuthenticationError"
    REMOTE_WRITE = "RemoteWriteError"


class SkySparkError(Exception):
    """The only error raised out of ``SkySparkClient``.

    Attributes:
        category: ErrorCategory for programmatic branching
        message: Diagnostic text from the original failure
    """

    def __init__(self, category: ErrorCategory, message: str):
        self.category = category
        self.message = message
        super().__init__(f"{category.value}: {message}")


class ClientFault(Exception):
    """Base class for internal failures. Never raised to callers."""

    category: ErrorCategory


class RuntimeInitError(ClientFault):
    category = ErrorCategory.RUNTIME_INIT


class SeedConstructionError(ClientFault):
    category = ErrorCategory.SEED_CONSTRUCTION


class UrlParseError(ClientFault):
    category = ErrorCategory.URL_PARSE


class TimestampParseError(ClientFault):
    """A timestamp string could not be parsed.

    The offending string is kept on ``value``.
    """

    category = ErrorCategory.TIMESTAMP_PARSE

    def __init__(self, value: str, reason: str):
        self.value = value
        super().__init__(f"{reason}: {value!r}")


class TimezoneResolutionError(ClientFault):
    category = ErrorCategory.TIMEZONE_RESOLUTION


class InvalidReferenceError(ClientFault):
    category = ErrorCategory.INVALID_REFERENCE


class AuthenticationError(ClientFault):
    category = ErrorCategory.AUTHENTICATION


class RemoteWriteError(ClientFault):
    category = ErrorCategory.REMOTE_WRITE


@contextmanager
def translate_errors() -> Iterator[None]:
    """Convert internal faults into ``SkySparkError`` at the public boundary."""
    try:
        yield
    except ClientFault as e:
        logger.debug(f"{e.category.value} at client boundary", exc_info=True)
        raise SkySparkError(e.category, str(e)) from None

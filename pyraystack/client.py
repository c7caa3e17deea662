"""Synchronous SkySpark client.

``SkySparkClient`` owns one authenticated ``AsyncSkySparkClient`` and a
private event loop. Every public method drives its async work to
completion on that loop before returning, so callers never see a
coroutine or future.

A client is not thread-safe. Use one client per thread, or guard each
call with your own lock.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional, Tuple, Union

from .config import Settings
from .errors import RuntimeInitError, translate_errors
from .models import HisWriteRequest, Ref, TimestampConvention
from .skyspark_client import AsyncSkySparkClient, ClientSeed, parse_project_url
from .timestamps import normalize_samples, resolve_timezone

logger = logging.getLogger(__name__)

Sample = Tuple[str, Union[int, float]]
ClientFactory = Callable[[str, str, str, ClientSeed], Awaitable[AsyncSkySparkClient]]


class SkySparkClient:
    """Blocking client for writing numeric history to SkySpark.

    Args:
        project_api_url: Project API URL, e.g. "http://host:8080/api/demo/"
        username: SkySpark username
        password: SkySpark password
        timeout_in_seconds: Transport timeout applied to every request
        client_factory: Coroutine function creating an authenticated async
            client. Defaults to ``AsyncSkySparkClient.connect``.

    Raises:
        SkySparkError: If any construction step fails. No client is
            returned in that case.
    """

    def __init__(
        self,
        project_api_url: str,
        username: str,
        password: str,
        timeout_in_seconds: int,
        client_factory: Optional[ClientFactory] = None,
    ):
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._client = None

        with translate_errors():
            _check_no_running_loop()
            self._loop = _new_event_loop()
            try:
                seed = ClientSeed(timeout_in_seconds)
                url = parse_project_url(project_api_url)
                factory = client_factory or AsyncSkySparkClient.connect
                self._client = self._loop.run_until_complete(
                    factory(url, username, password, seed)
                )
            except BaseException:
                self._loop.close()
                self._loop = None
                raise

        self.project_api_url = url
        logger.info(f"SkySpark client ready for {url}")

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "SkySparkClient":
        """Build a client from a Settings object."""
        return cls(
            settings.skyspark_url,
            settings.skyspark_username,
            settings.skyspark_password,
            settings.skyspark_timeout,
            **kwargs,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __del__(self):
        loop = getattr(self, "_loop", None)
        if loop is not None and not loop.is_closed() and not _in_running_loop():
            self.close()

    @property
    def closed(self) -> bool:
        return self._loop is None

    def close(self):
        """Close the HTTP session and the event loop. Safe to call twice."""
        if self._loop is None:
            return
        loop, self._loop = self._loop, None
        try:
            if self._client is not None:
                loop.run_until_complete(self._client.close())
            loop.run_until_complete(loop.shutdown_asyncgens())
        finally:
            loop.close()
            self._client = None
        logger.debug("SkySpark client closed")

    def _block_on(self, coro: Awaitable):
        """Run a coroutine on the client's loop and wait for its result."""
        if self._loop is None:
            coro.close()
            raise RuntimeInitError("client is closed")
        try:
            _check_no_running_loop()
        except RuntimeInitError:
            coro.close()
            raise
        return self._loop.run_until_complete(coro)

    # =========================================================================
    # History writes
    # =========================================================================

    def his_write_num(
        self,
        id: str,
        unit: Optional[str],
        tz: str,
        data: Iterable[Sample],
    ) -> None:
        """Write numeric history using RFC3339 timestamps with offsets.

        Each timestamp is re-expressed in ``tz`` before it is sent.

        Args:
            id: Entity ref, e.g. "@p:demo:r:1"
            unit: Optional unit such as "kWh"
            tz: IANA timezone name, e.g. "America/New_York"
            data: (timestamp, value) pairs, e.g. ("2023-01-01T00:00:00Z", 42.0)

        Raises:
            SkySparkError: On bad input or a failed write
        """
        with translate_errors():
            ref = Ref.parse(id)
            samples = normalize_samples(data, tz, TimestampConvention.OFFSET_AWARE)
            self._write(HisWriteRequest(ref=ref, samples=samples, unit=unit))

    def utc_his_write_num(
        self,
        id: str,
        tz: str,
        data: Iterable[Sample],
        unit: Optional[str] = None,
    ) -> None:
        """Write numeric history using naive timestamps read as UTC.

        The timezone name is passed to the server unchanged instead of
        being applied to the timestamps.

        Args:
            id: Entity ref, e.g. "@p:demo:r:1"
            tz: IANA timezone name of the point
            data: (timestamp, value) pairs, e.g. ("2023-06-01T12:00:00.500", 1.5)
            unit: Optional unit such as "kWh"

        Raises:
            SkySparkError: On bad input or a failed write
        """
        with translate_errors():
            ref = Ref.parse(id)
            # Fail before any network call; the zone is applied when the grid is encoded
            resolve_timezone(tz)
            samples = normalize_samples(data, tz, TimestampConvention.NAIVE_UTC)
            self._write(
                HisWriteRequest(
                    ref=ref,
                    samples=samples,
                    unit=unit,
                    convention=TimestampConvention.NAIVE_UTC,
                    time_zone_name=tz,
                )
            )

    def _write(self, request: HisWriteRequest):
        if self._loop is None:
            raise RuntimeInitError("client is closed")
        if request.is_empty:
            logger.debug(f"No samples for {request.ref}, skipping hisWrite")
            return

        if request.convention is TimestampConvention.NAIVE_UTC:
            coro = self._client.utc_his_write_num(
                request.ref, request.time_zone_name, request.samples, request.unit
            )
        else:
            coro = self._client.his_write_num(request.ref, request.samples, request.unit)

        # Response grid is discarded; success means the write was accepted
        self._block_on(coro)
        logger.info(f"Wrote {len(request.samples)} samples to {request.ref}")


def _new_event_loop() -> asyncio.AbstractEventLoop:
    try:
        return asyncio.new_event_loop()
    except OSError as e:
        raise RuntimeInitError(f"cannot create event loop: {e}") from e


def _in_running_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def _check_no_running_loop():
    if _in_running_loop():
        raise RuntimeInitError("cannot block inside a running event loop")

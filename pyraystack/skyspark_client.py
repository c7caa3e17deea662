"""Async SkySpark (Project Haystack) API client."""

import aiohttp
import asyncio
import logging
from typing import List, Optional
from yarl import URL

from .errors import AuthenticationError, RemoteWriteError, SeedConstructionError, UrlParseError
from .models import HisSample, Ref, encode_datetime, encode_number
from .scram import ScramExchange, b64url_decode, b64url_encode, parse_auth_header, parse_auth_params
from .timestamps import resolve_timezone

logger = logging.getLogger(__name__)


class ClientSeed:
    """Connection settings shared by every request of one client.

    A timeout of 0 disables the transport timeout.
    """

    def __init__(self, timeout_in_seconds: int):
        if isinstance(timeout_in_seconds, bool) or not isinstance(timeout_in_seconds, int):
            raise SeedConstructionError(
                f"timeout must be a whole number of seconds, got {timeout_in_seconds!r}"
            )
        if timeout_in_seconds < 0:
            raise SeedConstructionError(f"timeout must not be negative, got {timeout_in_seconds}")
        self.timeout_in_seconds = timeout_in_seconds
        self.timeout = aiohttp.ClientTimeout(total=timeout_in_seconds or None)

    def __repr__(self):
        return f"ClientSeed(timeout_in_seconds={self.timeout_in_seconds})"


def parse_project_url(project_api_url: str) -> str:
    """Validate a project API URL such as 'http://host/api/demo/'.

    Returns the URL with a trailing slash so operation names can be appended.
    """
    try:
        url = URL(project_api_url)
    except (TypeError, ValueError) as e:
        raise UrlParseError(f"{project_api_url!r}: {e}") from e

    if not url.is_absolute() or url.scheme not in ("http", "https") or not url.host:
        raise UrlParseError(f"{project_api_url!r} is not an absolute http(s) URL")

    if not url.path.endswith("/"):
        url = url.with_path(url.path + "/")
    return str(url)


class AsyncSkySparkClient:
    """Async client for the SkySpark project API.

    Create instances with ``connect()``, which performs the SCRAM
    handshake before returning.
    """

    ENDPOINTS = {
        "about": "about",
        "his_write": "hisWrite",
    }

    def __init__(self, project_api_url: str, username: str, password: str, seed: ClientSeed):
        self.project_api_url = project_api_url
        self.username = username
        self._password = password
        self.seed = seed
        self._auth_token: Optional[str] = None
        self._session: Optional[aiohttp.ClientSession] = None

    @classmethod
    async def connect(
        cls,
        project_api_url: str,
        username: str,
        password: str,
        seed: ClientSeed,
    ) -> "AsyncSkySparkClient":
        """Create a client and authenticate it."""
        client = cls(project_api_url, username, password, seed)
        try:
            await client.authenticate()
        except BaseException:
            await client.close()
            raise
        return client

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.seed.timeout)
        return self._session

    async def close(self):
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    @property
    def is_authenticated(self) -> bool:
        return self._auth_token is not None

    def _url(self, endpoint: str) -> str:
        return f"{self.project_api_url}{self.ENDPOINTS[endpoint]}"

    # =========================================================================
    # Authentication
    # =========================================================================

    async def authenticate(self):
        """Run the HELLO / SCRAM handshake and store the bearer token.

        Raises:
            AuthenticationError: On any HTTP, protocol or transport failure
        """
        url = self._url("about")
        logger.debug(f"Authenticating {self.username} against {url}")
        try:
            handshake_token, hash_name = await self._step1_hello(url)
            exchange = ScramExchange(self.username, self._password, hash_name)
            server_first = await self._step2_client_first(url, handshake_token, exchange)
            self._auth_token = await self._step3_client_final(
                url, handshake_token, exchange, server_first
            )
        except asyncio.TimeoutError:
            logger.error(f"Timeout authenticating against {url}")
            raise AuthenticationError(f"timeout authenticating against {url}")
        except aiohttp.ClientError as e:
            logger.error(f"Error authenticating against {url}: {e}")
            raise AuthenticationError(f"{url}: {e}") from e
        except ValueError as e:
            raise AuthenticationError(f"{url}: {e}") from e

        logger.info(f"Authenticated {self.username} against {self.project_api_url}")

    async def _read_failure(self, response: aiohttp.ClientResponse, step: str) -> AuthenticationError:
        text = (await response.text())[:200]
        logger.warning(f"{step}: HTTP {response.status} from {response.url}")
        return AuthenticationError(f"{step} failed: HTTP {response.status} {response.reason}: {text}")

    async def _step1_hello(self, url: str):
        """Step 1: HELLO, expecting a 401 with a SCRAM challenge."""
        logger.debug("Step 1: HELLO")
        headers = {"Authorization": f"HELLO username={b64url_encode(self.username)}"}
        session = await self._get_session()
        async with session.get(url, headers=headers) as response:
            if response.status != 401:
                raise await self._read_failure(response, "HELLO")
            scheme, params = parse_auth_header(response.headers.get("WWW-Authenticate", ""))

        if scheme != "scram" or "handshakeToken" not in params:
            raise AuthenticationError(f"HELLO: unsupported auth challenge from {url}")
        return params["handshakeToken"], params.get("hash", "SHA-256")

    async def _step2_client_first(self, url: str, handshake_token: str, exchange: ScramExchange) -> str:
        """Step 2: send client-first message, return server-first message."""
        logger.debug("Step 2: SCRAM client-first")
        data = b64url_encode(exchange.client_first_message())
        headers = {"Authorization": f"SCRAM handshakeToken={handshake_token}, data={data}"}
        session = await self._get_session()
        async with session.get(url, headers=headers) as response:
            if response.status != 401:
                raise await self._read_failure(response, "SCRAM client-first")
            _, params = parse_auth_header(response.headers.get("WWW-Authenticate", ""))

        if "data" not in params:
            raise AuthenticationError("SCRAM client-first: no server-first message in challenge")
        return b64url_decode(params["data"])

    async def _step3_client_final(
        self,
        url: str,
        handshake_token: str,
        exchange: ScramExchange,
        server_first: str,
    ) -> str:
        """Step 3: send proof, verify server signature, return auth token."""
        logger.debug("Step 3: SCRAM client-final")
        data = b64url_encode(exchange.client_final_message(server_first))
        headers = {"Authorization": f"SCRAM handshakeToken={handshake_token}, data={data}"}
        session = await self._get_session()
        async with session.get(url, headers=headers) as response:
            if response.status != 200:
                raise await self._read_failure(response, "SCRAM client-final")
            params = parse_auth_params(response.headers.get("Authentication-Info", ""))

        if "authToken" not in params:
            raise AuthenticationError("SCRAM client-final: no authToken in Authentication-Info")
        if "data" in params:
            exchange.verify_server_final(b64url_decode(params["data"]))
        return params["authToken"]

    # =========================================================================
    # History writes
    # =========================================================================

    async def his_write_num(
        self,
        ref: Ref,
        samples: List[HisSample],
        unit: Optional[str] = None,
    ) -> dict:
        """Write numeric samples whose timestamps already carry their zone."""
        rows = [
            {"ts": encode_datetime(s.ts, _zone_key(s)), "val": encode_number(s.val, unit)}
            for s in samples
        ]
        return await self._his_write(ref, rows)

    async def utc_his_write_num(
        self,
        ref: Ref,
        time_zone_name: str,
        samples: List[HisSample],
        unit: Optional[str] = None,
    ) -> dict:
        """Write numeric samples given as UTC instants plus a zone name."""
        zone = resolve_timezone(time_zone_name)
        rows = [
            {
                "ts": encode_datetime(s.ts_utc.astimezone(zone), time_zone_name),
                "val": encode_number(s.val, unit),
            }
            for s in samples
        ]
        return await self._his_write(ref, rows)

    async def _his_write(self, ref: Ref, rows: List[dict]) -> dict:
        """POST a hisWrite grid and return the response grid.

        Raises:
            RemoteWriteError: On HTTP error status, error grid or transport failure
        """
        if self._auth_token is None:
            raise RemoteWriteError("client is not authenticated")

        url = self._url("his_write")
        grid = {
            "meta": {"ver": "3.0", "id": ref.to_json()},
            "cols": [{"name": "ts"}, {"name": "val"}],
            "rows": rows,
        }
        headers = {
            "Authorization": f"BEARER authToken={self._auth_token}",
            "Accept": "application/json",
        }
        logger.debug(f"POST {url} ({len(rows)} rows for {ref})")
        try:
            session = await self._get_session()
            async with session.post(url, json=grid, headers=headers) as response:
                if response.status != 200:
                    text = (await response.text())[:200]
                    logger.warning(f"hisWrite: HTTP {response.status} for {ref}")
                    raise RemoteWriteError(
                        f"HTTP {response.status} {response.reason} from {url}: {text}"
                    )
                try:
                    result = await response.json(content_type=None)
                except ValueError as e:
                    raise RemoteWriteError(f"malformed grid response from {url}: {e}") from e
        except asyncio.TimeoutError:
            logger.error(f"Timeout writing history for {ref}")
            raise RemoteWriteError(f"timeout writing history to {url}")
        except aiohttp.ClientError as e:
            logger.error(f"Error writing history for {ref}: {e}")
            raise RemoteWriteError(f"{url}: {e}") from e

        meta = result.get("meta") if isinstance(result, dict) else None
        if not isinstance(meta, dict):
            raise RemoteWriteError(f"malformed grid response from {url}: no grid meta")
        if "err" in meta:
            dis = meta.get("dis", "unknown error")
            logger.error(f"hisWrite error grid for {ref}: {dis}")
            raise RemoteWriteError(_strip_kind(dis))
        return result


def _zone_key(sample: HisSample) -> str:
    # ZoneInfo exposes its IANA name as ``key``; fixed offsets fall back to UTC
    return getattr(sample.ts.tzinfo, "key", "UTC")


def _strip_kind(value) -> str:
    # Haystack JSON strings may carry an "s:" kind prefix
    text = str(value)
    return text[2:] if text.startswith("s:") else text

import asyncio
import base64
import hashlib
import hmac
import threading

import pytest
from aiohttp import web

from pyraystack.scram import b64url_decode, b64url_encode, parse_auth_header, parse_scram_message

USERNAME = "su"
PASSWORD = "secret"
AUTH_TOKEN = "tok-1"
HANDSHAKE_TOKEN = "hs-1"
SALT = b"pyraystack-salt"
ITERATIONS = 4096


class RecordingClient:
    """Stands in for AsyncSkySparkClient and records every call."""

    def __init__(self):
        self.connects = []
        self.calls = []
        self.closed = False
        self.fail_with = None

    async def factory(self, url, username, password, seed):
        self.connects.append((url, username, password, seed))
        return self

    async def his_write_num(self, ref, samples, unit=None):
        self.calls.append(("his_write_num", ref, None, list(samples), unit))
        if self.fail_with is not None:
            raise self.fail_with
        return {"meta": {"ver": "3.0"}, "cols": [{"name": "empty"}], "rows": []}

    async def utc_his_write_num(self, ref, time_zone_name, samples, unit=None):
        self.calls.append(("utc_his_write_num", ref, time_zone_name, list(samples), unit))
        if self.fail_with is not None:
            raise self.fail_with
        return {"meta": {"ver": "3.0"}, "cols": [{"name": "empty"}], "rows": []}

    async def close(self):
        self.closed = True


@pytest.fixture
def recording_client():
    return RecordingClient()


def _hmac(key, msg):
    return hmac.new(key, msg.encode("utf-8"), "sha256").digest()


class MockSkySpark:
    """Minimal SkySpark server: SCRAM-SHA-256 auth plus hisWrite."""

    def __init__(self):
        self.password = PASSWORD
        self.reject_status = None
        self.his_write_status = 200
        self.error_dis = None
        self.response_body = None
        self.writes = []
        self.port = None
        self._client_first_bare = None
        self._server_first = None
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, daemon=True)
        self._runner = None

    @property
    def url(self):
        return f"http://127.0.0.1:{self.port}/api/demo/"

    def start(self):
        self._thread.start()
        asyncio.run_coroutine_threadsafe(self._start_site(), self._loop).result(10)

    def stop(self):
        asyncio.run_coroutine_threadsafe(self._runner.cleanup(), self._loop).result(10)
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(10)
        self._loop.close()

    async def _start_site(self):
        app = web.Application()
        app.router.add_get("/api/demo/about", self.about)
        app.router.add_post("/api/demo/hisWrite", self.his_write)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, "127.0.0.1", 0)
        await site.start()
        self.port = self._runner.addresses[0][1]

    async def about(self, request):
        if self.reject_status is not None:
            return web.Response(status=self.reject_status, text="Forbidden")

        scheme, params = parse_auth_header(request.headers.get("Authorization", ""))
        if scheme == "hello":
            if b64url_decode(params["username"]) != USERNAME:
                return web.Response(status=403, text="Unknown user")
            return web.Response(
                status=401,
                headers={"WWW-Authenticate": f"SCRAM handshakeToken={HANDSHAKE_TOKEN}, hash=SHA-256"},
            )

        if scheme == "scram":
            message = b64url_decode(params["data"])
            if message.startswith("n,,"):
                return self._server_first_response(message[3:])
            return self._server_final_response(message)

        if request.headers.get("Authorization") == f"BEARER authToken={AUTH_TOKEN}":
            return web.json_response({"meta": {"ver": "3.0"}, "cols": [], "rows": []})
        return web.Response(status=401)

    def _server_first_response(self, client_first_bare):
        client_nonce = parse_scram_message(client_first_bare)["r"]
        salt = base64.b64encode(SALT).decode("ascii")
        self._client_first_bare = client_first_bare
        self._server_first = f"r={client_nonce}srvnonce,s={salt},i={ITERATIONS}"
        return web.Response(
            status=401,
            headers={
                "WWW-Authenticate": (
                    f"SCRAM handshakeToken={HANDSHAKE_TOKEN}, hash=SHA-256, "
                    f"data={b64url_encode(self._server_first)}"
                )
            },
        )

    def _server_final_response(self, client_final):
        without_proof, _, proof = client_final.rpartition(",p=")
        auth_message = f"{self._client_first_bare},{self._server_first},{without_proof}"

        salted = hashlib.pbkdf2_hmac("sha256", self.password.encode("utf-8"), SALT, ITERATIONS)
        client_key = _hmac(salted, "Client Key")
        signature = _hmac(hashlib.sha256(client_key).digest(), auth_message)
        expected = base64.b64encode(bytes(a ^ b for a, b in zip(client_key, signature))).decode("ascii")
        if proof != expected:
            return web.Response(status=403, text="Invalid password")

        server_signature = base64.b64encode(_hmac(_hmac(salted, "Server Key"), auth_message))
        data = b64url_encode("v=" + server_signature.decode("ascii"))
        return web.Response(
            status=200,
            headers={"Authentication-Info": f"authToken={AUTH_TOKEN}, data={data}"},
        )

    async def his_write(self, request):
        if request.headers.get("Authorization") != f"BEARER authToken={AUTH_TOKEN}":
            return web.Response(status=401, text="Unauthorized")
        if self.his_write_status != 200:
            return web.Response(status=self.his_write_status, text="Internal Server Error")

        grid = await request.json()
        self.writes.append(grid)
        if self.response_body is not None:
            return web.json_response(self.response_body)
        if self.error_dis is not None:
            return web.json_response({
                "meta": {"ver": "3.0", "err": "m:", "dis": f"s:{self.error_dis}"},
                "cols": [{"name": "empty"}],
                "rows": [],
            })
        return web.json_response({"meta": {"ver": "3.0"}, "cols": [{"name": "empty"}], "rows": []})


@pytest.fixture
def skyspark_server():
    server = MockSkySpark()
    server.start()
    yield server
    server.stop()

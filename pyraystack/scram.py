"""SCRAM helpers for the Haystack authentication handshake.

Haystack servers (SkySpark included) authenticate with SCRAM (RFC 5802)
carried in HTTP ``Authorization`` / ``WWW-Authenticate`` headers. Message
payloads travel as unpadded base64url in a ``data`` parameter.
"""

import base64
import hashlib
import hmac
import secrets
from typing import Dict, Tuple


def b64url_encode(text: str) -> str:
    """Base64url without padding, as Haystack expects."""
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def b64url_decode(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")


def parse_auth_header(header: str) -> Tuple[str, Dict[str, str]]:
    """Split an auth header into scheme and parameters.

    Example:
        "SCRAM handshakeToken=abc, hash=SHA-256" ->
        ("scram", {"handshakeToken": "abc", "hash": "SHA-256"})
    """
    scheme, _, rest = header.strip().partition(" ")
    return scheme.lower(), parse_auth_params(rest)


def parse_auth_params(text: str) -> Dict[str, str]:
    """Parse 'key=value, key=value' header parameters."""
    params = {}
    for part in text.split(","):
        part = part.strip()
        if "=" in part:
            key, value = part.split("=", 1)
            params[key.strip()] = value.strip()
    return params


def parse_scram_message(message: str) -> Dict[str, str]:
    """Parse 'r=...,s=...,i=...' into a dict."""
    fields = {}
    for part in message.split(","):
        if "=" in part:
            key, value = part.split("=", 1)
            fields[key] = value
    return fields


def hashlib_name(hash_name: str) -> str:
    """Map a SCRAM hash name ('SHA-256') to its hashlib name ('sha256')."""
    return hash_name.replace("-", "").lower()


def _escape_username(username: str) -> str:
    return username.replace("=", "=3D").replace(",", "=2C")


def _xor(left: bytes, right: bytes) -> bytes:
    return bytes(a ^ b for a, b in zip(left, right))


class ScramExchange:
    """Client side of one SCRAM conversation.

    Usage:
        exchange = ScramExchange(username, password, "SHA-256")
        first = exchange.client_first_message()
        final = exchange.client_final_message(server_first)
        exchange.verify_server_final(server_final)
    """

    GS2_HEADER = "n,,"

    def __init__(self, username: str, password: str, hash_name: str = "SHA-256", nonce: str = None):
        self.username = username
        self.password = password
        self.digest = hashlib_name(hash_name)
        if self.digest not in hashlib.algorithms_available:
            raise ValueError(f"unsupported SCRAM hash {hash_name!r}")
        self.client_nonce = nonce or secrets.token_urlsafe(18)
        self._auth_message = None
        self._salted_password = None

    def _hmac(self, key: bytes, msg: str) -> bytes:
        return hmac.new(key, msg.encode("utf-8"), self.digest).digest()

    def _hash(self, data: bytes) -> bytes:
        return hashlib.new(self.digest, data).digest()

    @property
    def client_first_bare(self) -> str:
        return f"n={_escape_username(self.username)},r={self.client_nonce}"

    def client_first_message(self) -> str:
        return self.GS2_HEADER + self.client_first_bare

    def client_final_message(self, server_first: str) -> str:
        """Build the proof message from the server-first message."""
        fields = parse_scram_message(server_first)
        try:
            nonce = fields["r"]
            salt = base64.b64decode(fields["s"])
            iterations = int(fields["i"])
        except (KeyError, ValueError) as e:
            raise ValueError(f"malformed server-first message: {server_first!r}") from e
        if not nonce.startswith(self.client_nonce):
            raise ValueError("server nonce does not extend client nonce")

        channel_binding = "c=" + base64.b64encode(self.GS2_HEADER.encode("ascii")).decode("ascii")
        without_proof = f"{channel_binding},r={nonce}"
        self._auth_message = f"{self.client_first_bare},{server_first},{without_proof}"

        self._salted_password = hashlib.pbkdf2_hmac(
            self.digest, self.password.encode("utf-8"), salt, iterations
        )
        client_key = self._hmac(self._salted_password, "Client Key")
        client_signature = self._hmac(self._hash(client_key), self._auth_message)
        proof = base64.b64encode(_xor(client_key, client_signature)).decode("ascii")
        return f"{without_proof},p={proof}"

    def verify_server_final(self, server_final: str) -> None:
        """Check the server signature; raises ValueError on mismatch."""
        if self._auth_message is None:
            raise ValueError("client-final message not yet sent")
        fields = parse_scram_message(server_final)
        if "e" in fields:
            raise ValueError(f"server rejected authentication: {fields['e']}")
        server_key = self._hmac(self._salted_password, "Server Key")
        expected = base64.b64encode(self._hmac(server_key, self._auth_message)).decode("ascii")
        if not hmac.compare_digest(expected, fields.get("v", "")):
            raise ValueError("server signature mismatch")

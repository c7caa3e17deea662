import pytest

from pyraystack.scram import (
    ScramExchange,
    b64url_decode,
    b64url_encode,
    hashlib_name,
    parse_auth_header,
    parse_auth_params,
)

# RFC 7677 section 3 example
CLIENT_NONCE = "rOprNGfwEbeRWgbNEkqO"
SERVER_FIRST = "r=rOprNGfwEbeRWgbNEkqO%hvYDpWUa2RaTCAfuxFIlj)hNlF$k0,s=W22ZaJ0SNY7soEsUEjb6gQ==,i=4096"
CLIENT_FINAL = (
    "c=biws,r=rOprNGfwEbeRWgbNEkqO%hvYDpWUa2RaTCAfuxFIlj)hNlF$k0,"
    "p=dHzbZapWIk4jUhN+Ute9ytag9zjfMHgsqmmiz7AndVQ="
)
SERVER_FINAL = "v=6rriTRBi23WpRR/wtup+mMhUZUn/dB5nLTJRsjl95G4="


def test_rfc7677_exchange():
    exchange = ScramExchange("user", "pencil", "SHA-256", nonce=CLIENT_NONCE)

    assert exchange.client_first_message() == "n,,n=user,r=rOprNGfwEbeRWgbNEkqO"
    assert exchange.client_final_message(SERVER_FIRST) == CLIENT_FINAL
    exchange.verify_server_final(SERVER_FINAL)


def test_bad_server_signature():
    exchange = ScramExchange("user", "pencil", nonce=CLIENT_NONCE)
    exchange.client_final_message(SERVER_FIRST)

    with pytest.raises(ValueError, match="signature"):
        exchange.verify_server_final("v=AAAA")


def test_server_error_in_final_message():
    exchange = ScramExchange("user", "pencil", nonce=CLIENT_NONCE)
    exchange.client_final_message(SERVER_FIRST)

    with pytest.raises(ValueError, match="invalid-proof"):
        exchange.verify_server_final("e=invalid-proof")


def test_server_nonce_must_extend_client_nonce():
    exchange = ScramExchange("user", "pencil", nonce="abc")

    with pytest.raises(ValueError, match="nonce"):
        exchange.client_final_message(SERVER_FIRST)


def test_malformed_server_first():
    exchange = ScramExchange("user", "pencil", nonce=CLIENT_NONCE)

    with pytest.raises(ValueError, match="malformed"):
        exchange.client_final_message(f"r={CLIENT_NONCE}xyz,i=notanumber")


def test_username_is_escaped():
    exchange = ScramExchange("a=b,c", "pw", nonce="n1")

    assert exchange.client_first_bare == "n=a=3Db=2Cc,r=n1"


def test_unsupported_hash():
    with pytest.raises(ValueError, match="unsupported"):
        ScramExchange("user", "pencil", "MD17")


def test_hashlib_name():
    assert hashlib_name("SHA-256") == "sha256"
    assert hashlib_name("SHA-512") == "sha512"


def test_b64url_drops_padding():
    encoded = b64url_encode("su")

    assert "=" not in encoded
    assert b64url_decode(encoded) == "su"


def test_parse_auth_header():
    scheme, params = parse_auth_header("SCRAM handshakeToken=abc, hash=SHA-256, data=eHl6")

    assert scheme == "scram"
    assert params == {"handshakeToken": "abc", "hash": "SHA-256", "data": "eHl6"}


def test_parse_auth_params():
    assert parse_auth_params("authToken=t1, data=dj1hYmM") == {"authToken": "t1", "data": "dj1hYmM"}

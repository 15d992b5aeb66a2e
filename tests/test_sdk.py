"""Tests for the Python SDK client."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from datamarket_sdk import MarketClient, build_storage_request, sign_storage_request

from tests.conftest import BUYER_KEY, MEASUREMENT_HASH


def response(payload, status_code=200):
    mock = MagicMock()
    mock.status_code = status_code
    mock.json.return_value = payload
    if status_code >= 400:
        mock.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    return mock


def test_login_sets_session_header():
    client = MarketClient("http://api.local/")
    with patch.object(client.session, "request", return_value=response({"token": "tok", "address": "0xabc"})) as req:
        client.login("0xabc", "pw")

    req.assert_called_once_with(
        "POST",
        "http://api.local/v1/sessions",
        timeout=30.0,
        json={"account": "0xabc", "password": "pw"},
    )
    assert client.session.headers["x-session-token"] == "tok"


def test_logout_forgets_token_even_on_error():
    client = MarketClient("http://api.local")
    client.token = "tok"
    client.session.headers["x-session-token"] = "tok"

    with patch.object(client.session, "request", return_value=response({}, 401)):
        with pytest.raises(requests.HTTPError):
            client.logout()

    assert client.token is None
    assert "x-session-token" not in client.session.headers


def test_purchase_and_retrieve_paths():
    client = MarketClient("http://api.local")
    with patch.object(client.session, "request", return_value=response({"status": "success"})) as req:
        client.purchase(MEASUREMENT_HASH)
        client.retrieve(MEASUREMENT_HASH)
        client.transfers()

    assert req.call_args_list[0].args == ("POST", "http://api.local/v1/purchases")
    assert req.call_args_list[0].kwargs["json"] == {"hash": MEASUREMENT_HASH}
    assert req.call_args_list[1].args == ("GET", f"http://api.local/v1/measurements/{MEASUREMENT_HASH}/value")
    assert req.call_args_list[2].args == ("GET", "http://api.local/v1/wallet/transfers")


def test_storage_request_signature_is_deterministic_per_timestamp():
    address = "0x" + "11" * 20

    first = sign_storage_request(address, MEASUREMENT_HASH, 1700000000000, BUYER_KEY)
    second = sign_storage_request(address, MEASUREMENT_HASH, 1700000000001, BUYER_KEY)

    assert first == sign_storage_request(address, MEASUREMENT_HASH, 1700000000000, "0x" + BUYER_KEY.hex())
    assert first != second


def test_build_storage_request_body():
    body = build_storage_request("0x" + "AB" * 20, MEASUREMENT_HASH, BUYER_KEY, timestamp_ms=1700000000000)

    assert body["clientAddr"] == "ab" * 20
    assert body["hash"] == MEASUREMENT_HASH[2:]
    assert body["timestamp"] == 1700000000000
    assert len(bytes.fromhex(body["signature"])) == 65

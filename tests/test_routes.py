"""Tests for the HTTP surface."""

import json
from unittest.mock import MagicMock, patch

import pytest
from eth_account import Account
from fastapi.testclient import TestClient

from datamarket_api.db.session import get_db
from datamarket_api.ledger.source import get_event_source
from datamarket_api.main import app
from datamarket_api.security import session as session_module
from datamarket_api.security.request_signing import SignedStorageRequest, get_replay_guard, now_ms
from datamarket_api.security.session import SessionStore
from datamarket_api.storage.client import get_offchain_client
from datamarket_api.storage.service import get_measurement_store

from tests.conftest import BUYER_KEY, INITIAL_BALANCE, MEASUREMENT, MEASUREMENT_HASH, PRICE


@pytest.fixture
def store(monkeypatch):
    """Fresh process-wide session store."""
    fresh = SessionStore(ttl_seconds=1800)
    monkeypatch.setattr(session_module, "_session_store", fresh)
    yield fresh
    fresh.close_all()


@pytest.fixture
def measurement_store():
    minio_store = MagicMock()
    minio_store.get_measurement.return_value = "21.5"
    return minio_store


@pytest.fixture
def client(db, events, offchain, measurement_store, store):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_event_source] = lambda: events
    app.dependency_overrides[get_offchain_client] = lambda: offchain
    app.dependency_overrides[get_measurement_store] = lambda: measurement_store
    app.dependency_overrides[get_replay_guard] = lambda: None
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(store, buyer_material):
    opened = store.open(buyer_material)
    return {"x-session-token": opened.token}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["x-correlation-id"]


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["service"] == "Data Market API"


def test_correlation_id_is_echoed(client):
    response = client.get("/health", headers={"x-correlation-id": "req-42"})
    assert response.headers["x-correlation-id"] == "req-42"


def test_protected_route_requires_session(client):
    response = client.get("/v1/account")
    assert response.status_code == 401
    assert response.json()["error_code"] == "SESSION_EXPIRED"


def test_account(client, auth_headers, buyer_material):
    response = client.get("/v1/account", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["address"] == buyer_material.address
    assert data["balance"] == INITIAL_BALANCE
    assert data["symbol"] == "MTK"


def test_catalogue_is_public_and_priced(client):
    response = client.get("/v1/measurements")
    assert response.status_code == 200
    assert response.json() == [
        {
            "hash": MEASUREMENT_HASH,
            "description": "temperature t-101",
            "price": PRICE,
            "block_number": 2,
        }
    ]


def test_purchase_then_duplicate(client, auth_headers):
    response = client.post("/v1/purchases", json={"hash": MEASUREMENT_HASH}, headers=auth_headers)
    assert response.status_code == 201
    assert response.json()["price"] == PRICE

    response = client.post("/v1/purchases", json={"hash": MEASUREMENT_HASH}, headers=auth_headers)
    assert response.status_code == 409
    assert response.json() == {
        "status": "failed",
        "error_code": "ALREADY_PURCHASED",
        "detail": response.json()["detail"],
    }


def test_wallet_lists_completed_purchases(client, auth_headers):
    client.post("/v1/purchases", json={"hash": MEASUREMENT_HASH}, headers=auth_headers)

    response = client.get("/v1/wallet/purchases", headers=auth_headers)

    assert response.status_code == 200
    purchases = response.json()
    assert [p["hash"] for p in purchases] == [MEASUREMENT_HASH]
    assert purchases[0]["price"] == PRICE


def test_wallet_lists_transfers(client, auth_headers, buyer_material):
    client.post("/v1/purchases", json={"hash": MEASUREMENT_HASH}, headers=auth_headers)

    response = client.get("/v1/wallet/transfers", headers=auth_headers)

    assert response.status_code == 200
    transfers = response.json()
    assert [t["value"] for t in transfers] == [INITIAL_BALANCE, PRICE]
    assert transfers[0]["recipient"] == buyer_material.address
    assert transfers[1]["sender"] == buyer_material.address


def test_measurement_value(client, auth_headers):
    client.post("/v1/purchases", json={"hash": MEASUREMENT_HASH}, headers=auth_headers)

    response = client.get(f"/v1/measurements/{MEASUREMENT_HASH}/value", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["measurement"] == MEASUREMENT.decode()
    assert data["variant"] == "keyed"


def test_measurement_value_requires_purchase(client, auth_headers):
    response = client.get(f"/v1/measurements/{MEASUREMENT_HASH}/value", headers=auth_headers)
    assert response.status_code == 403
    assert response.json()["error_code"] == "NOT_PURCHASED"


def test_storage_endpoint_serves_purchased_measurement(client, auth_headers, buyer_material, measurement_store):
    client.post("/v1/purchases", json={"hash": MEASUREMENT_HASH}, headers=auth_headers)
    body = SignedStorageRequest.create(buyer_material.address, MEASUREMENT_HASH, BUYER_KEY).to_json()

    response = client.post("/v1/storage/measurements", json=body)

    assert response.status_code == 200
    assert response.json() == {"measurement": "21.5"}
    measurement_store.get_measurement.assert_called_once_with(MEASUREMENT_HASH[2:])


def test_storage_endpoint_rejects_stale_request(client, auth_headers, buyer_material):
    client.post("/v1/purchases", json={"hash": MEASUREMENT_HASH}, headers=auth_headers)
    body = SignedStorageRequest.create(
        buyer_material.address, MEASUREMENT_HASH, BUYER_KEY, timestamp_ms=now_ms() - 10 * 60 * 1000
    ).to_json()

    response = client.post("/v1/storage/measurements", json=body)

    assert response.status_code == 403
    assert response.json()["error_code"] == "STORAGE_DENIED"


def test_login_and_logout(client, tmp_path, buyer_material):
    keyfile = Account.encrypt(BUYER_KEY, "pw", kdf="pbkdf2", iterations=2)
    (tmp_path / f"UTC--key--{buyer_material.address[2:].lower()}").write_text(json.dumps(keyfile))

    with patch("datamarket_api.security.session.get_settings") as mock_settings:
        mock_settings.return_value.keystore_dir = str(tmp_path)
        response = client.post("/v1/sessions", json={"account": buyer_material.address, "password": "pw"})
    assert response.status_code == 201
    token = response.json()["token"]
    assert response.json()["address"] == buyer_material.address

    response = client.delete("/v1/sessions", headers={"x-session-token": token})
    assert response.status_code == 200

    response = client.get("/v1/account", headers={"x-session-token": token})
    assert response.status_code == 401


def test_login_with_wrong_password(client, tmp_path, buyer_material):
    keyfile = Account.encrypt(BUYER_KEY, "pw", kdf="pbkdf2", iterations=2)
    (tmp_path / f"UTC--key--{buyer_material.address[2:].lower()}").write_text(json.dumps(keyfile))

    with patch("datamarket_api.security.session.get_settings") as mock_settings:
        mock_settings.return_value.keystore_dir = str(tmp_path)
        response = client.post("/v1/sessions", json={"account": buyer_material.address, "password": "nope"})

    assert response.status_code == 401
    assert response.json()["error_code"] == "AUTHENTICATION_FAILED"

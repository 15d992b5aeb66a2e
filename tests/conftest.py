"""Pytest configuration and fixtures."""

import hashlib
import os

# Settings are cached on first use; configure the environment before any app import
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LEDGER_PROVIDER", "memory")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REPLAY_PROTECTION_ENABLED", "false")

import pytest
from eth_keys import keys
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from datamarket_api.db.base import Base
from datamarket_api.ledger.memory import InMemoryLedgerClient
from datamarket_api.ledger.source import LedgerEventSource
from datamarket_api.models import MeasurementListing  # noqa: F401  (registers tables)
from datamarket_api.security import content_cipher, key_exchange
from datamarket_api.security.keys import KeyMaterial
from datamarket_api.security.request_signing import RequestAuthenticator
from datamarket_api.security.session import SessionContext

BUYER_KEY = bytes.fromhex("4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318")
PRODUCER_KEY = bytes.fromhex("8da4ef21b864d2cc526dbdb2a120bd2874c36c9d0a1fb7f8c63d7f7a8b41de8f")
OTHER_KEY = bytes.fromhex("0dbbe8e4ae425a6d2687f1a7e3ba17bc98c673636790f1b8ad91193c05875ef1")

MEASUREMENT = b'{"sensor": "t-101", "celsius": 21.5}'
MEASUREMENT_HASH = "0x" + hashlib.sha256(MEASUREMENT).hexdigest()
CONTENT_KEY = bytes(range(32))
CONTENT_CID = "QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG"
STORAGE_URL = "http://storage.local/v1/storage/measurements"
PRICE = 50
INITIAL_BALANCE = 100


class FakeOffChain:
    """Off-chain client double: IPFS content by CID and a storage service backed by the ledger."""

    def __init__(self, events: LedgerEventSource, content: dict, measurements: dict):
        self.events = events
        self.content = content
        self.measurements = measurements
        self.requests = []

    def fetch_content(self, cid: str) -> bytes:
        return self.content[cid]

    def fetch_measurement(self, locator, request):
        from datamarket_api.errors import StorageDenied

        self.requests.append((locator, request))
        decision = RequestAuthenticator(self.events, max_age_ms=60000).verify(request)
        if not decision.allowed:
            raise StorageDenied(decision.reason)
        return self.measurements[request.measurement_hash]


@pytest.fixture
def producer_key() -> keys.PrivateKey:
    return keys.PrivateKey(PRODUCER_KEY)


@pytest.fixture
def producer_address(producer_key) -> str:
    return producer_key.public_key.to_checksum_address()


@pytest.fixture
def buyer_material() -> KeyMaterial:
    return KeyMaterial(BUYER_KEY)


@pytest.fixture
def session(buyer_material) -> SessionContext:
    """Open buyer session; key material is wiped at teardown."""
    with SessionContext(buyer_material) as ctx:
        yield ctx


@pytest.fixture
def content_store(producer_key) -> dict:
    return {CONTENT_CID: content_cipher.seal(MEASUREMENT, CONTENT_KEY, producer_key)}


@pytest.fixture
def keyed_deliverer():
    def deliver(public_key: bytes) -> bytes:
        return key_exchange.wrap(key_exchange.build_keyed_payload(CONTENT_KEY, CONTENT_CID), public_key)

    return deliver


@pytest.fixture
def direct_deliverer():
    def deliver(public_key: bytes) -> bytes:
        return key_exchange.wrap(STORAGE_URL.encode(), public_key)

    return deliver


@pytest.fixture
def ledger(buyer_material, producer_address, keyed_deliverer) -> InMemoryLedgerClient:
    """In-memory ledger with a funded buyer and one keyed-content measurement for sale."""
    client = InMemoryLedgerClient()
    client.mint(buyer_material.address, INITIAL_BALANCE)
    client.store_measurement(MEASUREMENT_HASH, "temperature t-101", PRICE, producer_address, keyed_deliverer)
    return client


@pytest.fixture
def events(ledger) -> LedgerEventSource:
    return LedgerEventSource(ledger)


@pytest.fixture
def offchain(events, content_store) -> FakeOffChain:
    return FakeOffChain(events, content_store, {MEASUREMENT_HASH[2:]: MEASUREMENT.decode()})


@pytest.fixture(scope="function")
def db():
    """SQLite in-memory database session with the projection tables."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)

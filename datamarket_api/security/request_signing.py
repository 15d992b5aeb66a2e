"""Signed, timestamped requests to the off-chain storage service.

The signed message is ``bytes(address) || bytes(hash) || ascii(timestamp_ms)``
hashed with SHA-256 and signed with the buyer's secp256k1 key. The storage
service recovers the signer, checks the ledger for a completed purchase and
rejects timestamps outside the freshness window.
"""

import hashlib
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import redis
from eth_keys import keys
from eth_keys.constants import SECPK1_N
from eth_keys.exceptions import BadSignature, ValidationError
from eth_utils import is_address, to_checksum_address

from datamarket_api.errors import MarketError, StorageUnavailable
from datamarket_api.ledger.events import normalize_hash
from datamarket_api.ledger.source import LedgerEventSource
from datamarket_api.security.keys import strip_hex_prefix
from datamarket_api.settings import get_settings
from datamarket_api.utils.metrics import storage_auth_decisions

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def signing_message(buyer_address: str, measurement_hash: str, timestamp_ms: int) -> bytes:
    return (
        bytes.fromhex(strip_hex_prefix(buyer_address))
        + bytes.fromhex(strip_hex_prefix(measurement_hash))
        + str(timestamp_ms).encode("ascii")
    )


def sign(buyer_address: str, measurement_hash: str, timestamp_ms: int, private_key: bytes) -> str:
    """Sign the request fields; returns the 65-byte recoverable signature as hex (no prefix)."""
    digest = hashlib.sha256(signing_message(buyer_address, measurement_hash, timestamp_ms)).digest()
    return keys.PrivateKey(private_key).sign_msg_hash(digest).to_bytes().hex()


@dataclass(frozen=True)
class SignedStorageRequest:
    """Body of ``POST <locator>`` to the storage service."""

    measurement_hash: str
    buyer_address: str
    timestamp: int
    signature: str

    @classmethod
    def create(
        cls,
        buyer_address: str,
        measurement_hash: str,
        private_key: bytes,
        timestamp_ms: Optional[int] = None,
    ) -> "SignedStorageRequest":
        timestamp_ms = now_ms() if timestamp_ms is None else timestamp_ms
        return cls(
            measurement_hash=strip_hex_prefix(normalize_hash(measurement_hash)),
            buyer_address=strip_hex_prefix(buyer_address).lower(),
            timestamp=timestamp_ms,
            signature=sign(buyer_address, measurement_hash, timestamp_ms, private_key),
        )

    @classmethod
    def from_json(cls, body: dict) -> "SignedStorageRequest":
        return cls(
            measurement_hash=strip_hex_prefix(str(body["hash"])),
            buyer_address=strip_hex_prefix(str(body["clientAddr"])),
            timestamp=int(body["timestamp"]),
            signature=strip_hex_prefix(str(body["signature"])).lower(),
        )

    def to_json(self) -> dict:
        return {
            "hash": self.measurement_hash,
            "clientAddr": self.buyer_address,
            "timestamp": self.timestamp,
            "signature": self.signature,
        }


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class AccessDecision:
    decision: Decision
    reason: str = "ok"

    @property
    def allowed(self) -> bool:
        return self.decision is Decision.ALLOW

    @classmethod
    def allow(cls) -> "AccessDecision":
        return cls(Decision.ALLOW)

    @classmethod
    def deny(cls, reason: str) -> "AccessDecision":
        return cls(Decision.DENY, reason)


def request_digest(request: SignedStorageRequest) -> bytes:
    return hashlib.sha256(
        signing_message(request.buyer_address, request.measurement_hash, request.timestamp)
    ).digest()


def recover_signer(request: SignedStorageRequest) -> Optional[str]:
    """Address that produced the request signature, or None if it is not a valid signature.

    Only low-s signatures are accepted, so each request has exactly one
    valid encoding.
    """
    try:
        signature = keys.Signature(signature_bytes=bytes.fromhex(request.signature))
        if signature.s > SECPK1_N // 2:
            return None
        return signature.recover_public_key_from_msg_hash(request_digest(request)).to_checksum_address()
    except (BadSignature, ValidationError, ValueError):
        return None


class ReplayGuard:
    """Remembers signed requests for the length of the freshness window (single use).

    Requests are keyed by the digest of the signed fields, not by the
    signature text.
    """

    def __init__(self, client: redis.Redis, window_ms: int):
        self.client = client
        self.window_ms = window_ms

    def first_use(self, request: SignedStorageRequest) -> bool:
        key = f"storage-request:{request_digest(request).hex()}"
        try:
            return bool(self.client.set(key, 1, nx=True, px=self.window_ms))
        except redis.RedisError as e:
            raise StorageUnavailable("Replay cache unavailable") from e


class RequestAuthenticator:
    """Storage-service side verification of signed requests."""

    def __init__(
        self,
        events: LedgerEventSource,
        max_age_ms: Optional[int] = None,
        replay_guard: Optional[ReplayGuard] = None,
    ):
        self.events = events
        self.max_age_ms = get_settings().storage_request_max_age_ms if max_age_ms is None else max_age_ms
        self.replay_guard = replay_guard

    def _decide(self, request: SignedStorageRequest, received_at_ms: int) -> AccessDecision:
        if abs(received_at_ms - request.timestamp) > self.max_age_ms:
            return AccessDecision.deny("stale_timestamp")

        claimed = "0x" + request.buyer_address
        if not is_address(claimed):
            return AccessDecision.deny("invalid_address")
        signer = recover_signer(request)
        if signer is None or signer != to_checksum_address(claimed):
            return AccessDecision.deny("bad_signature")

        # ledger failures propagate: "cannot check" is not "not purchased"
        if not self.events.purchase_completions(claimed, request.measurement_hash):
            return AccessDecision.deny("not_purchased")

        if self.replay_guard is not None and not self.replay_guard.first_use(request):
            return AccessDecision.deny("replayed")
        return AccessDecision.allow()

    def verify(self, request: SignedStorageRequest, received_at_ms: Optional[int] = None) -> AccessDecision:
        received_at_ms = now_ms() if received_at_ms is None else received_at_ms
        try:
            decision = self._decide(request, received_at_ms)
        except MarketError:
            storage_auth_decisions.labels(decision="error", reason="ledger").inc()
            raise
        storage_auth_decisions.labels(decision=decision.decision.value, reason=decision.reason).inc()
        if not decision.allowed:
            logger.info(
                f"Storage request denied: {decision.reason}",
                extra={"address": request.buyer_address, "measurement_hash": request.measurement_hash},
            )
        return decision


_replay_guard: Optional[ReplayGuard] = None


def get_replay_guard() -> Optional[ReplayGuard]:
    """Get the redis-backed replay guard, or None when disabled."""
    global _replay_guard
    settings = get_settings()
    if not settings.replay_protection_enabled:
        return None
    if _replay_guard is None:
        client = redis.from_url(settings.redis_url, decode_responses=True)
        _replay_guard = ReplayGuard(client, settings.storage_request_max_age_ms)
    return _replay_guard

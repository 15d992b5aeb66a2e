"""Asymmetric wrap/unwrap of delivery payloads (ECIES over secp256k1).

Wire format, compatible with eciesjs:

    ephemeral public key (65 bytes, uncompressed) | nonce (16) | tag (16) | ciphertext

The AES-256-GCM key is HKDF-SHA256 over the ephemeral public key followed by
the uncompressed shared point.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional, Union
from urllib.parse import urlparse

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from ecdsa import SECP256k1, SigningKey, VerifyingKey
from ecdsa.errors import MalformedPointError

from datamarket_api.errors import DecryptionFailed
from datamarket_api.ledger.source import LedgerEventSource
from datamarket_api.security.session import SessionContext

logger = logging.getLogger(__name__)

SYMMETRIC_KEY_SIZE = 32
EPHEMERAL_KEY_SIZE = 65
NONCE_SIZE = 16
TAG_SIZE = 16


@dataclass(frozen=True)
class KeyedContent:
    """Symmetric key plus locator of encrypted content."""

    symmetric_key: bytes
    locator: str

    def __repr__(self) -> str:
        return f"KeyedContent(locator={self.locator!r}, symmetric_key=<redacted>)"


@dataclass(frozen=True)
class DirectFetch:
    """Locator of a storage service that serves plaintext to signed requests."""

    locator: str


DeliveryPayload = Union[KeyedContent, DirectFetch]


def _recipient_point(public_key: bytes) -> VerifyingKey:
    if len(public_key) == 64:
        public_key = b"\x04" + public_key
    return VerifyingKey.from_string(public_key, curve=SECP256k1)


def _shared_secret(ephemeral_public: bytes, peer: VerifyingKey, secret_exponent: int) -> bytes:
    shared_point = peer.pubkey.point * secret_exponent
    shared = VerifyingKey.from_public_point(shared_point, curve=SECP256k1).to_string("uncompressed")
    hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=None)
    return hkdf.derive(ephemeral_public + shared)


def wrap(plaintext: bytes, recipient_public_key: bytes) -> bytes:
    """Encrypt ``plaintext`` so that only the holder of the matching private key can read it."""
    recipient = _recipient_point(recipient_public_key)
    ephemeral = SigningKey.generate(curve=SECP256k1)
    ephemeral_public = ephemeral.get_verifying_key().to_string("uncompressed")
    aes_key = _shared_secret(ephemeral_public, recipient, ephemeral.privkey.secret_multiplier)

    nonce = os.urandom(NONCE_SIZE)
    sealed = AESGCM(aes_key).encrypt(nonce, plaintext, None)
    ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
    return ephemeral_public + nonce + tag + ciphertext


def unwrap_bytes(payload: bytes, private_key: bytes) -> bytes:
    """Decrypt a wrapped payload. Raises DecryptionFailed on wrong key or corruption."""
    header = EPHEMERAL_KEY_SIZE + NONCE_SIZE + TAG_SIZE
    if len(payload) <= header:
        raise DecryptionFailed("Encrypted payload is truncated")

    ephemeral_public = payload[:EPHEMERAL_KEY_SIZE]
    nonce = payload[EPHEMERAL_KEY_SIZE:EPHEMERAL_KEY_SIZE + NONCE_SIZE]
    tag = payload[EPHEMERAL_KEY_SIZE + NONCE_SIZE:header]
    ciphertext = payload[header:]

    try:
        ephemeral = VerifyingKey.from_string(ephemeral_public, curve=SECP256k1)
        aes_key = _shared_secret(ephemeral_public, ephemeral, int.from_bytes(private_key, "big"))
        return AESGCM(aes_key).decrypt(nonce, ciphertext + tag, None)
    except (InvalidTag, MalformedPointError, ValueError) as e:
        raise DecryptionFailed() from e


def _as_url(plaintext: bytes) -> Optional[str]:
    try:
        text = plaintext.decode("utf-8")
    except UnicodeDecodeError:
        return None
    parsed = urlparse(text)
    if parsed.scheme in ("http", "https") and parsed.netloc:
        return text
    return None


def classify_payload(plaintext: bytes) -> DeliveryPayload:
    """Select the delivery variant from the shape of the decrypted payload."""
    url = _as_url(plaintext)
    if url is not None:
        return DirectFetch(locator=url)
    if len(plaintext) <= SYMMETRIC_KEY_SIZE:
        raise DecryptionFailed("Decrypted payload has no content locator")
    try:
        locator = plaintext[SYMMETRIC_KEY_SIZE:].decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionFailed("Content locator is not valid text") from e
    return KeyedContent(symmetric_key=plaintext[:SYMMETRIC_KEY_SIZE], locator=locator)


def build_keyed_payload(symmetric_key: bytes, locator: str) -> bytes:
    """Producer side: the key+locator plaintext."""
    if len(symmetric_key) != SYMMETRIC_KEY_SIZE:
        raise ValueError(f"symmetric key must be {SYMMETRIC_KEY_SIZE} bytes")
    return symmetric_key + locator.encode("utf-8")


class KeyExchangeUnwrapper:
    """Unwrap the payload attached to a buyer's payment transaction."""

    def __init__(self, events: LedgerEventSource):
        self.events = events

    def unwrap(self, payment_tx_hash: str, session: SessionContext) -> DeliveryPayload:
        payload = self.events.payment_payload(payment_tx_hash)
        plaintext = unwrap_bytes(payload, session.key_material.private_key_bytes())
        delivery = classify_payload(plaintext)
        logger.debug(
            "Unwrapped delivery payload",
            extra={"tx_hash": payment_tx_hash, "variant": type(delivery).__name__},
        )
        return delivery

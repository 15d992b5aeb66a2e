"""Signing utilities for requests sent straight to a storage service."""

import hashlib
import time
from typing import Optional, Union

from eth_keys import keys


def _hex_bytes(value: str) -> bytes:
    return bytes.fromhex(value[2:] if value.lower().startswith("0x") else value)


def sign_storage_request(
    client_addr: str,
    measurement_hash: str,
    timestamp_ms: int,
    private_key: Union[str, bytes],
) -> str:
    """
    Sign a storage request.

    The signed message is the raw address bytes, the raw hash bytes and the
    decimal timestamp (milliseconds), hashed with SHA-256.

    Args:
        client_addr: Buyer address (hex, with or without 0x)
        measurement_hash: Measurement hash (hex, with or without 0x)
        timestamp_ms: Unix time in milliseconds
        private_key: Buyer private key (hex or 32 raw bytes)

    Returns:
        65-byte recoverable signature as hex (no prefix)
    """
    if isinstance(private_key, str):
        private_key = _hex_bytes(private_key)
    message = _hex_bytes(client_addr) + _hex_bytes(measurement_hash) + str(timestamp_ms).encode("ascii")
    digest = hashlib.sha256(message).digest()
    return keys.PrivateKey(private_key).sign_msg_hash(digest).to_bytes().hex()


def build_storage_request(
    client_addr: str,
    measurement_hash: str,
    private_key: Union[str, bytes],
    timestamp_ms: Optional[int] = None,
) -> dict:
    """Build the JSON body for ``POST <storage locator>``."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return {
        "hash": measurement_hash.lower().removeprefix("0x"),
        "clientAddr": client_addr.lower().removeprefix("0x"),
        "timestamp": timestamp_ms,
        "signature": sign_storage_request(client_addr, measurement_hash, timestamp_ms, private_key),
    }

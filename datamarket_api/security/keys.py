"""Session key material and keystore unlock."""

import json
import logging
import re
from pathlib import Path
from typing import Optional

from eth_account import Account
from eth_keys import keys
from eth_utils import to_checksum_address

from datamarket_api.errors import AuthenticationFailed

logger = logging.getLogger(__name__)


def strip_hex_prefix(value: str) -> str:
    """Drop a leading ``0x`` if present."""
    return value[2:] if value[:2].lower() == "0x" else value


class KeyMaterial:
    """secp256k1 private key of one consumer, held for one session.

    The raw key lives in a mutable buffer so that ``wipe()`` can zero it.
    """

    def __init__(self, private_key: bytes):
        if len(private_key) != 32:
            raise ValueError("private key must be 32 bytes")
        self._secret = bytearray(private_key)
        eth_key = keys.PrivateKey(bytes(self._secret))
        self.public_key: bytes = eth_key.public_key.to_bytes()
        self.address: str = eth_key.public_key.to_checksum_address()

    @classmethod
    def from_hex(cls, private_key_hex: str) -> "KeyMaterial":
        return cls(bytes.fromhex(strip_hex_prefix(private_key_hex)))

    @property
    def wiped(self) -> bool:
        return not any(self._secret)

    @property
    def public_key_hex(self) -> str:
        """Uncompressed public key with the ``04`` prefix, as published on-chain."""
        return "04" + self.public_key.hex()

    def private_key_bytes(self) -> bytes:
        if self.wiped:
            raise AuthenticationFailed("Session key material has been erased")
        return bytes(self._secret)

    def wipe(self) -> None:
        for i in range(len(self._secret)):
            self._secret[i] = 0

    def __repr__(self) -> str:
        return f"KeyMaterial(address={self.address}, secret=<redacted>)"


def find_keystore_file(keystore_dir: str, address: str) -> Optional[Path]:
    """Find the key file whose name ends with the account address."""
    directory = Path(keystore_dir)
    if not directory.is_dir():
        return None
    pattern = re.compile(".*" + re.escape(strip_hex_prefix(address)) + "$", re.IGNORECASE)
    for path in sorted(directory.iterdir()):
        if path.is_file() and pattern.match(path.name):
            return path
    return None


def unlock_keystore(keystore_dir: str, address: str, password: str) -> KeyMaterial:
    """Decrypt the account's keystore file and return its key material."""
    try:
        checksum_address = to_checksum_address(address)
    except ValueError as e:
        raise AuthenticationFailed("Invalid account address") from e

    key_file = find_keystore_file(keystore_dir, checksum_address)
    if key_file is None:
        logger.info("No keystore file for account", extra={"address": checksum_address})
        raise AuthenticationFailed()

    try:
        keyfile_json = json.loads(key_file.read_text())
        private_key = Account.decrypt(keyfile_json, password)
    except (ValueError, KeyError, TypeError) as e:
        # wrong password surfaces as a MAC mismatch ValueError
        logger.info("Keystore unlock failed", extra={"address": checksum_address})
        raise AuthenticationFailed() from e

    material = KeyMaterial(bytes(private_key))
    if material.address != checksum_address:
        material.wipe()
        raise AuthenticationFailed()
    return material

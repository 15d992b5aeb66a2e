"""Symmetric encryption of measurement content with a detached producer signature.

Plaintext layout: measurement body followed by a 64-byte ``r || s`` signature
of SHA-256(body) made with the producer's secp256k1 key. Ciphertext layout:
12-byte nonce followed by the AES-256-GCM output.
"""

import hashlib
import os
from dataclasses import dataclass
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError
from eth_utils import is_address, to_checksum_address

from datamarket_api.errors import DecryptionFailed, IntegrityViolation
from datamarket_api.security.keys import strip_hex_prefix

SIGNATURE_SIZE = 64
NONCE_SIZE = 12


@dataclass(frozen=True)
class SealedMeasurement:
    """Decrypted measurement body and its detached signature."""

    body: bytes
    signature: bytes

    @property
    def r(self) -> str:
        return "0x" + self.signature[:32].hex()

    @property
    def s(self) -> str:
        return "0x" + self.signature[32:].hex()


def open_content(ciphertext: bytes, symmetric_key: bytes) -> SealedMeasurement:
    """Decrypt content and split off the trailing signature."""
    if len(ciphertext) <= NONCE_SIZE:
        raise DecryptionFailed("Encrypted content is truncated")
    try:
        plaintext = AESGCM(symmetric_key).decrypt(ciphertext[:NONCE_SIZE], ciphertext[NONCE_SIZE:], None)
    except (InvalidTag, ValueError) as e:
        raise DecryptionFailed("Content could not be decrypted with the delivered key") from e

    if len(plaintext) < SIGNATURE_SIZE:
        raise IntegrityViolation("Content is shorter than its signature")
    return SealedMeasurement(body=plaintext[:-SIGNATURE_SIZE], signature=plaintext[-SIGNATURE_SIZE:])


def _recovered_signers(body: bytes, signature: bytes) -> list[keys.PublicKey]:
    digest = hashlib.sha256(body).digest()
    r = int.from_bytes(signature[:32], "big")
    s = int.from_bytes(signature[32:], "big")
    signers = []
    # the recovery id is not transmitted, try both
    for v in (0, 1):
        try:
            signers.append(keys.Signature(vrs=(v, r, s)).recover_public_key_from_msg_hash(digest))
        except (BadSignature, ValidationError):
            continue
    return signers


def verify(body: bytes, signature: bytes, producer: Union[str, bytes]) -> bool:
    """Check that ``signature`` over ``body`` was made by ``producer``.

    ``producer`` is an address or a public key (64 raw bytes, 65 with the
    ``04`` prefix, or their hex encoding).
    """
    if len(signature) != SIGNATURE_SIZE:
        return False
    signers = _recovered_signers(body, signature)

    if isinstance(producer, str) and is_address(producer):
        expected = to_checksum_address(producer)
        return any(signer.to_checksum_address() == expected for signer in signers)

    if isinstance(producer, str):
        try:
            public_key = bytes.fromhex(strip_hex_prefix(producer))
        except ValueError:
            return False
    else:
        public_key = producer
    if len(public_key) == 65:
        public_key = public_key[1:]
    return any(signer.to_bytes() == public_key for signer in signers)


def open_verified(ciphertext: bytes, symmetric_key: bytes, producer: Union[str, bytes]) -> SealedMeasurement:
    """Decrypt and verify; a signature mismatch raises IntegrityViolation."""
    sealed = open_content(ciphertext, symmetric_key)
    if not verify(sealed.body, sealed.signature, producer):
        raise IntegrityViolation()
    return sealed


def sign_body(body: bytes, producer_key: keys.PrivateKey) -> bytes:
    signature = producer_key.sign_msg_hash(hashlib.sha256(body).digest())
    return signature.r.to_bytes(32, "big") + signature.s.to_bytes(32, "big")


def seal(body: bytes, symmetric_key: bytes, producer_key: keys.PrivateKey) -> bytes:
    """Producer side: sign, append the signature and encrypt."""
    nonce = os.urandom(NONCE_SIZE)
    return nonce + AESGCM(symmetric_key).encrypt(nonce, body + sign_body(body, producer_key), None)

"""In-process ledger for development and tests.

Mirrors the deployed contracts closely enough to exercise the purchase
protocol: the balance contract rejects duplicate and underfunded purchases,
and the producer delivers a wrapped payload in a separate payment
transaction referenced by the ``CompletePurchase`` event.
"""

import hashlib
import logging
import threading
from typing import Any, Callable, Optional

from eth_keys import keys
from eth_utils import to_checksum_address

from datamarket_api.errors import LedgerUnavailable
from datamarket_api.ledger.client import LedgerClient
from datamarket_api.ledger.events import (
    PURCHASE_COMPLETE_EVENT,
    PURCHASE_REQUEST_EVENT,
    STORE_EVENT,
    TRANSFER_EVENT,
    ZERO_ADDRESS,
    LedgerLog,
    TransactionReceipt,
    normalize_hash,
)
from datamarket_api.security.keys import strip_hex_prefix

logger = logging.getLogger(__name__)

# Producer callback: buyer public key (64 bytes) -> wrapped payload
Deliverer = Callable[[bytes], bytes]


def _normalize_arg(key: str, value: Any) -> Any:
    if isinstance(value, str) and value.lower().startswith("0x") and len(value) == 42:
        return to_checksum_address(value)
    if key in ("_hash", "hash", "_txHash"):
        return normalize_hash(value)
    return value


class InMemoryLedgerClient(LedgerClient):
    """Single-writer in-memory ledger; every transaction mines one block."""

    def __init__(self, symbol: str = "MTK"):
        self.token_symbol = symbol
        self._lock = threading.Lock()
        self._block = 0
        self._logs: list[LedgerLog] = []
        self._transactions: dict[str, bytes] = {}
        self._balances: dict[str, int] = {}
        self._prices: dict[str, int] = {}
        self._producers: dict[str, str] = {}
        self._deliverers: dict[str, Deliverer] = {}
        self._public_keys: dict[str, str] = {}
        self.submitted: list[tuple[str, tuple, str]] = []

    # Seeding helpers (producer and faucet side)

    def mint(self, address: str, amount: int) -> None:
        with self._lock:
            address = to_checksum_address(address)
            self._balances[address] = self._balances.get(address, 0) + amount
            tx_hash = self._new_block(b"mint")
            self._emit(TRANSFER_EVENT, {"from": ZERO_ADDRESS, "to": address, "value": amount}, tx_hash)

    def store_measurement(
        self,
        measurement_hash: str,
        description: str,
        price: int,
        producer: str,
        deliver: Deliverer,
    ) -> str:
        with self._lock:
            measurement_hash = normalize_hash(measurement_hash)
            self._prices[measurement_hash] = price
            self._producers[measurement_hash] = to_checksum_address(producer)
            self._deliverers[measurement_hash] = deliver
            tx_hash = self._new_block(measurement_hash.encode())
            self._emit(STORE_EVENT, {"hash": measurement_hash, "description": description}, tx_hash)
            return tx_hash

    def set_price(self, measurement_hash: str, price: int) -> None:
        with self._lock:
            self._prices[normalize_hash(measurement_hash)] = price

    def public_key_of(self, address: str) -> Optional[str]:
        return self._public_keys.get(to_checksum_address(address))

    # LedgerClient

    def get_logs(
        self, event_name: str, argument_filters: Optional[dict] = None, from_block: int = 0
    ) -> list[LedgerLog]:
        filters = {k: _normalize_arg(k, v) for k, v in (argument_filters or {}).items()}
        with self._lock:
            return [
                log
                for log in self._logs
                if log.event == event_name
                and log.block_number >= from_block
                and all(log.args.get(k) == v for k, v in filters.items())
            ]

    def call(self, method: str, *args) -> Any:
        with self._lock:
            if method == "getPriceMeasurement":
                return self._prices.get(normalize_hash(args[0]), 0)
            if method == "balanceOf":
                return self._balances.get(to_checksum_address(args[0]), 0)
            if method == "symbol":
                return self.token_symbol
            if method == "ledger":
                return {"addr": self._producers.get(normalize_hash(args[0]), ZERO_ADDRESS)}
        raise LedgerUnavailable(f"Unknown view method {method}")

    def transact(self, method: str, args: tuple, private_key: bytes) -> TransactionReceipt:
        sender = keys.PrivateKey(private_key).public_key.to_checksum_address()
        with self._lock:
            self.submitted.append((method, tuple(args), sender))
            if method == "addPubKey":
                return self._add_pub_key(sender, args[0])
            if method == "purchaseMeasurement":
                return self._purchase(sender, normalize_hash(args[0]))
        raise LedgerUnavailable(f"Unknown transaction method {method}")

    def get_transaction_input(self, tx_hash: str) -> bytes:
        with self._lock:
            try:
                return self._transactions[normalize_hash(tx_hash)]
            except KeyError:
                raise LedgerUnavailable(f"Transaction {tx_hash} not found") from None

    def block_number(self) -> int:
        return self._block

    # Contract semantics

    def _new_block(self, data: bytes) -> str:
        self._block += 1
        tx_hash = "0x" + hashlib.sha256(self._block.to_bytes(8, "big") + data).hexdigest()
        self._transactions[tx_hash] = data
        return tx_hash

    def _emit(self, event: str, args: dict, tx_hash: str) -> LedgerLog:
        log = LedgerLog(
            event=event,
            args=args,
            block_number=self._block,
            transaction_hash=tx_hash,
            log_index=sum(1 for entry in self._logs if entry.block_number == self._block),
        )
        self._logs.append(log)
        return log

    def _add_pub_key(self, sender: str, public_key: str) -> TransactionReceipt:
        tx_hash = self._new_block(public_key.encode())
        self._public_keys[sender] = public_key
        return TransactionReceipt(tx_hash=tx_hash, block_number=self._block, status=1)

    def _reverted(self, reason: str) -> TransactionReceipt:
        tx_hash = self._new_block(reason.encode())
        logger.info(f"In-memory ledger reverted transaction: {reason}")
        return TransactionReceipt(tx_hash=tx_hash, block_number=self._block, status=0)

    def _purchase(self, buyer: str, measurement_hash: str) -> TransactionReceipt:
        if measurement_hash not in self._producers:
            return self._reverted("unknown measurement")
        already = any(
            log.event == PURCHASE_REQUEST_EVENT
            and log.args["_from"] == buyer
            and log.args["_hash"] == measurement_hash
            for log in self._logs
        )
        if already:
            return self._reverted("already purchased")
        price = self._prices[measurement_hash]
        if self._balances.get(buyer, 0) < price:
            return self._reverted("insufficient balance")

        producer = self._producers[measurement_hash]
        self._balances[buyer] -= price
        self._balances[producer] = self._balances.get(producer, 0) + price
        tx_hash = self._new_block(measurement_hash.encode())
        logs = [
            self._emit(TRANSFER_EVENT, {"from": buyer, "to": producer, "value": price}, tx_hash),
            self._emit(PURCHASE_REQUEST_EVENT, {"_from": buyer, "_hash": measurement_hash}, tx_hash),
        ]
        receipt = TransactionReceipt(tx_hash=tx_hash, block_number=self._block, status=1, logs=logs)

        public_key = self._public_keys.get(buyer)
        if public_key is None:
            # the producer cannot address a payload to an unknown key
            return receipt
        raw_key = bytes.fromhex(strip_hex_prefix(public_key))
        payload = self._deliverers[measurement_hash](raw_key[1:] if len(raw_key) == 65 else raw_key)
        payment_tx = self._new_block(payload)
        self._emit(
            PURCHASE_COMPLETE_EVENT,
            {"_from": buyer, "_hash": measurement_hash, "_txHash": payment_tx},
            payment_tx,
        )
        return receipt

"""Read/query surface over the ledger event log.

All "current state" questions are answered here, either by querying the
event log from a given height or by a direct view call. Events are always
returned in commit order and a failed query raises; it never looks like an
empty result.
"""

import logging
import time
from typing import Any, Optional

from eth_utils import to_checksum_address

from datamarket_api.errors import LedgerUnavailable, MarketError, TransactionReverted
from datamarket_api.ledger.client import LedgerClient, get_ledger_client
from datamarket_api.ledger.events import (
    PURCHASE_COMPLETE_EVENT,
    PURCHASE_REQUEST_EVENT,
    STORE_EVENT,
    TRANSFER_EVENT,
    ZERO_ADDRESS,
    LedgerLog,
    PurchaseCompleteEvent,
    PurchaseRequestEvent,
    StoreEvent,
    TransactionReceipt,
    TransferEvent,
    normalize_hash,
)
from datamarket_api.utils.metrics import ledger_errors, ledger_submit_duration

logger = logging.getLogger(__name__)


class LedgerEventSource:
    """Event-sourced view of marketplace state."""

    def __init__(self, client: LedgerClient):
        self.client = client

    # Generic surface

    def query_events(
        self, event_name: str, filters: Optional[dict] = None, from_block: int = 0
    ) -> list[LedgerLog]:
        try:
            logs = self.client.get_logs(event_name, filters, from_block)
        except MarketError as e:
            ledger_errors.labels(error_code=e.error_code).inc()
            raise
        if logs is None:
            raise LedgerUnavailable(f"Ledger returned no result for {event_name}")
        return sorted(logs, key=lambda log: log.position)

    def call_view(self, method: str, *args) -> Any:
        try:
            return self.client.call(method, *args)
        except MarketError as e:
            ledger_errors.labels(error_code=e.error_code).inc()
            raise

    def submit(self, method: str, args: tuple, private_key: bytes) -> TransactionReceipt:
        started = time.perf_counter()
        try:
            receipt = self.client.transact(method, args, private_key)
        except MarketError as e:
            ledger_errors.labels(error_code=e.error_code).inc()
            raise
        finally:
            ledger_submit_duration.labels(method=method).observe(time.perf_counter() - started)

        if not receipt.succeeded:
            logger.warning(
                f"Ledger reverted {method}",
                extra={"tx_hash": receipt.tx_hash, "block_number": receipt.block_number},
            )
            raise TransactionReverted(f"Ledger reverted {method} in transaction {receipt.tx_hash}")
        return receipt

    def latest_block(self) -> int:
        return self.client.block_number()

    # Events

    def purchase_requests(self, buyer: str, measurement_hash: str, from_block: int = 0) -> list[PurchaseRequestEvent]:
        filters = {"_from": to_checksum_address(buyer), "_hash": normalize_hash(measurement_hash)}
        logs = self.query_events(PURCHASE_REQUEST_EVENT, filters, from_block)
        return [PurchaseRequestEvent.from_log(log) for log in logs]

    def purchase_completions(
        self,
        buyer: Optional[str] = None,
        measurement_hash: Optional[str] = None,
        from_block: int = 0,
    ) -> list[PurchaseCompleteEvent]:
        filters = {}
        if buyer is not None:
            filters["_from"] = to_checksum_address(buyer)
        if measurement_hash is not None:
            filters["_hash"] = normalize_hash(measurement_hash)
        logs = self.query_events(PURCHASE_COMPLETE_EVENT, filters, from_block)
        return [PurchaseCompleteEvent.from_log(log) for log in logs]

    def latest_completion(self, buyer: str, measurement_hash: str) -> Optional[PurchaseCompleteEvent]:
        completions = self.purchase_completions(buyer, measurement_hash)
        return completions[-1] if completions else None

    def stored_measurements(self, from_block: int = 0) -> list[StoreEvent]:
        return [StoreEvent.from_log(log) for log in self.query_events(STORE_EVENT, None, from_block)]

    def transfers(self, address: Optional[str] = None, from_block: int = 0) -> list[TransferEvent]:
        """Token transfers in commit order, optionally only those sent or received by ``address``."""
        transfers = [TransferEvent.from_log(log) for log in self.query_events(TRANSFER_EVENT, None, from_block)]
        if address is None:
            return transfers
        account = to_checksum_address(address)
        return [t for t in transfers if account in (t.sender, t.recipient)]

    # Views

    def price_of(self, measurement_hash: str) -> int:
        return int(self.call_view("getPriceMeasurement", normalize_hash(measurement_hash)))

    def balance_of(self, address: str) -> int:
        return int(self.call_view("balanceOf", to_checksum_address(address)))

    def symbol(self) -> str:
        return self.call_view("symbol")

    def producer_of(self, measurement_hash: str) -> Optional[str]:
        entry = self.call_view("ledger", normalize_hash(measurement_hash))
        address = entry["addr"] if isinstance(entry, dict) else entry[0]
        if not address or address == ZERO_ADDRESS:
            return None
        return to_checksum_address(address)

    # Transactions

    def publish_public_key(self, public_key_hex: str, private_key: bytes) -> TransactionReceipt:
        return self.submit("addPubKey", (public_key_hex,), private_key)

    def purchase(self, measurement_hash: str, private_key: bytes) -> TransactionReceipt:
        return self.submit("purchaseMeasurement", (normalize_hash(measurement_hash),), private_key)

    def payment_payload(self, tx_hash: str) -> bytes:
        return self.client.get_transaction_input(tx_hash)


_event_source: Optional[LedgerEventSource] = None


def get_event_source() -> LedgerEventSource:
    """Get or create the ledger event source."""
    global _event_source
    if _event_source is None:
        _event_source = LedgerEventSource(get_ledger_client())
    return _event_source

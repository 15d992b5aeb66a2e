"""Ledger event and receipt types."""

from dataclasses import dataclass, field
from typing import Any, Union

from eth_utils import to_checksum_address

# Event names emitted by the marketplace contracts
STORE_EVENT = "evtStoreInfo"
PURCHASE_REQUEST_EVENT = "RequestPurchase"
PURCHASE_COMPLETE_EVENT = "CompletePurchase"
TRANSFER_EVENT = "Transfer"

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def normalize_hash(value: Union[str, bytes]) -> str:
    """Canonical measurement hash: lowercase hex with ``0x`` prefix."""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    value = value.strip().lower()
    return value if value.startswith("0x") else "0x" + value


@dataclass(frozen=True)
class LedgerLog:
    """One contract event as returned by the ledger, in commit order."""

    event: str
    args: dict[str, Any]
    block_number: int
    transaction_hash: str
    log_index: int = 0

    @property
    def position(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)


@dataclass(frozen=True)
class TransactionReceipt:
    """Confirmation of a submitted transaction."""

    tx_hash: str
    block_number: int
    status: int
    logs: list[LedgerLog] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@dataclass(frozen=True)
class StoreEvent:
    """A producer stored a measurement."""

    hash: str
    description: str
    tx_hash: str
    block_number: int

    @classmethod
    def from_log(cls, log: LedgerLog) -> "StoreEvent":
        # deployed contracts name these fields with a leading underscore
        raw_hash = log.args.get("hash", log.args.get("_hash"))
        description = log.args.get("description", log.args.get("_description", ""))
        return cls(
            hash=normalize_hash(raw_hash),
            description=description,
            tx_hash=log.transaction_hash,
            block_number=log.block_number,
        )


@dataclass(frozen=True)
class PurchaseRequestEvent:
    buyer: str
    hash: str
    block_number: int
    tx_hash: str

    @classmethod
    def from_log(cls, log: LedgerLog) -> "PurchaseRequestEvent":
        return cls(
            buyer=to_checksum_address(log.args["_from"]),
            hash=normalize_hash(log.args["_hash"]),
            block_number=log.block_number,
            tx_hash=log.transaction_hash,
        )


@dataclass(frozen=True)
class PurchaseCompleteEvent:
    buyer: str
    hash: str
    payment_tx_hash: str
    block_number: int

    @classmethod
    def from_log(cls, log: LedgerLog) -> "PurchaseCompleteEvent":
        return cls(
            buyer=to_checksum_address(log.args["_from"]),
            hash=normalize_hash(log.args["_hash"]),
            payment_tx_hash=normalize_hash(log.args["_txHash"]),
            block_number=log.block_number,
        )


@dataclass(frozen=True)
class TransferEvent:
    sender: str
    recipient: str
    value: int
    block_number: int
    tx_hash: str

    @classmethod
    def from_log(cls, log: LedgerLog) -> "TransferEvent":
        return cls(
            sender=to_checksum_address(log.args["from"]),
            recipient=to_checksum_address(log.args["to"]),
            value=int(log.args["value"]),
            block_number=log.block_number,
            tx_hash=log.transaction_hash,
        )

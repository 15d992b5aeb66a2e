"""Ledger client abstraction (web3-backed or in-memory)."""

import json
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional

import requests
from eth_utils import to_checksum_address
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound, Web3Exception

from datamarket_api.errors import LedgerTimeout, LedgerUnavailable, TransactionReverted
from datamarket_api.ledger.events import (
    PURCHASE_COMPLETE_EVENT,
    PURCHASE_REQUEST_EVENT,
    STORE_EVENT,
    TRANSFER_EVENT,
    LedgerLog,
    TransactionReceipt,
)
from datamarket_api.settings import get_settings

logger = logging.getLogger(__name__)

EVENT_CONTRACTS = {
    STORE_EVENT: "data",
    PURCHASE_REQUEST_EVENT: "balance",
    PURCHASE_COMPLETE_EVENT: "balance",
    TRANSFER_EVENT: "balance",
}

METHOD_CONTRACTS = {
    "ledger": "data",
    "getPriceMeasurement": "balance",
    "balanceOf": "balance",
    "symbol": "balance",
    "purchaseMeasurement": "balance",
    "addPubKey": "access",
}


class LedgerClient(ABC):
    """Opaque read/write surface of the ledger."""

    @abstractmethod
    def get_logs(
        self, event_name: str, argument_filters: Optional[dict] = None, from_block: int = 0
    ) -> list[LedgerLog]:
        """Return matching events in commit order."""
        pass

    @abstractmethod
    def call(self, method: str, *args) -> Any:
        """Run a read-only contract call."""
        pass

    @abstractmethod
    def transact(self, method: str, args: tuple, private_key: bytes) -> TransactionReceipt:
        """Sign, submit and wait for a contract transaction."""
        pass

    @abstractmethod
    def get_transaction_input(self, tx_hash: str) -> bytes:
        """Get the raw input data of a transaction."""
        pass

    @abstractmethod
    def block_number(self) -> int:
        """Get the latest block height."""
        pass


@contextmanager
def translate_errors(operation: str):
    """Map web3/transport exceptions onto the ledger error taxonomy."""
    try:
        yield
    except (TimeExhausted, requests.exceptions.Timeout) as e:
        logger.warning(f"Ledger {operation} timed out: {e}")
        raise LedgerTimeout(f"Ledger {operation} timed out") from e
    except ContractLogicError as e:
        raise TransactionReverted(f"Ledger rejected {operation}: {e}") from e
    except TransactionNotFound as e:
        raise LedgerUnavailable(f"Transaction not found during {operation}") from e
    except (Web3Exception, requests.exceptions.RequestException, ValueError) as e:
        logger.error(f"Ledger {operation} failed: {e}")
        raise LedgerUnavailable(f"Ledger {operation} failed") from e


def load_abi(path: str) -> list:
    """Load an ABI from a plain ABI file or a build artifact with an ``abi`` key."""
    content = json.loads(Path(path).read_text())
    return content["abi"] if isinstance(content, dict) else content


def _decode_output(function, result: Any) -> Any:
    outputs = function.abi.get("outputs", [])
    if len(outputs) == 1 and outputs[0].get("components") and isinstance(result, (list, tuple)):
        return {c["name"]: v for c, v in zip(outputs[0]["components"], result)}
    if len(outputs) > 1 and all(o.get("name") for o in outputs):
        return {o["name"]: v for o, v in zip(outputs, result)}
    return result


def _plain(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    return value


class Web3LedgerClient(LedgerClient):
    """Ledger client backed by a JSON-RPC node."""

    def __init__(self, web3: Optional[Web3] = None, contracts: Optional[dict] = None):
        settings = get_settings()
        self.settings = settings
        self.web3 = web3 or Web3(
            Web3.HTTPProvider(
                settings.ledger_rpc_url,
                request_kwargs={"timeout": settings.ledger_timeout_seconds},
            )
        )
        self.contracts = contracts if contracts is not None else self._load_contracts()

    def _load_contracts(self) -> dict:
        contracts = {}
        for name in ("data", "balance", "access"):
            address = getattr(self.settings, f"{name}_contract_address")
            if not address:
                raise ValueError(f"{name.upper()}_CONTRACT_ADDRESS is required for the web3 ledger")
            abi = load_abi(getattr(self.settings, f"{name}_contract_abi_path"))
            contracts[name] = self.web3.eth.contract(address=to_checksum_address(address), abi=abi)
        return contracts

    def _function(self, method: str, args: tuple):
        contract = self.contracts[METHOD_CONTRACTS[method]]
        return contract.functions[method](*args)

    def get_logs(
        self, event_name: str, argument_filters: Optional[dict] = None, from_block: int = 0
    ) -> list[LedgerLog]:
        contract = self.contracts[EVENT_CONTRACTS[event_name]]
        with translate_errors(f"query {event_name}"):
            raw_logs = contract.events[event_name].get_logs(
                argument_filters=argument_filters or None,
                from_block=from_block,
            )
        logs = [
            LedgerLog(
                event=event_name,
                args={k: _plain(v) for k, v in dict(raw["args"]).items()},
                block_number=raw["blockNumber"],
                transaction_hash=Web3.to_hex(raw["transactionHash"]),
                log_index=raw["logIndex"],
            )
            for raw in raw_logs
        ]
        return sorted(logs, key=lambda log: log.position)

    def call(self, method: str, *args) -> Any:
        function = self._function(method, args)
        with translate_errors(f"call {method}"):
            result = function.call()
        return _decode_output(function, result)

    def transact(self, method: str, args: tuple, private_key: bytes) -> TransactionReceipt:
        account = self.web3.eth.account.from_key(private_key)
        with translate_errors(f"submit {method}"):
            transaction = self._function(method, args).build_transaction(
                {
                    "from": account.address,
                    "nonce": self.web3.eth.get_transaction_count(account.address),
                    "gas": self.settings.ledger_gas,
                    "gasPrice": self.settings.ledger_gas_price,
                }
            )
            signed = account.sign_transaction(transaction)
            tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
            receipt = self.web3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.settings.ledger_receipt_timeout_seconds
            )
        return TransactionReceipt(
            tx_hash=Web3.to_hex(receipt["transactionHash"]),
            block_number=receipt["blockNumber"],
            status=receipt["status"],
        )

    def get_transaction_input(self, tx_hash: str) -> bytes:
        with translate_errors("transaction lookup"):
            transaction = self.web3.eth.get_transaction(tx_hash)
        return bytes(transaction["input"])

    def block_number(self) -> int:
        with translate_errors("block number"):
            return self.web3.eth.block_number


def get_ledger_client() -> LedgerClient:
    """Get ledger client instance based on settings."""
    provider = get_settings().ledger_provider.lower()

    if provider == "web3":
        return Web3LedgerClient()
    elif provider == "memory":
        from datamarket_api.ledger.memory import InMemoryLedgerClient

        return InMemoryLedgerClient()
    else:
        raise ValueError(f"Unknown ledger provider: {provider}")

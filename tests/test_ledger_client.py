"""Tests for the web3 ledger client (mocked node) and its error mapping."""

from unittest.mock import MagicMock

import pytest
import requests
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from datamarket_api.errors import LedgerTimeout, LedgerUnavailable, TransactionReverted
from datamarket_api.ledger.client import Web3LedgerClient, translate_errors
from datamarket_api.ledger.events import PURCHASE_COMPLETE_EVENT, PurchaseCompleteEvent

from tests.conftest import BUYER_KEY


@pytest.mark.parametrize(
    "raised, expected",
    [
        (TimeExhausted("no receipt"), LedgerTimeout),
        (requests.exceptions.ReadTimeout("slow"), LedgerTimeout),
        (ContractLogicError("execution reverted"), TransactionReverted),
        (requests.exceptions.ConnectionError("refused"), LedgerUnavailable),
        (Web3Exception("bad response"), LedgerUnavailable),
    ],
)
def test_translate_errors(raised, expected):
    with pytest.raises(expected):
        with translate_errors("test"):
            raise raised


def make_client():
    web3 = MagicMock()
    contracts = {"data": MagicMock(), "balance": MagicMock(), "access": MagicMock()}
    return Web3LedgerClient(web3=web3, contracts=contracts), web3, contracts


def test_get_logs_returns_commit_order():
    client, _, contracts = make_client()
    raw = [
        {
            "args": {"_from": "0x" + "11" * 20, "_hash": b"\x02" * 32, "_txHash": b"\xbb" * 32},
            "blockNumber": 9,
            "transactionHash": b"\xcc" * 32,
            "logIndex": 0,
        },
        {
            "args": {"_from": "0x" + "11" * 20, "_hash": b"\x01" * 32, "_txHash": b"\xaa" * 32},
            "blockNumber": 7,
            "transactionHash": b"\xdd" * 32,
            "logIndex": 3,
        },
    ]
    contracts["balance"].events[PURCHASE_COMPLETE_EVENT].get_logs.return_value = raw

    logs = client.get_logs(PURCHASE_COMPLETE_EVENT, {"_from": "0x" + "11" * 20})

    assert [log.block_number for log in logs] == [7, 9]
    event = PurchaseCompleteEvent.from_log(logs[0])
    assert event.hash == "0x" + "01" * 32
    assert event.payment_tx_hash == "0x" + "aa" * 32


def test_get_logs_failure_is_mapped():
    client, _, contracts = make_client()
    contracts["data"].events["evtStoreInfo"].get_logs.side_effect = requests.exceptions.ConnectionError()

    with pytest.raises(LedgerUnavailable):
        client.get_logs("evtStoreInfo")


def test_transact_signs_and_waits_for_receipt():
    client, web3, contracts = make_client()
    account = MagicMock(address="0x" + "11" * 20)
    web3.eth.account.from_key.return_value = account
    web3.eth.get_transaction_count.return_value = 4
    web3.eth.wait_for_transaction_receipt.return_value = {
        "transactionHash": b"\xee" * 32,
        "blockNumber": 12,
        "status": 1,
    }

    receipt = client.transact("purchaseMeasurement", ("0x" + "01" * 32,), BUYER_KEY)

    assert receipt.succeeded
    assert receipt.tx_hash == "0x" + "ee" * 32
    tx = contracts["balance"].functions["purchaseMeasurement"].return_value.build_transaction.call_args.args[0]
    assert tx["nonce"] == 4
    web3.eth.send_raw_transaction.assert_called_once_with(account.sign_transaction.return_value.raw_transaction)


def test_transact_timeout():
    client, web3, _ = make_client()
    web3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("waited too long")

    with pytest.raises(LedgerTimeout):
        client.transact("addPubKey", ("04ab",), BUYER_KEY)


def test_call_decodes_struct_output():
    client, _, contracts = make_client()
    function = contracts["data"].functions["ledger"].return_value
    function.abi = {"outputs": [{"components": [{"name": "addr"}, {"name": "price"}]}]}
    function.call.return_value = ("0x" + "22" * 20, 50)

    assert client.call("ledger", "0x" + "01" * 32) == {"addr": "0x" + "22" * 20, "price": 50}


def test_call_plain_output():
    client, _, contracts = make_client()
    function = contracts["balance"].functions["balanceOf"].return_value
    function.abi = {"outputs": [{"name": "", "type": "uint256"}]}
    function.call.return_value = 75

    assert client.call("balanceOf", "0x" + "11" * 20) == 75

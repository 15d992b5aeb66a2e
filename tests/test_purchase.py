"""Tests for the purchase sequence against the in-memory ledger."""

from unittest.mock import MagicMock

import pytest

from datamarket_api.errors import (
    AlreadyPurchased,
    InsufficientFunds,
    LedgerUnavailable,
    TransactionReverted,
)
from datamarket_api.ledger.source import LedgerEventSource
from datamarket_api.purchase.orchestrator import PurchaseOrchestrator

from tests.conftest import INITIAL_BALANCE, MEASUREMENT_HASH, PRICE


def purchase_submissions(ledger):
    return [entry for entry in ledger.submitted if entry[0] == "purchaseMeasurement"]


def test_purchase_debits_buyer_and_completes(ledger, events, session, producer_address):
    """A funded buyer pays the current price and the producer delivers."""
    receipt = PurchaseOrchestrator(events).purchase(session, MEASUREMENT_HASH)

    assert receipt.buyer == session.address
    assert receipt.measurement_hash == MEASUREMENT_HASH
    assert receipt.price == PRICE
    assert events.balance_of(session.address) == INITIAL_BALANCE - PRICE
    assert events.balance_of(producer_address) == PRICE

    completion = events.latest_completion(session.address, MEASUREMENT_HASH)
    assert completion is not None
    assert completion.block_number > receipt.block_number


def test_second_purchase_is_rejected_without_debit(ledger, events, session):
    """Buying the same measurement twice fails and costs nothing."""
    orchestrator = PurchaseOrchestrator(events)
    orchestrator.purchase(session, MEASUREMENT_HASH)

    with pytest.raises(AlreadyPurchased):
        orchestrator.purchase(session, MEASUREMENT_HASH)

    assert events.balance_of(session.address) == INITIAL_BALANCE - PRICE
    assert len(purchase_submissions(ledger)) == 1


def test_hash_case_does_not_bypass_duplicate_check(ledger, events, session):
    orchestrator = PurchaseOrchestrator(events)
    orchestrator.purchase(session, MEASUREMENT_HASH)

    with pytest.raises(AlreadyPurchased):
        orchestrator.purchase(session, MEASUREMENT_HASH.upper().replace("0X", ""))


def test_insufficient_funds_submits_nothing(ledger, events, session):
    ledger.set_price(MEASUREMENT_HASH, INITIAL_BALANCE + 1)

    with pytest.raises(InsufficientFunds):
        PurchaseOrchestrator(events).purchase(session, MEASUREMENT_HASH)

    assert purchase_submissions(ledger) == []
    assert events.balance_of(session.address) == INITIAL_BALANCE


def test_price_is_read_at_purchase_time(ledger, events, session):
    """A price change after listing applies to the next purchase."""
    ledger.set_price(MEASUREMENT_HASH, 30)

    receipt = PurchaseOrchestrator(events).purchase(session, MEASUREMENT_HASH)

    assert receipt.price == 30
    assert events.balance_of(session.address) == INITIAL_BALANCE - 30


def test_public_key_published_once_per_session(ledger, events, session):
    orchestrator = PurchaseOrchestrator(events)

    orchestrator.publish_public_key(session)
    orchestrator.publish_public_key(session)

    published = [entry for entry in ledger.submitted if entry[0] == "addPubKey"]
    assert len(published) == 1
    assert ledger.public_key_of(session.address) == session.public_key_hex


def test_unknown_measurement_is_reverted(ledger, events, session):
    with pytest.raises(TransactionReverted):
        PurchaseOrchestrator(events).purchase(session, "0x" + "ab" * 32)

    assert events.balance_of(session.address) == INITIAL_BALANCE


def test_ledger_failure_is_not_treated_as_not_purchased(session):
    """A failed duplicate check must not fall through to a purchase."""
    client = MagicMock()
    client.get_logs.side_effect = LedgerUnavailable("node down")
    events = LedgerEventSource(client)

    with pytest.raises(LedgerUnavailable):
        PurchaseOrchestrator(events).purchase(session, MEASUREMENT_HASH)

    for call in client.transact.call_args_list:
        assert call.args[0] != "purchaseMeasurement"


def test_null_query_result_raises(session):
    client = MagicMock()
    client.get_logs.return_value = None
    events = LedgerEventSource(client)

    with pytest.raises(LedgerUnavailable):
        events.purchase_requests(session.address, MEASUREMENT_HASH)

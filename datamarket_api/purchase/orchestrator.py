"""Purchase orchestration: duplicate check, balance check, debit.

No client-side lock wraps these steps. The ledger is
the single writer; two racing purchases for the same buyer and measurement
are serialized by the contract, which rejects the second one (or it runs out
of balance).
"""

import logging
from dataclasses import dataclass

from datamarket_api.errors import AlreadyPurchased, InsufficientFunds, MarketError
from datamarket_api.ledger.events import normalize_hash
from datamarket_api.ledger.source import LedgerEventSource
from datamarket_api.security.session import SessionContext
from datamarket_api.utils.metrics import purchase_attempts

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PurchaseReceipt:
    """Confirmed purchase transaction."""

    buyer: str
    measurement_hash: str
    price: int
    tx_hash: str
    block_number: int


class PurchaseOrchestrator:
    """Runs the purchase sequence for one buyer session."""

    def __init__(self, events: LedgerEventSource):
        self.events = events

    def publish_public_key(self, session: SessionContext) -> None:
        """Publish the buyer's public key so the producer can address the payload to it."""
        if session.public_key_published:
            return
        self.events.publish_public_key(session.public_key_hex, session.key_material.private_key_bytes())
        session.public_key_published = True

    def already_purchased(self, buyer: str, measurement_hash: str) -> bool:
        if self.events.purchase_requests(buyer, measurement_hash):
            return True
        return bool(self.events.purchase_completions(buyer, measurement_hash))

    def purchase(self, session: SessionContext, measurement_hash: str) -> PurchaseReceipt:
        measurement_hash = normalize_hash(measurement_hash)
        buyer = session.address
        log_extra = {"address": buyer, "measurement_hash": measurement_hash}

        try:
            self.publish_public_key(session)

            if self.already_purchased(buyer, measurement_hash):
                raise AlreadyPurchased(f"Measurement {measurement_hash} already purchased by {buyer}")

            # price and balance are read fresh, never from an event
            price = self.events.price_of(measurement_hash)
            balance = self.events.balance_of(buyer)
            if balance < price:
                raise InsufficientFunds(f"Balance {balance} is lower than price {price}")

            receipt = self.events.purchase(measurement_hash, session.key_material.private_key_bytes())
        except MarketError as e:
            purchase_attempts.labels(outcome=e.error_code).inc()
            logger.info(f"Purchase failed: {e.error_code}", extra=log_extra)
            raise

        purchase_attempts.labels(outcome="SUCCESS").inc()
        logger.info("Measurement purchased", extra={**log_extra, "tx_hash": receipt.tx_hash})
        return PurchaseReceipt(
            buyer=buyer,
            measurement_hash=measurement_hash,
            price=price,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
        )

"""Incremental projection of ledger events into the local database."""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from datamarket_api.errors import ProjectionConflict
from datamarket_api.ledger.source import LedgerEventSource
from datamarket_api.models import MeasurementListing, ProjectionCursor, PurchaseRecord

logger = logging.getLogger(__name__)

STORE_STREAM = "store"
PURCHASE_STREAM = "purchases"


class MarketProjection:
    """Folds store and purchase-completion events into listing and purchase rows.

    Each stream keeps a cursor with the last block folded in. A sync reads
    events from the block after the cursor, so re-running it never duplicates
    rows. A ledger failure leaves the cursor untouched.
    """

    def __init__(self, db: Session, events: LedgerEventSource):
        self.db = db
        self.events = events

    def _cursor(self, stream: str) -> ProjectionCursor:
        cursor = self.db.query(ProjectionCursor).filter(ProjectionCursor.stream == stream).first()
        if cursor is None:
            cursor = ProjectionCursor(stream=stream, last_block=0)
            self.db.add(cursor)
            self.db.flush()
        return cursor

    def _sync_listings(self) -> int:
        cursor = self._cursor(STORE_STREAM)
        added = 0
        for event in self.events.stored_measurements(from_block=cursor.last_block + 1):
            exists = (
                self.db.query(MeasurementListing)
                .filter(MeasurementListing.measurement_hash == event.hash)
                .first()
            )
            if exists is None:
                self.db.add(
                    MeasurementListing(
                        measurement_hash=event.hash,
                        description=event.description,
                        block_number=event.block_number,
                        tx_hash=event.tx_hash,
                    )
                )
                added += 1
            cursor.last_block = max(cursor.last_block, event.block_number)
        return added

    def _sync_purchases(self) -> int:
        cursor = self._cursor(PURCHASE_STREAM)
        added = 0
        for event in self.events.purchase_completions(from_block=cursor.last_block + 1):
            exists = (
                self.db.query(PurchaseRecord)
                .filter(PurchaseRecord.payment_tx_hash == event.payment_tx_hash)
                .first()
            )
            if exists is None:
                self.db.add(
                    PurchaseRecord(
                        buyer=event.buyer,
                        measurement_hash=event.hash,
                        payment_tx_hash=event.payment_tx_hash,
                        block_number=event.block_number,
                    )
                )
                added += 1
            cursor.last_block = max(cursor.last_block, event.block_number)
        return added

    def _sync_once(self) -> dict:
        try:
            result = {STORE_STREAM: self._sync_listings(), PURCHASE_STREAM: self._sync_purchases()}
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return result

    def sync(self) -> dict:
        """Fold new events in; returns the number of rows added per stream.

        A concurrent sync may commit the same rows first. The losing side
        rolls back and folds again from the cursor the winner committed.
        """
        try:
            result = self._sync_once()
        except IntegrityError:
            logger.info("Projection sync raced with another writer, retrying")
            try:
                result = self._sync_once()
            except IntegrityError as e:
                raise ProjectionConflict() from e
        if any(result.values()):
            logger.info("Projection synced", extra=result)
        return result

    def listings(self) -> list[MeasurementListing]:
        return self.db.query(MeasurementListing).order_by(MeasurementListing.block_number).all()

    def purchased(self, buyer: str) -> list[PurchaseRecord]:
        return (
            self.db.query(PurchaseRecord)
            .filter(PurchaseRecord.buyer == buyer)
            .order_by(PurchaseRecord.block_number)
            .all()
        )

"""Local projection of ledger events.

Rows here are a cache rebuilt from the event log; the ledger stays the
source of truth.
"""

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint

from datamarket_api.db.base import Base


class ProjectionCursor(Base):
    """Last block folded into the projection, per stream."""

    __tablename__ = "projection_cursors"

    stream = Column(String(100), primary_key=True)
    last_block = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class MeasurementListing(Base):
    """Measurement announced by a store event."""

    __tablename__ = "measurement_listings"

    id = Column(Integer, primary_key=True, index=True)
    measurement_hash = Column(String(66), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    block_number = Column(Integer, nullable=False)
    tx_hash = Column(String(66), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class PurchaseRecord(Base):
    """Completed purchase (one row per payment transaction)."""

    __tablename__ = "purchase_records"
    __table_args__ = (UniqueConstraint("payment_tx_hash", name="uq_purchase_payment_tx"),)

    id = Column(Integer, primary_key=True, index=True)
    buyer = Column(String(42), nullable=False, index=True)
    measurement_hash = Column(String(66), nullable=False, index=True)
    payment_tx_hash = Column(String(66), nullable=False)
    block_number = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

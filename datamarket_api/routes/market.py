"""Consumer-facing marketplace routes: account, catalogue, purchase, retrieval."""

from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from datamarket_api.db.session import get_db
from datamarket_api.ledger.projection import MarketProjection
from datamarket_api.ledger.source import LedgerEventSource, get_event_source
from datamarket_api.purchase.orchestrator import PurchaseOrchestrator
from datamarket_api.purchase.retrieval import RetrievalService
from datamarket_api.security.session import SessionContext
from datamarket_api.storage.client import OffChainClient, get_offchain_client

router = APIRouter(prefix="/v1", tags=["market"])


class AccountResponse(BaseModel):
    address: str
    balance: int
    symbol: str


class MeasurementListingResponse(BaseModel):
    hash: str
    description: Optional[str] = None
    price: int
    block_number: int


class WalletPurchaseResponse(BaseModel):
    hash: str
    price: int
    payment_tx_hash: str
    block_number: int


class WalletTransferResponse(BaseModel):
    sender: str
    recipient: str
    value: int
    tx_hash: str
    block_number: int


class PurchaseRequest(BaseModel):
    """Purchase request."""

    hash: str


class PurchaseResponse(BaseModel):
    status: str
    buyer: str
    hash: str
    price: int
    tx_hash: str
    block_number: int


class MeasurementValueResponse(BaseModel):
    """Retrieved measurement; ``r``/``s`` are set when the producer signature was verified."""

    hash: str
    measurement: str
    tx_hash: str
    client_addr: str
    iot_addr: str
    variant: str
    r: Optional[str] = None
    s: Optional[str] = None


def _session(request: Request) -> SessionContext:
    return request.state.session


@router.get("/account", response_model=AccountResponse)
async def get_account(
    request: Request,
    events: LedgerEventSource = Depends(get_event_source),
):
    """Balance of the logged-in account."""
    session = _session(request)
    balance = await run_in_threadpool(events.balance_of, session.address)
    symbol = await run_in_threadpool(events.symbol)
    return AccountResponse(address=session.address, balance=balance, symbol=symbol)


@router.get("/measurements", response_model=list[MeasurementListingResponse])
async def list_measurements(
    db: Session = Depends(get_db),
    events: LedgerEventSource = Depends(get_event_source),
):
    """Catalogue of stored measurements with current prices."""

    def build():
        projection = MarketProjection(db, events)
        projection.sync()
        return [
            MeasurementListingResponse(
                hash=listing.measurement_hash,
                description=listing.description,
                price=events.price_of(listing.measurement_hash),
                block_number=listing.block_number,
            )
            for listing in projection.listings()
        ]

    return await run_in_threadpool(build)


@router.get("/wallet/purchases", response_model=list[WalletPurchaseResponse])
async def list_purchases(
    request: Request,
    db: Session = Depends(get_db),
    events: LedgerEventSource = Depends(get_event_source),
):
    """Completed purchases of the logged-in account."""
    session = _session(request)

    def build():
        projection = MarketProjection(db, events)
        projection.sync()
        return [
            WalletPurchaseResponse(
                hash=record.measurement_hash,
                price=events.price_of(record.measurement_hash),
                payment_tx_hash=record.payment_tx_hash,
                block_number=record.block_number,
            )
            for record in projection.purchased(session.address)
        ]

    return await run_in_threadpool(build)


@router.get("/wallet/transfers", response_model=list[WalletTransferResponse])
async def list_transfers(
    request: Request,
    events: LedgerEventSource = Depends(get_event_source),
):
    """Token transfers sent or received by the logged-in account."""
    transfers = await run_in_threadpool(events.transfers, _session(request).address)
    return [
        WalletTransferResponse(
            sender=t.sender,
            recipient=t.recipient,
            value=t.value,
            tx_hash=t.tx_hash,
            block_number=t.block_number,
        )
        for t in transfers
    ]


@router.post("/purchases", response_model=PurchaseResponse, status_code=status.HTTP_201_CREATED)
async def purchase_measurement(
    purchase: PurchaseRequest,
    request: Request,
    events: LedgerEventSource = Depends(get_event_source),
):
    """Buy a measurement with the logged-in account."""
    orchestrator = PurchaseOrchestrator(events)
    receipt = await run_in_threadpool(orchestrator.purchase, _session(request), purchase.hash)
    return PurchaseResponse(
        status="success",
        buyer=receipt.buyer,
        hash=receipt.measurement_hash,
        price=receipt.price,
        tx_hash=receipt.tx_hash,
        block_number=receipt.block_number,
    )


@router.get("/measurements/{measurement_hash}/value", response_model=MeasurementValueResponse)
async def get_measurement_value(
    measurement_hash: str,
    request: Request,
    events: LedgerEventSource = Depends(get_event_source),
    offchain: OffChainClient = Depends(get_offchain_client),
):
    """Retrieve a purchased measurement."""
    service = RetrievalService(events, offchain)
    result = await run_in_threadpool(service.retrieve, _session(request), measurement_hash)
    return MeasurementValueResponse(
        hash=result.measurement_hash,
        measurement=result.measurement,
        tx_hash=result.tx_hash,
        client_addr=result.client_addr,
        iot_addr=result.iot_addr,
        variant=result.variant,
        r=result.r,
        s=result.s,
    )

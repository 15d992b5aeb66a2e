"""Storage-service endpoint: plaintext measurements for signed, paid-up requests."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from datamarket_api.errors import StorageDenied
from datamarket_api.ledger.source import LedgerEventSource, get_event_source
from datamarket_api.security.request_signing import (
    ReplayGuard,
    RequestAuthenticator,
    SignedStorageRequest,
    get_replay_guard,
)
from datamarket_api.storage.service import MeasurementStore, get_measurement_store

router = APIRouter(prefix="/v1/storage", tags=["storage"])


class StorageRequestBody(BaseModel):
    """Signed storage request as sent by buyers."""

    hash: str
    clientAddr: str
    timestamp: int
    signature: str


@router.post("/measurements")
async def fetch_measurement(
    body: StorageRequestBody,
    events: LedgerEventSource = Depends(get_event_source),
    store: MeasurementStore = Depends(get_measurement_store),
    replay_guard: Optional[ReplayGuard] = Depends(get_replay_guard),
):
    """Authenticate the request against the ledger and return the measurement."""
    signed = SignedStorageRequest.from_json(body.model_dump())
    authenticator = RequestAuthenticator(events, replay_guard=replay_guard)

    decision = await run_in_threadpool(authenticator.verify, signed)
    if not decision.allowed:
        raise StorageDenied(f"Request denied: {decision.reason}")

    measurement = await run_in_threadpool(store.get_measurement, signed.measurement_hash)
    return {"measurement": measurement}

"""Retrieval of a purchased measurement.

One code path serves both delivery variants: the unwrapped payload is either
a symmetric key with a content locator (fetch ciphertext, decrypt, verify the
producer signature) or a storage-service locator (send a signed request).
"""

import logging
from dataclasses import dataclass
from typing import Optional

from datamarket_api.errors import IntegrityViolation, MarketError, MeasurementNotFound, NotPurchased
from datamarket_api.ledger.events import normalize_hash
from datamarket_api.ledger.source import LedgerEventSource
from datamarket_api.security.content_cipher import open_verified
from datamarket_api.security.key_exchange import DirectFetch, KeyedContent, KeyExchangeUnwrapper
from datamarket_api.security.request_signing import SignedStorageRequest
from datamarket_api.security.session import SessionContext
from datamarket_api.storage.client import OffChainClient
from datamarket_api.utils.metrics import retrievals

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetrievedMeasurement:
    measurement_hash: str
    measurement: str
    tx_hash: str
    client_addr: str
    iot_addr: str
    variant: str
    r: Optional[str] = None
    s: Optional[str] = None


class RetrievalService:
    """Fetch and authenticate a measurement the session's buyer has paid for."""

    def __init__(
        self,
        events: LedgerEventSource,
        offchain: OffChainClient,
        unwrapper: Optional[KeyExchangeUnwrapper] = None,
    ):
        self.events = events
        self.offchain = offchain
        self.unwrapper = unwrapper or KeyExchangeUnwrapper(events)

    def retrieve(self, session: SessionContext, measurement_hash: str) -> RetrievedMeasurement:
        measurement_hash = normalize_hash(measurement_hash)
        buyer = session.address

        completion = self.events.latest_completion(buyer, measurement_hash)
        if completion is None:
            retrievals.labels(variant="none", outcome="NOT_PURCHASED").inc()
            raise NotPurchased(f"No completed purchase of {measurement_hash} for {buyer}")

        producer = self.events.producer_of(measurement_hash)
        if producer is None:
            retrievals.labels(variant="none", outcome="MEASUREMENT_NOT_FOUND").inc()
            raise MeasurementNotFound(f"Measurement {measurement_hash} is not registered")

        variant = "unknown"
        try:
            delivery = self.unwrapper.unwrap(completion.payment_tx_hash, session)
            variant = "keyed" if isinstance(delivery, KeyedContent) else "direct"
            if isinstance(delivery, KeyedContent):
                ciphertext = self.offchain.fetch_content(delivery.locator)
                sealed = open_verified(ciphertext, delivery.symmetric_key, producer)
                try:
                    measurement = sealed.body.decode("utf-8")
                except UnicodeDecodeError as e:
                    raise IntegrityViolation("Measurement body is not UTF-8 text") from e
                r, s = sealed.r, sealed.s
            elif isinstance(delivery, DirectFetch):
                request = SignedStorageRequest.create(
                    buyer, measurement_hash, session.key_material.private_key_bytes()
                )
                measurement = self.offchain.fetch_measurement(delivery.locator, request)
                r = s = None
            else:
                raise TypeError(f"Unknown delivery payload {type(delivery).__name__}")
        except MarketError as e:
            retrievals.labels(variant=variant, outcome=e.error_code).inc()
            logger.warning(
                f"Retrieval failed: {e.error_code}",
                extra={"address": buyer, "measurement_hash": measurement_hash, "variant": variant},
            )
            raise

        retrievals.labels(variant=variant, outcome="SUCCESS").inc()
        logger.info(
            "Measurement retrieved",
            extra={"address": buyer, "measurement_hash": measurement_hash, "variant": variant},
        )
        return RetrievedMeasurement(
            measurement_hash=measurement_hash,
            measurement=measurement,
            tx_hash=completion.payment_tx_hash,
            client_addr=buyer,
            iot_addr=producer,
            variant=variant,
            r=r,
            s=s,
        )

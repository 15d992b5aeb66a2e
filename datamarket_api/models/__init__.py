"""Database models - import all models here so create_all sees them."""

from datamarket_api.models.projection import MeasurementListing, ProjectionCursor, PurchaseRecord

__all__ = [
    "ProjectionCursor",
    "MeasurementListing",
    "PurchaseRecord",
]

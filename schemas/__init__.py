"""
Pydantic schemas for data validation and serialization.

This package defines the shapes that cross the sync engine's boundaries:

Schemas:
    catalog: Catalog API records and pages (CatalogVehicle, CatalogPage)
    vehicle: What the sync writes (VehicleExtra, NormalizedVehicle)
    sync: Run summary (SyncSummary and its per-phase stats)
    api: API endpoint request/response schemas

Usage:
    from schemas.catalog import CatalogVehicle, CatalogPage
    from schemas.vehicle import VehicleExtra
    from schemas.sync import SyncSummary

Example:
    page = CatalogPage.from_payload(1, {"data": [{"id": 42, "brand_name": "Ford"}]})
    record = page.records[0]

    # Numeric ids are coerced to strings
    assert record.external_id == "42"

Validation:
    Catalog records are parsed leniently: identifiers become trimmed strings,
    numeric strings are coerced, and unknown upstream keys are kept. A record
    that still fails validation is counted on the page, not raised.
"""

__all__ = [
    "CatalogVehicle",
    "CatalogPage",
    "VehicleExtra",
    "NormalizedVehicle",
    "SyncSummary",
    "HealthCheckResponse",
    "SyncTriggerResponse",
    "VehicleResponse",
    "StatsResponse",
]

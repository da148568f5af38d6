"""
SQLAlchemy ORM models for database tables.

This package defines the local catalog store:

Models:
    base: Base declarative class and shared enums (VehicleStatus, SyncRunStatus, SyncType)
    vehicle: Vehicle, VehicleImage and the PendingImage work queue
    taxonomy: TaxonomyTerm and VehicleTaxonomyAssignment
    sync_run: SyncRun audit log

Database Schema:
    All models inherit from the Base declarative class. JSON documents use
    JSONB on PostgreSQL and plain JSON on other backends.

Usage:
    from models import Vehicle, VehicleImage, PendingImage, SyncRun
    from models.base import VehicleStatus

Relationships:
    - Vehicle → VehicleImage (one-to-many, cascade delete)
    - Vehicle → PendingImage (one-to-many, cascade delete)
    - Vehicle → VehicleTaxonomyAssignment → TaxonomyTerm
"""

from models.base import Base, VehicleStatus, SyncRunStatus, SyncType, TaxonomyCategory
from models.vehicle import Vehicle, VehicleImage, PendingImage
from models.taxonomy import TaxonomyTerm, VehicleTaxonomyAssignment
from models.sync_run import SyncRun

__all__ = [
    "Base",
    "VehicleStatus",
    "SyncRunStatus",
    "SyncType",
    "TaxonomyCategory",
    "Vehicle",
    "VehicleImage",
    "PendingImage",
    "TaxonomyTerm",
    "VehicleTaxonomyAssignment",
    "SyncRun",
]

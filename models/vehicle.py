from sqlalchemy import (
    Column, String, Integer, DateTime, Text, Boolean, Float,
    ForeignKey, Index, UniqueConstraint
)
from datetime import datetime
from models.base import Base, JSONDocument, VehicleStatus, enum_column


class Vehicle(Base):
    """
    One row per external catalog record, keyed by the feed's identifier.

    Lifecycle:
    - draft: created but never admitted (not produced by the sync itself)
    - published: passed the filters on its last write
    - archived: withdrawn; `extra.filter_reason` says why

    `extra` holds the stock snapshot, colors, raw price block and the
    withdrawal audit trail. Reassign it as a whole; in-place mutation of
    the dict is not tracked.
    """
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(String(100), unique=True, nullable=False, index=True)

    # Listing content
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(
        enum_column(VehicleStatus, "vehicle_status"),
        default=VehicleStatus.PUBLISHED,
        nullable=False,
        index=True,
    )
    year = Column(Integer, nullable=True)
    kilometres = Column(Integer, nullable=True)
    license_plate = Column(String(20), nullable=True, index=True)
    price_usd = Column(Float, nullable=True)
    price_ars = Column(Float, nullable=True)

    # Plain integer to avoid a circular FK with vehicle_images
    featured_image_id = Column(Integer, nullable=True)

    # Sync bookkeeping
    last_synced_at = Column(DateTime, nullable=True)
    external_updated_at = Column(DateTime, nullable=True)
    version_fingerprint = Column(String(64), nullable=True)

    extra = Column(JSONDocument, nullable=False, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    # Content or status change only; a last-seen refresh leaves it alone
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_vehicle_status_updated", "status", "updated_at"),
    )

    def __repr__(self):
        return f"<Vehicle(id={self.id}, external_id={self.external_id}, status={self.status})>"


class VehicleImage(Base):
    """A stored image. At most one per vehicle is featured."""
    __tablename__ = "vehicle_images"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False, index=True)
    image_url = Column(Text, nullable=False)
    file_path = Column(Text, nullable=True)
    is_featured = Column(Boolean, default=False, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("vehicle_id", "image_url", name="uq_vehicle_image_url"),
    )


class PendingImage(Base):
    """Work-queue row: an image URL waiting to be downloaded. Duplicates are tolerated."""
    __tablename__ = "pending_images"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False, index=True)
    image_url = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

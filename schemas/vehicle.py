"""
Pydantic schemas for what the sync writes to a Vehicle row
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime


AUDIT_FIELDS = ("filter_reason", "cleanup_verification", "archived_at")


class VehicleExtra(BaseModel):
    """
    The `extra` document stored on a Vehicle.

    Snapshot fields are rewritten on every upsert. Audit fields are only
    written when a vehicle is withdrawn and are cleared on reactivation.
    `keep_published` is an operator flag that exempts a vehicle from the
    cleanup pass. Keys this model does not know are preserved as-is.
    """

    # Upstream snapshot
    version: Optional[str] = None
    brand_id: Optional[Any] = None
    model_id: Optional[Any] = None
    origin: Optional[str] = None
    stock_info: List[Dict[str, Any]] = Field(default_factory=list)
    colors: List[Dict[str, Any]] = Field(default_factory=list)
    original_price: Optional[Dict[str, Any]] = None

    # Withdrawal audit trail
    filter_reason: Optional[str] = None
    cleanup_verification: Optional[str] = None
    archived_at: Optional[str] = None

    # Operator flags
    keep_published: bool = False

    class Config:
        extra = "allow"
        protected_namespaces = ()

    @classmethod
    def from_document(cls, document: Optional[Dict[str, Any]]) -> "VehicleExtra":
        """Parse a stored document, tolerating junk from older writers."""
        if not isinstance(document, dict):
            return cls()
        try:
            return cls(**document)
        except ValueError:
            # Keep whatever unknown keys survive; drop the typed fields that failed
            known = set(cls.model_fields)
            return cls(**{k: v for k, v in document.items() if k not in known})

    def to_document(self) -> Dict[str, Any]:
        """Serialize for the JSON column, omitting unset audit fields."""
        document = self.model_dump(mode="json")
        for key in AUDIT_FIELDS:
            if document.get(key) is None:
                document.pop(key, None)
        if not document.get("keep_published"):
            document.pop("keep_published", None)
        return document

    def with_snapshot(self, snapshot: "VehicleExtra") -> "VehicleExtra":
        """Replace snapshot fields, keep audit fields, flags and unknown keys."""
        merged = self.model_dump()
        merged.update(snapshot.model_dump(exclude=set(AUDIT_FIELDS) | {"keep_published"}, exclude_unset=False))
        return VehicleExtra(**merged)

    def archived(self, reason: str, verification: Optional[str] = None, at: Optional[datetime] = None) -> "VehicleExtra":
        data = self.model_dump()
        data["filter_reason"] = reason
        data["archived_at"] = (at or datetime.utcnow()).isoformat()
        if verification is not None:
            data["cleanup_verification"] = verification
        return VehicleExtra(**data)

    def cleared(self) -> "VehicleExtra":
        """Drop the withdrawal audit trail."""
        data = self.model_dump()
        for key in AUDIT_FIELDS:
            data[key] = None
        return VehicleExtra(**data)


class NormalizedVehicle(BaseModel):
    """Column values derived from one admitted catalog record"""
    external_id: str = Field(..., min_length=1, max_length=100)
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    year: Optional[int] = None
    kilometres: Optional[int] = None
    license_plate: Optional[str] = None
    price_usd: Optional[float] = None
    price_ars: Optional[float] = None
    taxonomies: Dict[str, str] = Field(default_factory=dict)
    image_urls: List[str] = Field(default_factory=list)
    extra: VehicleExtra = Field(default_factory=VehicleExtra)

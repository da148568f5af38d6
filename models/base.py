from sqlalchemy import JSON, Enum
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def enum_column(enum_cls, name: str) -> Enum:
    """Enum column type that stores the lowercase values, not member names."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


# ============================================================================
# ENUMS
# ============================================================================

class VehicleStatus(str, enum.Enum):
    """Vehicle lifecycle status"""
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class SyncRunStatus(str, enum.Enum):
    """Sync run status"""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncType(str, enum.Enum):
    """How a sync run was started"""
    FULL = "full"
    INCREMENTAL = "incremental"
    MANUAL = "manual"


class TaxonomyCategory(str, enum.Enum):
    """Categories a vehicle is classified under"""
    BRAND = "brand"
    MODEL = "model"
    CONDITION = "condition"
    TRANSMISSION = "transmission"
    FUEL_TYPE = "fuel_type"
    COLOR = "color"
    SEGMENT = "segment"

from sqlalchemy import Column, String, Integer, ForeignKey, UniqueConstraint
from models.base import Base


class TaxonomyTerm(Base):
    """Deduplicated (taxonomy, name) pair, e.g. (brand, "Toyota")."""
    __tablename__ = "taxonomy_terms"

    id = Column(Integer, primary_key=True, autoincrement=True)
    taxonomy = Column(String(50), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False)

    __table_args__ = (
        UniqueConstraint("taxonomy", "name", name="uq_taxonomy_term"),
    )


class VehicleTaxonomyAssignment(Base):
    """One term per vehicle per taxonomy category."""
    __tablename__ = "vehicle_taxonomies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False, index=True)
    taxonomy = Column(String(50), nullable=False)
    term_id = Column(Integer, ForeignKey("taxonomy_terms.id", ondelete="CASCADE"), nullable=False)

    __table_args__ = (
        UniqueConstraint("vehicle_id", "taxonomy", name="uq_vehicle_taxonomy"),
    )

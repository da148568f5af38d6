"""
Pydantic schemas for records and pages returned by the external catalog feed
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any
import logging

logger = logging.getLogger(__name__)


def _parse_float(value: Any) -> Optional[float]:
    """Safely parse float value"""
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def _parse_int(value: Any) -> Optional[int]:
    """Safely parse int value"""
    if value is None or value == "":
        return None
    try:
        return int(float(value))  # Handle "10.0" strings
    except (ValueError, TypeError):
        return None


def _clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


class CatalogStock(BaseModel):
    """One stock/offer entry of a vehicle"""
    status: Optional[str] = None
    branch_office_name: Optional[str] = None
    location_name: Optional[str] = None

    @validator("status", "branch_office_name", "location_name", pre=True)
    def coerce_text(cls, v):
        return _clean_str(v)

    class Config:
        extra = "allow"


class CatalogPrice(BaseModel):
    list_price: Optional[float] = None
    currency_name: Optional[str] = None

    @validator("list_price", pre=True)
    def parse_price(cls, v):
        return _parse_float(v)

    class Config:
        extra = "allow"


class CatalogColor(BaseModel):
    name: Optional[str] = None

    class Config:
        extra = "allow"


class CatalogImage(BaseModel):
    url: Optional[str] = None

    class Config:
        extra = "allow"


class CatalogVehicle(BaseModel):
    """
    A vehicle record as served by the feed.

    Every field is optional: the feed is not trusted to be complete, and
    the filter decides what a usable record looks like. Unknown keys are
    kept so they can be carried into the stored metadata.
    """

    id: Optional[str] = None
    brand_id: Optional[Any] = None
    model_id: Optional[Any] = None
    brand_name: Optional[str] = None
    model_name: Optional[str] = None
    version: Optional[str] = None
    description: Optional[str] = None
    year: Optional[int] = None
    kilometres: Optional[int] = None
    license_plate: Optional[str] = None
    origin: Optional[str] = None

    car_condition: Optional[str] = None
    car_transmission: Optional[str] = None
    car_fuel_type: Optional[str] = None
    car_segment: Optional[str] = None

    price: Optional[CatalogPrice] = None
    colors: List[CatalogColor] = Field(default_factory=list)
    stocks: List[CatalogStock] = Field(default_factory=list)
    images: List[CatalogImage] = Field(default_factory=list)

    @validator("id", "license_plate", "origin", pre=True)
    def coerce_identifier(cls, v):
        """Identifiers arrive as numbers or strings"""
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @validator(
        "brand_name", "model_name", "version", "description",
        "car_condition", "car_transmission", "car_fuel_type", "car_segment",
        pre=True,
    )
    def coerce_text(cls, v):
        return _clean_str(v)

    @validator("year", "kilometres", pre=True)
    def parse_numbers(cls, v):
        return _parse_int(v)

    @validator("colors", "stocks", "images", pre=True)
    def ensure_list(cls, v):
        """Ensure nested collections are lists"""
        if v is None:
            return []
        if not isinstance(v, list):
            return []
        return v

    class Config:
        extra = "allow"
        protected_namespaces = ()

    @property
    def external_id(self) -> Optional[str]:
        return self.id

    @property
    def list_price(self) -> Optional[float]:
        return self.price.list_price if self.price else None

    @property
    def currency(self) -> Optional[str]:
        return self.price.currency_name if self.price else None

    @property
    def image_urls(self) -> List[str]:
        """Non-blank image URLs, feed order, first occurrence wins"""
        urls: List[str] = []
        for image in self.images:
            url = (image.url or "").strip()
            if url and url not in urls:
                urls.append(url)
        return urls

    @property
    def first_color(self) -> Optional[str]:
        for color in self.colors:
            if color.name:
                return color.name
        return None


class PageMeta(BaseModel):
    """Pagination metadata; any of it may be missing"""
    current_page: Optional[int] = None
    total_pages: Optional[int] = None
    total_count: Optional[int] = None

    @validator("current_page", "total_pages", "total_count", pre=True)
    def parse_numbers(cls, v):
        return _parse_int(v)

    class Config:
        extra = "allow"


class CatalogPage(BaseModel):
    """One page of the feed. Records that fail validation are counted and dropped."""
    page: int
    records: List[CatalogVehicle] = Field(default_factory=list)
    meta: PageMeta = Field(default_factory=PageMeta)
    invalid_records: int = 0

    @property
    def has_more(self) -> bool:
        """True if the feed says there is a page after this one"""
        if self.meta.current_page is not None and self.meta.total_pages is not None:
            return self.meta.current_page < self.meta.total_pages
        return len(self.records) > 0

    @classmethod
    def from_payload(cls, page: int, payload: Dict[str, Any]) -> "CatalogPage":
        records: List[CatalogVehicle] = []
        invalid = 0
        for raw in payload.get("data") or []:
            try:
                records.append(CatalogVehicle(**raw))
            except (ValueError, TypeError) as e:
                invalid += 1
                logger.warning(f"Skipping malformed catalog record on page {page}: {e}")

        meta = payload.get("meta") or {}
        return cls(
            page=page,
            records=records,
            meta=PageMeta(**meta) if isinstance(meta, dict) else PageMeta(),
            invalid_records=invalid,
        )

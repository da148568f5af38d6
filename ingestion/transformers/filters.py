"""
Business filters that decide whether a catalog record may be published.

The checks run in a fixed order and stop at the first failure, so the
reported reason is always the earliest rule a record breaks:

    1. no_active_stock     - no offer with an in-stock status
    2. blocked_location    - active offer sits in a blocked location
    3. min_price           - list price not above the configured minimum
    4. blocked_status      - active offer status is a blocked status
    5. missing_identifier  - no license plate to look the record up by
    6. no_images           - no usable image URL (when images are required)

Evaluation is pure: no I/O, no clock, no shared state. The cleanup pass
calls it again on records returned by point lookups.
"""

from dataclasses import dataclass
from typing import Optional, List, Dict, Iterable, Tuple
import enum

from core.config import settings
from schemas.catalog import CatalogVehicle, CatalogStock


class FilterReason(str, enum.Enum):
    NO_ACTIVE_STOCK = "no_active_stock"
    BLOCKED_LOCATION = "blocked_location"
    MIN_PRICE = "min_price"
    BLOCKED_STATUS = "blocked_status"
    MISSING_IDENTIFIER = "missing_identifier"
    NO_IMAGES = "no_images"


@dataclass(frozen=True)
class FilterResult:
    admit: bool
    reason: Optional[FilterReason] = None
    detail: Optional[str] = None

    def __bool__(self) -> bool:
        return self.admit


ADMITTED = FilterResult(admit=True)


class VehicleFilter:
    """
    Evaluate catalog records against the configured business rules.

    Matching of statuses and locations is case-insensitive. Blank entries
    in the configured lists are ignored.
    """

    def __init__(
        self,
        blocked_locations: Iterable[str] = (),
        min_price: float = 1.0,
        blocked_statuses: Iterable[str] = (),
        require_images: bool = True,
        active_statuses: Iterable[str] = ("ACTIVE",),
    ):
        self.blocked_locations = self._normalize(blocked_locations)
        self.min_price = min_price
        self.blocked_statuses = self._normalize(blocked_statuses)
        self.require_images = require_images
        self.active_statuses = self._normalize(active_statuses)

    @classmethod
    def from_settings(cls) -> "VehicleFilter":
        return cls(
            blocked_locations=settings.BLOCKED_LOCATIONS,
            min_price=settings.MIN_PRICE,
            blocked_statuses=settings.BLOCKED_STATUSES,
            require_images=settings.REQUIRE_IMAGES,
            active_statuses=settings.ACTIVE_STOCK_STATUSES,
        )

    @staticmethod
    def _normalize(values: Iterable[str]) -> Tuple[str, ...]:
        return tuple(v.strip().lower() for v in values if v and v.strip())

    def active_stock(self, record: CatalogVehicle) -> Optional[CatalogStock]:
        """First offer whose status counts as in stock"""
        for stock in record.stocks:
            if (stock.status or "").strip().lower() in self.active_statuses:
                return stock
        return None

    def evaluate(self, record: CatalogVehicle) -> FilterResult:
        # ----- 1. active stock -----
        stock = self.active_stock(record)
        if stock is None:
            return FilterResult(False, FilterReason.NO_ACTIVE_STOCK, "no offer with an active status")

        # ----- 2. location -----
        if self.blocked_locations:
            location = (stock.location_name or "").lower()
            branch = (stock.branch_office_name or "").lower()
            for blocked in self.blocked_locations:
                if location and blocked in location:
                    return FilterResult(False, FilterReason.BLOCKED_LOCATION, f"location_name contains '{blocked}'")
                if branch and blocked in branch:
                    return FilterResult(False, FilterReason.BLOCKED_LOCATION, f"branch_office_name contains '{blocked}'")

        # ----- 3. price -----
        price = record.list_price
        if price is None or price <= self.min_price:
            return FilterResult(False, FilterReason.MIN_PRICE, f"list price {price} not above {self.min_price}")

        # ----- 4. offer status -----
        status = (stock.status or "").strip().lower()
        if status in self.blocked_statuses:
            return FilterResult(False, FilterReason.BLOCKED_STATUS, f"offer status '{stock.status}' is blocked")

        # ----- 5. lookup key -----
        if not (record.license_plate or "").strip():
            return FilterResult(False, FilterReason.MISSING_IDENTIFIER, "license plate missing")

        # ----- 6. images -----
        if self.require_images and not record.image_urls:
            return FilterResult(False, FilterReason.NO_IMAGES, "no image URLs")

        return ADMITTED

    def filter_many(self, records: Iterable[CatalogVehicle]) -> Tuple[List[CatalogVehicle], int, Dict[str, int]]:
        """Split records into admitted ones, the omitted count, and a reason histogram."""
        admitted: List[CatalogVehicle] = []
        reasons: Dict[str, int] = {}
        omitted = 0
        for record in records:
            result = self.evaluate(record)
            if result.admit:
                admitted.append(record)
            else:
                omitted += 1
                reasons[result.reason.value] = reasons.get(result.reason.value, 0) + 1
        return admitted, omitted, reasons

    def summary(self) -> Dict[str, object]:
        return {
            "active_statuses": list(self.active_statuses),
            "blocked_locations": list(self.blocked_locations),
            "min_price": self.min_price,
            "blocked_statuses": list(self.blocked_statuses),
            "require_images": self.require_images,
        }

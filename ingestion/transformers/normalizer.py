"""
Map admitted catalog records onto the columns of the local store
"""

from typing import Dict, Optional, Tuple
import logging
import re

from models.base import TaxonomyCategory
from schemas.catalog import CatalogVehicle
from schemas.vehicle import NormalizedVehicle, VehicleExtra
from core.exceptions import RecordValidationError

logger = logging.getLogger(__name__)

# Odometer readings below this are delivery kilometres
MIN_USED_KILOMETRES = 100

# Price routing thresholds for feeds that do not state a usable currency
USD_MIN_PRICE = 1000
USD_MAX_PRICE = 900000
ARS_MIN_PRICE = 901000

NEW_CONDITION_TERM = "0KM"
USED_CONDITION_TERM = "Used"


class VehicleNormalizer:
    """
    Normalize catalog records into the shape the store writes.

    Handles:
    - Title fallback when brand/model/version are empty
    - Odometer rounding
    - Routing the list price into the USD or ARS column
    - Taxonomy term names per category
    - The snapshot part of the `extra` document
    """

    def normalize(self, record: CatalogVehicle) -> NormalizedVehicle:
        if not record.external_id:
            raise RecordValidationError(
                "Catalog record has no identifier",
                context={"field_name": "id", "license_plate": record.license_plate},
            )

        price_usd, price_ars = self.route_price(record.list_price, record.currency)
        if record.list_price and price_usd is None and price_ars is None:
            logger.debug(f"Price {record.list_price} {record.currency} of {record.external_id} fits no price column")

        return NormalizedVehicle(
            external_id=record.external_id,
            title=self.build_title(record),
            description=record.description or "",
            year=record.year,
            kilometres=self.normalize_kilometres(record.kilometres),
            license_plate=(record.license_plate or "").strip() or None,
            price_usd=price_usd,
            price_ars=price_ars,
            taxonomies=self.taxonomy_terms(record),
            image_urls=record.image_urls,
            extra=self.build_extra(record),
        )

    @staticmethod
    def build_title(record: CatalogVehicle) -> str:
        title = f"{record.brand_name or ''} {record.model_name or ''} {record.version or ''}".strip()
        title = re.sub(r"\s+", " ", title)
        return title[:500] or f"Vehicle {record.external_id}"

    @staticmethod
    def normalize_kilometres(value: Optional[int]) -> int:
        kilometres = value or 0
        return 0 if kilometres < MIN_USED_KILOMETRES else kilometres

    @staticmethod
    def route_price(price: Optional[float], currency: Optional[str]) -> Tuple[Optional[float], Optional[float]]:
        """
        Decide which price column a list price belongs in.

        Returns (price_usd, price_ars). Prices outside the recognised bands
        are not stored at all.
        """
        price = price or 0
        currency = (currency or "").lower()

        if "dolar" in currency or "usd" in currency:
            return (price if price >= USD_MIN_PRICE else None), None

        if price > ARS_MIN_PRICE:
            return None, price
        if USD_MIN_PRICE <= price <= USD_MAX_PRICE:
            return price, None
        return None, None

    @staticmethod
    def taxonomy_terms(record: CatalogVehicle) -> Dict[str, str]:
        """Term name per category; categories without a value are omitted"""
        condition = NEW_CONDITION_TERM if (record.car_condition or "").lower() == "new" else USED_CONDITION_TERM
        candidates = {
            TaxonomyCategory.BRAND.value: record.brand_name,
            TaxonomyCategory.MODEL.value: record.model_name,
            TaxonomyCategory.CONDITION.value: condition,
            TaxonomyCategory.TRANSMISSION.value: record.car_transmission,
            TaxonomyCategory.FUEL_TYPE.value: record.car_fuel_type,
            TaxonomyCategory.COLOR.value: record.first_color,
            TaxonomyCategory.SEGMENT.value: record.car_segment,
        }
        return {k: v.strip() for k, v in candidates.items() if v and v.strip()}

    @staticmethod
    def build_extra(record: CatalogVehicle) -> VehicleExtra:
        return VehicleExtra(
            version=record.version,
            brand_id=record.brand_id,
            model_id=record.model_id,
            origin=record.origin,
            stock_info=[
                {
                    "status": s.status,
                    "branch_office_name": s.branch_office_name,
                    "location_name": s.location_name,
                }
                for s in record.stocks
            ],
            colors=[c.model_dump() for c in record.colors],
            original_price=record.price.model_dump() if record.price else None,
        )


def full_resolution_url(url: str) -> str:
    """The feed serves thumbnails under `/th-`; the full image drops the prefix."""
    return url.replace("/th-", "/")

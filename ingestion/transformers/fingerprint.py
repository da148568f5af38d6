"""
Content fingerprint of a catalog record.

Two records with the same fingerprint render the same public listing, so
an incremental run can skip the write path for them. Image URLs are sorted
before hashing: the feed does not return them in a stable order.
"""

from typing import Any, Dict, Iterable
import hashlib
import json

from schemas.catalog import CatalogVehicle


def fingerprint_payload(record: CatalogVehicle, active_statuses: Iterable[str] = ("ACTIVE",)) -> Dict[str, Any]:
    """The listing-relevant projection that gets hashed"""
    active = {s.strip().lower() for s in active_statuses if s}
    stock_status = ""
    for stock in record.stocks:
        if (stock.status or "").strip().lower() in active:
            stock_status = stock.status.strip().upper()
            break

    image_urls = sorted(record.image_urls)
    title = " ".join(
        part for part in (record.brand_name or "", record.model_name or "", record.version or "")
    ).strip()

    return {
        "id": record.external_id,
        "title": title,
        "description": record.description or "",
        "year": record.year,
        "kilometres": record.kilometres,
        "price": record.list_price or 0,
        "currency": record.currency or "",
        "condition": record.car_condition,
        "transmission": record.car_transmission,
        "fuel_type": record.car_fuel_type,
        "segment": record.car_segment,
        "color": record.first_color or "",
        "license_plate": record.license_plate,
        "images_urls": image_urls,
        "images_count": len(image_urls),
        "stock_status": stock_status,
    }


def compute_fingerprint(record: CatalogVehicle, active_statuses: Iterable[str] = ("ACTIVE",)) -> str:
    """SHA-256 hex digest of the canonical JSON projection"""
    payload = fingerprint_payload(record, active_statuses)
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

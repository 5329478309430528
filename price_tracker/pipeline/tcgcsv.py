"""
Card Price Tracker — Vendor Price File Reader

Turns an extracted daily price archive into PriceObservation rows.

Archive layout (already downloaded and extracted by the fetch job):
    <data_dir>/<YYYY-MM-DD>/<categoryId>/<groupId>/prices

Each prices file is {"results": [{"productId", "marketPrice", "lowPrice",
"highPrice", "subTypeName"}, ...]}. Variant keys are "{productId}:{finish}",
with finish defaulting to "Normal".

Product details (name, rarity, number, ...) for keys the store has never seen
come from the vendor's products listing; fetching it is outside this module,
apply_product_details() only merges an already-fetched listing.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Mapping

import structlog
from pydantic import BaseModel, Field, ValidationError

from price_tracker.config import settings
from price_tracker.pipeline.ingest import PriceObservation

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Pydantic Models
# ---------------------------------------------------------------------------


class PriceEntry(BaseModel):
    """One row of a vendor prices file."""
    productId: int
    marketPrice: Decimal | None = None
    lowPrice: Decimal | None = None
    highPrice: Decimal | None = None
    subTypeName: str | None = None


class PriceFile(BaseModel):
    results: list[PriceEntry] = Field(default_factory=list)


class ExtendedDataItem(BaseModel):
    name: str
    value: str | None = None


class ProductDetails(BaseModel):
    """One product from the vendor's per-group products listing."""
    productId: int
    name: str
    cleanName: str | None = None
    imageUrl: str | None = None
    url: str | None = None
    groupId: int | None = None
    extendedData: list[ExtendedDataItem] = Field(default_factory=list)

    def _extended(self, key: str) -> str | None:
        for item in self.extendedData:
            if item.name == key:
                return item.value
        return None

    @property
    def rarity(self) -> str | None:
        return self._extended("Rarity")

    @property
    def number(self) -> str | None:
        return self._extended("Number")


class ProductListResponse(BaseModel):
    results: list[ProductDetails] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def variant_key(product_id: int, finish: str | None = None) -> str:
    return f"{product_id}:{finish or settings.DEFAULT_FINISH}"


def read_price_entries(
    data_dir: str | Path,
    day: date,
    category_id: str,
    group_id: str,
) -> list[PriceEntry]:
    """Read one group's prices file. A missing file reads as no entries."""
    path = Path(data_dir) / day.isoformat() / str(category_id) / str(group_id) / "prices"
    if not path.is_file():
        return []
    return PriceFile.model_validate_json(path.read_bytes()).results


def collect_observations(
    data_dir: str | Path,
    day: date,
    category_ids: Iterable[str] | None = None,
) -> list[PriceObservation]:
    """
    Build observations for every group of every category for one day.

    Group directories are read in sorted order so runs are reproducible.
    A prices file that fails to parse is logged and skipped; the rest of
    the day is still ingested.
    """
    observations: list[PriceObservation] = []
    categories = list(category_ids) if category_ids is not None else settings.price_category_ids

    for category_id in categories:
        category_path = Path(data_dir) / day.isoformat() / str(category_id)
        if not category_path.is_dir():
            logger.info("price_category_missing", category_id=category_id, day=day.isoformat())
            continue

        for group_dir in sorted(p for p in category_path.iterdir() if p.is_dir()):
            try:
                entries = read_price_entries(data_dir, day, category_id, group_dir.name)
            except ValidationError as e:
                logger.error(
                    "price_file_invalid",
                    category_id=category_id,
                    group_id=group_dir.name,
                    error=str(e),
                )
                continue

            group_id = int(group_dir.name) if group_dir.name.isdigit() else None
            for entry in entries:
                finish = entry.subTypeName or settings.DEFAULT_FINISH
                observations.append(
                    PriceObservation(
                        variant_key=variant_key(entry.productId, finish),
                        price_date=day,
                        price=entry.marketPrice,
                        low_price=entry.lowPrice,
                        high_price=entry.highPrice,
                        product_id=entry.productId,
                        group_id=group_id,
                        finish=finish,
                    )
                )

    logger.info(
        "price_observations_collected",
        day=day.isoformat(),
        count=len(observations),
    )
    return observations


def parse_product_details(payload: Mapping[str, Any]) -> list[ProductDetails]:
    return ProductListResponse.model_validate(payload).results


def apply_product_details(
    observations: list[PriceObservation],
    details: Iterable[ProductDetails],
) -> list[PriceObservation]:
    """
    Attach creation attributes to observations whose product is in details.

    Returns a new list; observations without a match are returned unchanged.
    """
    by_product_id = {d.productId: d for d in details}
    enriched: list[PriceObservation] = []
    matched = 0

    for observation in observations:
        product = by_product_id.get(observation.product_id) if observation.product_id is not None else None
        if product is None:
            enriched.append(observation)
            continue

        update: dict[str, Any] = {
            "name": product.name,
            "rarity": product.rarity,
            "number": product.number,
            "image_url": product.imageUrl,
            "url": product.url,
            "clean_name": product.cleanName or product.name,
        }
        if product.groupId is not None:
            update["group_id"] = product.groupId
        enriched.append(observation.model_copy(update=update))
        matched += 1

    logger.info("product_details_applied", matched=matched, total=len(observations))
    return enriched

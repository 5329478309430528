"""
Card Price Tracker — Batch Ingestion Processor

Applies a list of daily price observations to the products table.

Per observation (each one is its own SAVEPOINT):
    1. Missing variant_key/date/price          -> skipped
    2. Unknown key without product_id/name/group_id -> skipped
    3. Unknown key with creation attributes    -> inserted (history = {date: price}, no metrics)
    4. Known key                               -> updated:
         a. comparators resolved against the history as it was BEFORE this write,
            anchored on the observation's own date
         b. history[date] = price (same-day re-ingestion overwrites)
         c. price, low/high, merged attributes, is_eligible, 14 metrics, updated_at
    5. Any other fault                         -> errors (savepoint rolled back, batch continues)

Transient infrastructure faults are re-raised so the caller can retry the
whole chunk (see pipeline/runner.py).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterable, Mapping

import structlog
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from price_tracker.engine.metrics import compute_change_metrics, history_with_price, is_eligible
from price_tracker.models.product import Product
from price_tracker.pipeline.errors import is_transient_error

logger = structlog.get_logger(__name__)

# Attributes that follow last-non-null-wins on update. Identity fields
# (product_id, group_id) are set once at creation.
DESCRIPTIVE_FIELDS: tuple[str, ...] = (
    "name",
    "rarity",
    "number",
    "image_url",
    "url",
    "clean_name",
    "finish",
    "pricecharting_url",
)

# Matches the DECIMAL(10,2) price columns
_CENTS = Decimal("0.01")


# ---------------------------------------------------------------------------
# Input / Output Models
# ---------------------------------------------------------------------------


class PriceObservation(BaseModel):
    """
    One observed price for one variant on one day.

    Accepts both the snake_case batch layout and the vendor's camelCase names.
    Only variant_key, date and price are required to process the row; the
    creation attributes are needed only the first time a key is seen.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    variant_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("variant_key", "key", "variantKey"),
    )
    price_date: date | None = Field(
        default=None,
        validation_alias=AliasChoices("date", "price_date"),
    )
    price: Decimal | None = None
    low_price: Decimal | None = Field(
        default=None, validation_alias=AliasChoices("low_price", "lowPrice")
    )
    high_price: Decimal | None = Field(
        default=None, validation_alias=AliasChoices("high_price", "highPrice")
    )

    # Creation attributes
    product_id: int | None = Field(
        default=None, validation_alias=AliasChoices("product_id", "productId")
    )
    name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("name", "product_name", "productName"),
    )
    group_id: int | None = Field(
        default=None, validation_alias=AliasChoices("group_id", "groupId")
    )

    # Descriptive attributes
    rarity: str | None = None
    number: str | None = None
    image_url: str | None = Field(
        default=None, validation_alias=AliasChoices("image_url", "imageUrl")
    )
    url: str | None = None
    clean_name: str | None = Field(
        default=None, validation_alias=AliasChoices("clean_name", "cleanName")
    )
    finish: str | None = None
    pricecharting_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("pricecharting_url", "pricechartingUrl"),
    )

    @field_validator("price", "low_price", "high_price", mode="before")
    @classmethod
    def parse_decimal(cls, v: Any) -> Decimal | None:
        """
        Convert prices to Decimal via str so floats keep their printed value,
        then round to cents. The stored price, its history entry and the
        metrics computed from it all use the rounded value.
        """
        if v is None or v == "":
            return None
        if isinstance(v, bool):
            raise ValueError("price must be numeric")
        try:
            value = Decimal(str(v))
        except (InvalidOperation, ValueError) as e:
            raise ValueError(f"price is not numeric: {v!r}") from e
        if not value.is_finite():
            raise ValueError(f"price is not finite: {v!r}")
        try:
            return value.quantize(_CENTS, rounding=ROUND_HALF_UP)
        except InvalidOperation as e:
            raise ValueError(f"price out of range: {v!r}") from e

    def missing_required(self) -> list[str]:
        missing = []
        if not self.variant_key:
            missing.append("variant_key")
        if self.price_date is None:
            missing.append("date")
        if self.price is None:
            missing.append("price")
        return missing

    def has_creation_attributes(self) -> bool:
        return (
            self.product_id is not None
            and self.name is not None
            and self.group_id is not None
        )


class ObservationOutcome(str, Enum):
    UPDATED = "updated"
    INSERTED = "inserted"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass
class IngestSummary:
    """Aggregate counts for one batch (or several, via +)."""

    updated: int = 0
    inserted: int = 0
    skipped: int = 0
    errors: int = 0

    def record(self, outcome: ObservationOutcome) -> None:
        if outcome is ObservationOutcome.UPDATED:
            self.updated += 1
        elif outcome is ObservationOutcome.INSERTED:
            self.inserted += 1
        elif outcome is ObservationOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.errors += 1

    @property
    def total(self) -> int:
        return self.updated + self.inserted + self.skipped + self.errors

    def as_dict(self) -> dict[str, int]:
        return asdict(self)

    def __add__(self, other: IngestSummary) -> IngestSummary:
        return IngestSummary(
            updated=self.updated + other.updated,
            inserted=self.inserted + other.inserted,
            skipped=self.skipped + other.skipped,
            errors=self.errors + other.errors,
        )


# ---------------------------------------------------------------------------
# Per-observation steps
# ---------------------------------------------------------------------------


def _insert_product(observation: PriceObservation, processed_at: datetime) -> Product:
    price = observation.price
    assert price is not None and observation.price_date is not None

    return Product(
        variant_key=observation.variant_key,
        product_id=observation.product_id,
        name=observation.name,
        group_id=observation.group_id,
        current_price=price,
        low_price=observation.low_price,
        high_price=observation.high_price,
        rarity=observation.rarity,
        number=observation.number,
        image_url=observation.image_url,
        url=observation.url,
        clean_name=observation.clean_name,
        finish=observation.finish,
        pricecharting_url=observation.pricecharting_url,
        price_history=history_with_price(None, observation.price_date, price),
        is_eligible=is_eligible(price, observation.rarity, observation.number),
        created_at=processed_at,
        updated_at=processed_at,
    )


def _update_product(
    product: Product,
    observation: PriceObservation,
    processed_at: datetime,
) -> None:
    price = observation.price
    day = observation.price_date
    assert price is not None and day is not None

    # Comparators come from the history before today's price is added
    metrics = compute_change_metrics(product.price_history, day, price)

    for field in DESCRIPTIVE_FIELDS:
        incoming = getattr(observation, field)
        if incoming is not None:
            setattr(product, field, incoming)

    product.price_history = history_with_price(product.price_history, day, price)
    product.current_price = price
    if observation.low_price is not None:
        product.low_price = observation.low_price
    if observation.high_price is not None:
        product.high_price = observation.high_price

    product.is_eligible = is_eligible(price, product.rarity, product.number)
    product.apply_metrics(metrics)
    product.updated_at = processed_at


async def _apply_observation(
    session: AsyncSession,
    observation: PriceObservation,
    processed_at: datetime,
) -> ObservationOutcome:
    product = await session.get(Product, observation.variant_key)

    if product is None:
        if not observation.has_creation_attributes():
            logger.debug(
                "ingest_unknown_key_skipped",
                variant_key=observation.variant_key,
            )
            return ObservationOutcome.SKIPPED

        session.add(_insert_product(observation, processed_at))
        await session.flush()
        return ObservationOutcome.INSERTED

    _update_product(product, observation, processed_at)
    await session.flush()
    return ObservationOutcome.UPDATED


async def _ingest_one(
    session: AsyncSession,
    raw: PriceObservation | Mapping[str, Any],
    processed_at: datetime,
    position: int,
) -> ObservationOutcome:
    try:
        observation = (
            raw if isinstance(raw, PriceObservation) else PriceObservation.model_validate(raw)
        )
    except ValidationError as e:
        logger.warning(
            "ingest_observation_invalid",
            position=position,
            error_count=e.error_count(),
            error=str(e),
        )
        return ObservationOutcome.ERROR

    missing = observation.missing_required()
    if missing:
        logger.debug(
            "ingest_observation_skipped",
            position=position,
            variant_key=observation.variant_key,
            missing=missing,
        )
        return ObservationOutcome.SKIPPED

    try:
        async with session.begin_nested():
            return await _apply_observation(session, observation, processed_at)
    except Exception as e:
        if is_transient_error(e):
            raise
        logger.warning(
            "ingest_observation_failed",
            position=position,
            variant_key=observation.variant_key,
            error=str(e),
            error_type=type(e).__name__,
        )
        return ObservationOutcome.ERROR


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def ingest_batch(
    session: AsyncSession,
    observations: Iterable[PriceObservation | Mapping[str, Any]],
    processed_at: datetime | None = None,
) -> IngestSummary:
    """
    Apply observations in order and commit once at the end.

    Observations for the same key are applied in the order given, each one
    seeing the effect of the previous.

    Args:
        session: Async database session. The batch runs in its current
            transaction and is committed before returning.
        observations: PriceObservation models or raw mappings.
        processed_at: Timestamp written to updated_at (default: now, UTC).

    Returns:
        IngestSummary with updated / inserted / skipped / errors counts.
    """
    processed_at = processed_at or datetime.now(timezone.utc)
    summary = IngestSummary()

    for position, raw in enumerate(observations):
        summary.record(await _ingest_one(session, raw, processed_at, position))

    await session.commit()

    logger.info("ingest_batch_complete", **summary.as_dict())
    return summary

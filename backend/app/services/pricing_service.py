# Overview: Mixture pricing: per-volume tier rates, tiered container cost, equal-split allocation.

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from ..extensions import db
from ..models import Department, PricingConfig
from ..line_items import TIER_RETAIL, TIER_WHOLESALE, round_volume
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_pricing_config,
    validate_payload,
)
from .concurrency import run_with_retry


logger = logging.getLogger(__name__)

"""
Pricing invariants:

- Equal split is the only allocation policy:
    per_ingredient_volume = round(V / n, 1)   (half-up)
  n * per_ingredient_volume may differ from V by the rounding residue.
- Container cost: first tier with min <= V <= max (both ends inclusive).
  Tiers are admin-maintained; the calculator does not check for gaps or
  overlaps. No match -> default_container_cost_cents.
- Retail: fixed price for the exact container size if configured, else
  V * retail rate. Wholesale: always V * wholesale rate.
- V <= 0 prices at 0; callers reject such input before getting here.
"""


# Department has never saved a pricing table: these apply.
DEFAULT_PRICING = {
    "retail_rate_cents_per_ml": 80_000,
    "wholesale_rate_cents_per_ml": 40_000,
    "container_cost_tiers": [
        {"min": 0, "max": 10, "cost_cents": 30_000},
        {"min": 11, "max": 30, "cost_cents": 50_000},
        {"min": 31, "max": 50, "cost_cents": 100_000},
        {"min": 51, "max": 100, "cost_cents": 150_000},
        {"min": 101, "max": 200, "cost_cents": 200_000},
        {"min": 201, "max": 999_999, "cost_cents": 300_000},
    ],
    "retail_size_prices": [
        {"volume": 10, "price_cents": 800_000},
        {"volume": 15, "price_cents": 1_200_000},
        {"volume": 20, "price_cents": 1_600_000},
        {"volume": 25, "price_cents": 2_000_000},
        {"volume": 30, "price_cents": 2_400_000},
        {"volume": 50, "price_cents": 4_000_000},
        {"volume": 100, "price_cents": 8_000_000},
    ],
    "default_container_cost_cents": 100_000,
}

PRICING_POLICY = ModelValidationPolicy(
    writable_fields={
        "retail_rate_cents_per_ml",
        "wholesale_rate_cents_per_ml",
        "container_cost_tiers",
        "retail_size_prices",
        "default_container_cost_cents",
    },
)


class PricingError(Exception):
    """Raised for pricing configuration lookup errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class MixtureQuote:
    unit_price_cents: int
    container_cost_cents: int
    per_ingredient_volume: Decimal
    rate_cents_per_ml: int
    # V * rate, before any fixed retail size price is applied
    base_price_cents: int

    def to_dict(self) -> dict:
        return {
            "unit_price_cents": self.unit_price_cents,
            "container_cost_cents": self.container_cost_cents,
            "per_ingredient_volume": float(self.per_ingredient_volume),
            "rate_cents_per_ml": self.rate_cents_per_ml,
            "base_price_cents": self.base_price_cents,
        }


def _cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def container_cost_for(container_volume: Decimal, config: PricingConfig) -> int:
    volume = Decimal(str(container_volume))
    for tier in config.container_cost_tiers or []:
        lo = Decimal(str(tier.get("min", 0)))
        hi = Decimal(str(tier.get("max", 0)))
        if lo <= volume <= hi:
            return int(tier.get("cost_cents", 0))
    logger.warning(
        "No container cost tier covers %s ml (department %s); using default %s",
        volume, config.department_id, config.default_container_cost_cents,
    )
    return int(config.default_container_cost_cents or 0)


def split_volume(container_volume: Decimal, ingredient_count: int) -> Decimal:
    if ingredient_count <= 0 or container_volume <= 0:
        return Decimal("0.0")
    return round_volume(Decimal(str(container_volume)) / ingredient_count)


def price(
    container_volume: Decimal,
    ingredient_names: list[str],
    customer_tier: str,
    config: PricingConfig,
) -> MixtureQuote:
    volume = Decimal(str(container_volume))
    tier = (customer_tier or TIER_RETAIL).lower()
    rate = (
        int(config.wholesale_rate_cents_per_ml)
        if tier == TIER_WHOLESALE
        else int(config.retail_rate_cents_per_ml)
    )
    per_ingredient = split_volume(volume, len(ingredient_names))

    if volume <= 0:
        return MixtureQuote(
            unit_price_cents=0,
            container_cost_cents=0,
            per_ingredient_volume=per_ingredient,
            rate_cents_per_ml=rate,
            base_price_cents=0,
        )

    base_price = _cents(volume * rate)
    unit_price = base_price
    if tier != TIER_WHOLESALE:
        for row in config.retail_size_prices or []:
            if Decimal(str(row.get("volume"))) == volume:
                unit_price = int(row["price_cents"])
                break

    return MixtureQuote(
        unit_price_cents=unit_price,
        container_cost_cents=container_cost_for(volume, config),
        per_ingredient_volume=per_ingredient,
        rate_cents_per_ml=rate,
        base_price_cents=base_price,
    )


def default_pricing_config(department_id: int) -> PricingConfig:
    """Unsaved config carrying DEFAULT_PRICING for a department."""
    return PricingConfig(
        department_id=department_id,
        retail_rate_cents_per_ml=DEFAULT_PRICING["retail_rate_cents_per_ml"],
        wholesale_rate_cents_per_ml=DEFAULT_PRICING["wholesale_rate_cents_per_ml"],
        container_cost_tiers=[dict(t) for t in DEFAULT_PRICING["container_cost_tiers"]],
        retail_size_prices=[dict(r) for r in DEFAULT_PRICING["retail_size_prices"]],
        default_container_cost_cents=DEFAULT_PRICING["default_container_cost_cents"],
    )


def get_pricing_config(department_id: int) -> PricingConfig:
    config = db.session.query(PricingConfig).filter_by(department_id=department_id).first()
    if config is not None:
        return config
    return default_pricing_config(department_id)


def upsert_pricing_config(department_id: int, payload: dict) -> PricingConfig:
    """Create or patch a department's pricing table (admin surface)."""
    def _op():
        if db.session.get(Department, department_id) is None:
            raise PricingError("Department not found", details={"department_id": department_id})

        config = db.session.query(PricingConfig).filter_by(department_id=department_id).first()
        patch = validate_payload(
            model=PricingConfig,
            payload=payload,
            policy=PRICING_POLICY,
        )
        enforce_rules_pricing_config(patch)

        if config is None:
            config = default_pricing_config(department_id)
            db.session.add(config)
        for key, value in patch.items():
            setattr(config, key, value)

        db.session.commit()
        logger.info("Pricing config saved for department %s", department_id)
        return config

    return run_with_retry(_op)


def quote_mixture(
    department_id: int,
    container_volume: Decimal,
    ingredient_names: list[str],
    customer_tier: str,
    *,
    max_ingredients: int = 10,
) -> MixtureQuote:
    """Checkout preview; applies the same input rules commit does."""
    if container_volume <= 0:
        raise ValidationError("container_volume must be > 0")
    if not ingredient_names:
        raise ValidationError("At least one ingredient is required")
    if len(ingredient_names) > max_ingredients:
        raise ValidationError(f"A mixture may contain at most {max_ingredients} ingredients")
    return price(container_volume, ingredient_names, customer_tier, get_pricing_config(department_id))

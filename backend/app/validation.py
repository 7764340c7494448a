from __future__ import annotations
from decimal import Decimal, InvalidOperation

from dataclasses import dataclass
from typing import Any

from sqlalchemy import JSON, Integer
from sqlalchemy.orm import DeclarativeMeta


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# One bulk container never holds more than this many millilitres
MAX_VOLUME_ML = Decimal("1000000")


class ValidationError(ValueError):
    """400-level input problem. Raised before anything is persisted."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    """
    writable_fields: set[str]


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, field: str) -> int:
    """Strict integer coercion: rejects bools, floats and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_volume(value: Any, field: str) -> Decimal:
    """Millilitre amounts: ints, floats and numeric strings become Decimal."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{field} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if result > MAX_VOLUME_ML:
        raise ValidationError(f"{field} cannot exceed {MAX_VOLUME_ML} ml")
    return result


def _coerce_value(col, value: Any):
    coltype = col.type

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, JSON):
        if not isinstance(value, (list, dict)):
            raise ValidationError(f"{col.key} must be a JSON list or object")
        return value

    raise ValidationError(f"{col.key} cannot be set through this endpoint")


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
) -> dict:
    """
    Validates + normalizes an incoming JSON patch against:
    - SQLAlchemy column metadata (nullable, type)
    - a policy allowlist (writable_fields)
    Only provided keys are validated; returns a cleaned patch dict.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        patch[k] = _coerce_value(col, raw)

    return patch


def enforce_price_cents(value: int, field: str = "price_cents") -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if value < 0:
        raise ValidationError(f"{field} must be >= 0")
    if value > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS}")


def enforce_rules_pricing_config(patch: dict) -> None:
    """
    Business rules for a department's pricing table that column metadata
    alone cannot express. Overlap between tiers is not rejected here: the
    calculator takes the first matching tier, so ordering is the admin's call.
    """
    for field in ("retail_rate_cents_per_ml", "wholesale_rate_cents_per_ml", "default_container_cost_cents"):
        if field in patch and patch[field] is not None:
            enforce_price_cents(patch[field], field)

    if "container_cost_tiers" in patch:
        tiers = patch["container_cost_tiers"]
        if not isinstance(tiers, list):
            raise ValidationError("container_cost_tiers must be a list")
        cleaned = []
        for i, tier in enumerate(tiers):
            if not isinstance(tier, dict):
                raise ValidationError(f"container_cost_tiers[{i}] must be an object")
            lo = coerce_volume(tier.get("min"), f"container_cost_tiers[{i}].min")
            hi = coerce_volume(tier.get("max"), f"container_cost_tiers[{i}].max")
            if lo < 0 or hi < lo:
                raise ValidationError(f"container_cost_tiers[{i}] must satisfy 0 <= min <= max")
            cost = coerce_int(tier.get("cost_cents"), f"container_cost_tiers[{i}].cost_cents")
            enforce_price_cents(cost, f"container_cost_tiers[{i}].cost_cents")
            cleaned.append({"min": float(lo), "max": float(hi), "cost_cents": cost})
        patch["container_cost_tiers"] = cleaned

    if "retail_size_prices" in patch:
        sizes = patch["retail_size_prices"]
        if not isinstance(sizes, list):
            raise ValidationError("retail_size_prices must be a list")
        cleaned = []
        for i, row in enumerate(sizes):
            if not isinstance(row, dict):
                raise ValidationError(f"retail_size_prices[{i}] must be an object")
            volume = coerce_volume(row.get("volume"), f"retail_size_prices[{i}].volume")
            if volume <= 0:
                raise ValidationError(f"retail_size_prices[{i}].volume must be > 0")
            price = coerce_int(row.get("price_cents"), f"retail_size_prices[{i}].price_cents")
            enforce_price_cents(price, f"retail_size_prices[{i}].price_cents")
            cleaned.append({"volume": float(volume), "price_cents": price})
        patch["retail_size_prices"] = cleaned


def enforce_rules_weigh_in(empty_weight: Decimal, current_weight: Decimal, density: Decimal) -> None:
    if empty_weight < 0:
        raise ValidationError("empty_container_weight_g must be >= 0")
    if current_weight <= empty_weight:
        raise ValidationError("current_weight_g must be greater than empty_container_weight_g")
    if density <= 0:
        raise ValidationError("density must be > 0")

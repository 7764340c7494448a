# Overview: Typed sale line items; one dataclass per stock model instead of a null-heavy shared record.

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

from .validation import ValidationError, coerce_int, coerce_volume


KIND_PRODUCT = "product"
KIND_VARIANT = "variant"
KIND_MIXTURE = "mixture"
KIND_SERVICE = "service"

TIER_RETAIL = "retail"
TIER_WHOLESALE = "wholesale"
CUSTOMER_TIERS = (TIER_RETAIL, TIER_WHOLESALE)

ONE_DECIMAL = Decimal("0.1")


def round_volume(value: Decimal) -> Decimal:
    """Round millilitres to one decimal place, half away from zero."""
    return Decimal(value).quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class ProductLine:
    name: str
    quantity: int
    unit_price_cents: int | None
    product_id: int
    # Total millilitres sold on this line; only read for volume-tracked products
    volume: Decimal | None = None
    kind: str = field(default=KIND_PRODUCT, init=False)

    @property
    def subtotal_cents(self) -> int:
        return self.unit_price_cents * self.quantity


@dataclass(frozen=True)
class VariantLine:
    name: str
    quantity: int
    unit_price_cents: int | None
    variant_id: int
    product_id: int | None = None
    kind: str = field(default=KIND_VARIANT, init=False)

    @property
    def subtotal_cents(self) -> int:
        return self.unit_price_cents * self.quantity


@dataclass(frozen=True)
class IngredientPortion:
    name: str
    volume: Decimal
    ingredient_id: int | None = None

    def to_json(self) -> dict:
        return {"name": self.name, "ingredient_id": self.ingredient_id, "volume": str(self.volume)}

    @classmethod
    def from_json(cls, data: dict) -> "IngredientPortion":
        raw_id = data.get("ingredient_id")
        return cls(
            name=str(data.get("name") or ""),
            volume=Decimal(str(data.get("volume") or "0")),
            ingredient_id=int(raw_id) if raw_id is not None else None,
        )


@dataclass(frozen=True)
class MixtureRequest:
    """A mixture as the till sends it: names chosen, not yet priced or split."""
    name: str | None
    quantity: int
    container_volume: Decimal
    customer_tier: str
    ingredients: tuple[tuple[str, int | None], ...]
    product_id: int | None = None

    @property
    def ingredient_names(self) -> list[str]:
        return [name for name, _ in self.ingredients]


@dataclass(frozen=True)
class MixtureLine:
    name: str
    quantity: int
    unit_price_cents: int
    container_volume: Decimal
    customer_tier: str
    container_cost_cents: int
    portions: tuple[IngredientPortion, ...]
    # House-blend product the line reports under; never touched by stock
    product_id: int | None = None
    kind: str = field(default=KIND_MIXTURE, init=False)

    @property
    def subtotal_cents(self) -> int:
        return self.unit_price_cents * self.quantity


@dataclass(frozen=True)
class ServiceLine:
    name: str
    quantity: int
    unit_price_cents: int
    kind: str = field(default=KIND_SERVICE, init=False)

    @property
    def subtotal_cents(self) -> int:
        return self.unit_price_cents * self.quantity


SaleLineItem = Union[ProductLine, VariantLine, MixtureLine, ServiceLine]
LineRequest = Union[ProductLine, VariantLine, MixtureRequest, ServiceLine]


def _optional_id(payload: dict, key: str) -> int | None:
    raw = payload.get(key)
    if raw is None or raw == "":
        return None
    value = coerce_int(raw, key)
    if value <= 0:
        raise ValidationError(f"{key} must be a positive integer")
    return value


def _unit_price(payload: dict) -> int | None:
    raw = payload.get("unit_price_cents")
    if raw is None:
        return None
    value = coerce_int(raw, "unit_price_cents")
    if value < 0:
        raise ValidationError("unit_price_cents must be >= 0")
    return value


def _parse_mixture(payload: dict, mixture: dict, quantity: int, max_ingredients: int) -> MixtureRequest:
    if not isinstance(mixture, dict):
        raise ValidationError("mixture must be an object")

    container_volume = coerce_volume(mixture.get("container_volume"), "mixture.container_volume")
    if container_volume <= 0:
        raise ValidationError("mixture.container_volume must be > 0")

    tier = str(mixture.get("customer_tier") or TIER_RETAIL).strip().lower()
    if tier not in CUSTOMER_TIERS:
        raise ValidationError(f"mixture.customer_tier must be one of {', '.join(CUSTOMER_TIERS)}")

    raw_ingredients = mixture.get("ingredients")
    if not isinstance(raw_ingredients, list) or not raw_ingredients:
        raise ValidationError("mixture.ingredients must be a non-empty list")
    if len(raw_ingredients) > max_ingredients:
        raise ValidationError(
            f"A mixture may contain at most {max_ingredients} ingredients",
            details={"count": len(raw_ingredients), "max": max_ingredients},
        )

    ingredients: list[tuple[str, int | None]] = []
    for i, entry in enumerate(raw_ingredients):
        if isinstance(entry, str):
            entry = {"name": entry}
        if not isinstance(entry, dict):
            raise ValidationError(f"mixture.ingredients[{i}] must be an object or a name")
        name = str(entry.get("name") or "").strip()
        if not name:
            raise ValidationError(f"mixture.ingredients[{i}].name is required")
        ingredients.append((name, _optional_id(entry, "ingredient_id")))

    name = payload.get("name")
    return MixtureRequest(
        name=str(name).strip() if name else None,
        quantity=quantity,
        container_volume=container_volume,
        customer_tier=tier,
        ingredients=tuple(ingredients),
        product_id=_optional_id(payload, "product_id"),
    )


def parse_line_item(payload: dict, *, max_ingredients: int = 10) -> LineRequest:
    """
    Classify and validate one cart line.

    Precedence: a mixture payload wins (a blend may carry its house-blend
    product_id for reporting), then variant_id, then product_id; a line
    with none of them is a service and never moves stock.

    Product/variant lines without unit_price_cents come back with None;
    the sale service fills the catalogue price in.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Each item must be an object")

    quantity = coerce_int(payload.get("quantity", 1), "quantity")
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")

    mixture = payload.get("mixture")
    if mixture is not None:
        return _parse_mixture(payload, mixture, quantity, max_ingredients)

    name = str(payload.get("name") or "").strip()
    unit_price = _unit_price(payload)
    variant_id = _optional_id(payload, "variant_id")
    product_id = _optional_id(payload, "product_id")

    if variant_id is not None:
        return VariantLine(
            name=name,
            quantity=quantity,
            unit_price_cents=unit_price,
            variant_id=variant_id,
            product_id=product_id,
        )

    if product_id is not None:
        volume = None
        if payload.get("volume") is not None:
            volume = coerce_volume(payload["volume"], "volume")
            if volume <= 0:
                raise ValidationError("volume must be > 0")
        return ProductLine(
            name=name,
            quantity=quantity,
            unit_price_cents=unit_price,
            product_id=product_id,
            volume=volume,
        )

    if not name:
        raise ValidationError("Service items require a name")
    if unit_price is None:
        raise ValidationError("Service items require unit_price_cents")
    return ServiceLine(name=name, quantity=quantity, unit_price_cents=unit_price)


def line_from_sale_item(item) -> SaleLineItem:
    """Rebuild the typed line from a persisted SaleItem row (void path)."""
    volume = Decimal(str(item.volume)) if item.volume is not None else None

    if item.kind == KIND_MIXTURE:
        portions = tuple(IngredientPortion.from_json(p) for p in (item.mixture_json or []))
        return MixtureLine(
            name=item.name,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
            container_volume=volume or Decimal("0"),
            customer_tier=item.customer_tier or TIER_RETAIL,
            container_cost_cents=item.container_cost_cents or 0,
            portions=portions,
            product_id=item.product_id,
        )
    if item.kind == KIND_VARIANT:
        return VariantLine(
            name=item.name,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
            variant_id=item.variant_id,
            product_id=item.product_id,
        )
    if item.kind == KIND_PRODUCT:
        return ProductLine(
            name=item.name,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
            product_id=item.product_id,
            volume=volume,
        )
    return ServiceLine(name=item.name, quantity=item.quantity, unit_price_cents=item.unit_price_cents)

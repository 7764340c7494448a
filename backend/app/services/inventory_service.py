# Overview: Service-layer operations for bulk ingredient stock: weigh-ins and low-stock alerts.

# backend/app/services/inventory_service.py

from __future__ import annotations

import logging
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Department, Ingredient, Product, ProductVariant, StockMovement
from ..models.inventory import TRACKING_VOLUME
from ..line_items import round_volume
from ..validation import ValidationError, coerce_volume, enforce_rules_weigh_in
from .concurrency import lock_for_update, run_with_retry
from .stock_ledger import ENTITY_INGREDIENT, MOVEMENT_WEIGH_IN

"""
Weigh-in semantics:

- Bulk ingredient bottles are weighed, not measured:
    stock_volume = (current_weight_g - empty_container_weight_g) / density
  rounded to one decimal millilitre (half-up).
- A weigh-in REPLACES stock_volume; the difference is written to the
  stock movement audit as a WEIGH_IN row.
- Density falls back to the ingredient's stored density, then
  DEFAULT_INGREDIENT_DENSITY.

Low-stock alerts:
- Ingredients and volume-tracked products below LOW_STOCK_THRESHOLD_ML.
- Quantity-tracked products and variants below LOW_STOCK_THRESHOLD_UNITS.
- Always scoped to one department; inactive rows are ignored.
"""


logger = logging.getLogger(__name__)


class InventoryError(Exception):
    """Raised for inventory operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def volume_from_weight(empty_weight_g: Decimal, current_weight_g: Decimal, density: Decimal) -> Decimal:
    enforce_rules_weigh_in(empty_weight_g, current_weight_g, density)
    return round_volume((current_weight_g - empty_weight_g) / density)


def record_weigh_in(
    ingredient_id: int,
    empty_weight_g,
    current_weight_g,
    density=None,
) -> Ingredient:
    empty = coerce_volume(empty_weight_g, "empty_container_weight_g")
    current = coerce_volume(current_weight_g, "current_weight_g")

    def _op():
        ingredient = lock_for_update(db.session.query(Ingredient).filter_by(id=ingredient_id)).first()
        if ingredient is None:
            raise InventoryError("Ingredient not found", details={"ingredient_id": ingredient_id})

        if density is not None:
            used_density = coerce_volume(density, "density")
        elif ingredient.density is not None:
            used_density = Decimal(str(ingredient.density))
        else:
            used_density = Decimal(str(current_app.config.get("DEFAULT_INGREDIENT_DENSITY", 0.9)))

        new_volume = volume_from_weight(empty, current, used_density)
        before = Decimal(str(ingredient.stock_volume or 0))

        ingredient.empty_container_weight_g = empty
        ingredient.current_weight_g = current
        ingredient.density = used_density
        ingredient.stock_volume = new_volume

        db.session.add(StockMovement(
            entity_type=ENTITY_INGREDIENT,
            entity_id=ingredient.id,
            movement_type=MOVEMENT_WEIGH_IN,
            stock_field="stock_volume",
            requested=new_volume - before,
            applied_delta=new_volume - before,
            stock_before=before,
            stock_after=new_volume,
            note=f"{current}g gross, {empty}g empty, density {used_density}",
        ))
        db.session.commit()

        logger.info("Weigh-in for ingredient id=%s: %s -> %s ml", ingredient.id, before, new_volume)
        return ingredient

    return run_with_retry(_op)


def low_stock_alerts(department_id: int) -> dict:
    if db.session.get(Department, department_id) is None:
        raise ValidationError("Department not found", details={"department_id": department_id})

    threshold_ml = Decimal(str(current_app.config.get("LOW_STOCK_THRESHOLD_ML", 100)))
    threshold_units = int(current_app.config.get("LOW_STOCK_THRESHOLD_UNITS", 5))

    ingredients = (
        db.session.query(Ingredient)
        .filter(
            Ingredient.department_id == department_id,
            Ingredient.is_active.is_(True),
            Ingredient.stock_volume < threshold_ml,
        )
        .order_by(Ingredient.stock_volume.asc(), Ingredient.id.asc())
        .all()
    )

    products = (
        db.session.query(Product)
        .filter(Product.department_id == department_id, Product.is_active.is_(True))
        .order_by(Product.id.asc())
        .all()
    )
    low_products = [
        p for p in products
        if (p.tracking_mode == TRACKING_VOLUME and Decimal(str(p.stock_volume or 0)) < threshold_ml)
        or (p.tracking_mode != TRACKING_VOLUME and (p.stock or 0) < threshold_units)
    ]

    variants = (
        db.session.query(ProductVariant)
        .join(Product, ProductVariant.product_id == Product.id)
        .filter(
            Product.department_id == department_id,
            Product.is_active.is_(True),
            ProductVariant.stock < threshold_units,
        )
        .order_by(ProductVariant.id.asc())
        .all()
    )

    if ingredients or low_products or variants:
        logger.info(
            "Department %s low stock: %s ingredients, %s products, %s variants",
            department_id, len(ingredients), len(low_products), len(variants),
        )

    return {
        "department_id": department_id,
        "threshold_ml": float(threshold_ml),
        "threshold_units": threshold_units,
        "ingredients": [i.to_dict() for i in ingredients],
        "products": [p.to_dict() for p in low_products],
        "variants": [v.to_dict() for v in variants],
    }

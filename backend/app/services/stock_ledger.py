# Overview: The only code that writes stock fields: product count/volume, variant count, ingredient volume.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from ..extensions import db
from ..models import Ingredient, Product, ProductVariant, StockMovement
from ..line_items import MixtureLine, ProductLine, SaleLineItem, ServiceLine, VariantLine
from . import ingredient_resolver
from .concurrency import clamped_increment


logger = logging.getLogger(__name__)

"""
Ledger invariants:

- deduct: new = max(0, current - requested), evaluated by the database in
  one UPDATE. restore: new = current + requested.
- A variant's stock is its own; the parent product's fields are untouched.
- A product writes exactly one field, picked by its tracking mode.
- Mixture portions are resolved inside the sale's department. A portion
  that cannot be resolved is skipped with a warning; the other portions
  of the same mixture still move.
- Every mutation appends a StockMovement row in the same transaction.
- Void never re-derives: restore and shrinkage replay the line's SALE
  movements (entity, field, requested amount). Anything the sale did not
  deduct is reported, not credited.
- No deduplication: callers invoke deduct/restore once per line per direction.
"""

ENTITY_PRODUCT = "product"
ENTITY_VARIANT = "variant"
ENTITY_INGREDIENT = "ingredient"

MOVEMENT_SALE = "SALE"
MOVEMENT_VOID_RESTORE = "VOID_RESTORE"
MOVEMENT_VOID_SHRINKAGE = "VOID_SHRINKAGE"
MOVEMENT_WEIGH_IN = "WEIGH_IN"

_MODELS = {
    ENTITY_PRODUCT: Product,
    ENTITY_VARIANT: ProductVariant,
    ENTITY_INGREDIENT: Ingredient,
}


class StockNotFoundError(Exception):
    """Referenced product or variant row does not exist."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class StockChange:
    entity_type: str
    entity_id: int
    requested: Decimal
    applied_delta: Decimal
    stock_before: Decimal
    stock_after: Decimal
    stock_field: str = "stock"

    @property
    def clamped(self) -> bool:
        return self.applied_delta != self.requested


@dataclass
class LedgerOutcome:
    changes: list[StockChange] = field(default_factory=list)
    warnings: list[dict] = field(default_factory=list)


def _move(
    model,
    entity_type: str,
    entity_id: int,
    column: str,
    delta: int | Decimal,
    *,
    movement_type: str,
    sale_id: int | None,
    sale_item_id: int | None,
    note: str | None = None,
) -> StockChange | None:
    result = clamped_increment(model, entity_id, column, delta)
    if result is None:
        return None
    before, after = result
    change = StockChange(
        entity_type=entity_type,
        entity_id=entity_id,
        requested=Decimal(str(delta)),
        applied_delta=after - before,
        stock_before=before,
        stock_after=after,
        stock_field=column,
    )
    db.session.add(StockMovement(
        sale_id=sale_id,
        sale_item_id=sale_item_id,
        entity_type=entity_type,
        entity_id=entity_id,
        movement_type=movement_type,
        stock_field=column,
        requested=change.requested,
        applied_delta=change.applied_delta,
        stock_before=before,
        stock_after=after,
        note=note,
    ))

    if change.clamped:
        logger.warning(
            "%s %s id=%s clamped at zero: requested %s, applied %s",
            movement_type, entity_type, entity_id, change.requested, change.applied_delta,
        )
    else:
        logger.info(
            "%s %s id=%s: %s -> %s", movement_type, entity_type, entity_id, before, after,
        )
    return change


def _product_target(line: ProductLine) -> tuple[Product, str, int | Decimal]:
    product = db.session.get(Product, line.product_id)
    if product is None:
        raise StockNotFoundError(
            "Product not found",
            details={"product_id": line.product_id},
        )
    if product.is_volume_tracked:
        if line.volume is None:
            raise StockNotFoundError(
                "Volume-tracked product line has no volume",
                details={"product_id": product.id},
            )
        return product, "stock_volume", Decimal(str(line.volume))
    return product, "stock", line.quantity


def _move_product(line: ProductLine, sign: int, movement_type: str, sale_id, sale_item_id) -> StockChange:
    product, column, amount = _product_target(line)
    change = _move(
        Product, ENTITY_PRODUCT, product.id, column, sign * amount,
        movement_type=movement_type, sale_id=sale_id, sale_item_id=sale_item_id,
    )
    if change is None:
        raise StockNotFoundError("Product not found", details={"product_id": line.product_id})
    return change


def _move_variant(line: VariantLine, sign: int, movement_type: str, sale_id, sale_item_id) -> StockChange:
    change = _move(
        ProductVariant, ENTITY_VARIANT, line.variant_id, "stock", sign * line.quantity,
        movement_type=movement_type, sale_id=sale_id, sale_item_id=sale_item_id,
    )
    if change is None:
        raise StockNotFoundError("Variant not found", details={"variant_id": line.variant_id})
    return change


def _move_mixture(
    line: MixtureLine,
    department_id,
    sign: int,
    movement_type: str,
    sale_id,
    sale_item_id,
) -> LedgerOutcome:
    outcome = LedgerOutcome()
    for portion in line.portions:
        amount = Decimal(str(portion.volume)) * line.quantity
        if amount <= 0:
            continue

        ingredient = ingredient_resolver.resolve(department_id, portion.name, portion.ingredient_id)
        if ingredient is None:
            logger.warning(
                "Skipping %s for unresolved ingredient %r (id=%s) in department %s",
                movement_type, portion.name, portion.ingredient_id, department_id,
            )
            outcome.warnings.append({
                "code": "ingredient_unresolved",
                "message": f"Ingredient {portion.name!r} could not be resolved; stock not adjusted",
                "ingredient": portion.name,
                "ingredient_id": portion.ingredient_id,
            })
            continue

        change = _move(
            Ingredient, ENTITY_INGREDIENT, ingredient.id, "stock_volume", sign * amount,
            movement_type=movement_type, sale_id=sale_id, sale_item_id=sale_item_id,
            note=line.name,
        )
        if change is not None:
            outcome.changes.append(change)
    return outcome


def _apply(line: SaleLineItem, department_id, sign: int, movement_type: str, sale_id, sale_item_id) -> LedgerOutcome:
    if isinstance(line, ServiceLine):
        return LedgerOutcome()
    if isinstance(line, MixtureLine):
        return _move_mixture(line, department_id, sign, movement_type, sale_id, sale_item_id)
    if isinstance(line, VariantLine):
        return LedgerOutcome(changes=[_move_variant(line, sign, movement_type, sale_id, sale_item_id)])
    if isinstance(line, ProductLine):
        return LedgerOutcome(changes=[_move_product(line, sign, movement_type, sale_id, sale_item_id)])
    raise TypeError(f"Unsupported line item: {type(line).__name__}")


def deduct(
    line: SaleLineItem,
    department_id,
    *,
    sale_id: int | None = None,
    sale_item_id: int | None = None,
) -> LedgerOutcome:
    """
    Take one line's stock off the shelf, flooring every field at zero.

    Raises StockNotFoundError for a missing product/variant. Unresolvable
    mixture ingredients come back as warnings instead.
    Does not commit; the caller owns the transaction.
    """
    return _apply(line, department_id, -1, MOVEMENT_SALE, sale_id, sale_item_id)


def sale_deductions(sale_item_id: int) -> list[StockChange]:
    """What the SALE movements of one sale line actually took, in order."""
    rows = (
        db.session.query(StockMovement)
        .filter_by(sale_item_id=sale_item_id, movement_type=MOVEMENT_SALE)
        .order_by(StockMovement.id.asc())
        .all()
    )
    return [
        StockChange(
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            requested=Decimal(str(row.requested)),
            applied_delta=Decimal(str(row.applied_delta)),
            stock_before=Decimal(str(row.stock_before or 0)),
            stock_after=Decimal(str(row.stock_after or 0)),
            stock_field=row.stock_field,
        )
        for row in rows
    ]


def _never_deducted(line: SaleLineItem, deducted: list[StockChange]) -> list[dict]:
    """Warnings for the parts of a line that no SALE movement covers."""
    if isinstance(line, ServiceLine):
        return []

    if isinstance(line, MixtureLine):
        moved = {c.entity_id for c in deducted if c.entity_type == ENTITY_INGREDIENT}
        return [
            {
                "code": "ingredient_unresolved",
                "message": f"Ingredient {portion.name!r} was not deducted at sale time; stock not adjusted",
                "ingredient": portion.name,
                "ingredient_id": portion.ingredient_id,
            }
            for portion in line.portions
            if portion.ingredient_id is None or portion.ingredient_id not in moved
        ]

    if deducted:
        return []
    if isinstance(line, VariantLine):
        ref = {"variant_id": line.variant_id}
    else:
        ref = {"product_id": line.product_id}
    return [{
        "code": "stock_not_found",
        "message": "No stock was deducted for this line at sale time; nothing restored",
        **ref,
    }]


def restore(
    line: SaleLineItem,
    deducted: list[StockChange],
    *,
    sale_id: int | None = None,
    sale_item_id: int | None = None,
) -> LedgerOutcome:
    """
    Put back exactly what `deducted` requested, on the rows it names.

    Nothing is re-resolved: an ingredient that was skipped at sale time
    stays untouched even if a row with that name exists now.
    Does not commit.
    """
    outcome = LedgerOutcome(warnings=_never_deducted(line, deducted))
    for taken in deducted:
        amount = -taken.requested
        if taken.stock_field == "stock":
            amount = int(amount)
        change = _move(
            _MODELS[taken.entity_type], taken.entity_type, taken.entity_id, taken.stock_field, amount,
            movement_type=MOVEMENT_VOID_RESTORE, sale_id=sale_id, sale_item_id=sale_item_id,
            note=line.name,
        )
        if change is None:
            logger.warning(
                "Cannot restore %s id=%s: row no longer exists", taken.entity_type, taken.entity_id,
            )
            outcome.warnings.append({
                "code": "stock_not_found",
                "message": f"{taken.entity_type} {taken.entity_id} no longer exists; stock not restored",
                "entity_type": taken.entity_type,
                "entity_id": taken.entity_id,
            })
            continue
        outcome.changes.append(change)
    return outcome


def record_shrinkage(
    line: MixtureLine,
    deducted: list[StockChange],
    *,
    sale_id: int | None = None,
    sale_item_id: int | None = None,
    note: str | None = None,
) -> LedgerOutcome:
    """
    Log a voided mixture that stays poured: one zero-delta movement per
    deducted portion, stock untouched.
    """
    outcome = LedgerOutcome(warnings=_never_deducted(line, deducted))
    for taken in deducted:
        ingredient = db.session.get(Ingredient, taken.entity_id)
        if ingredient is None:
            outcome.warnings.append({
                "code": "stock_not_found",
                "message": f"ingredient {taken.entity_id} no longer exists; shrinkage not logged",
                "entity_type": ENTITY_INGREDIENT,
                "entity_id": taken.entity_id,
            })
            continue

        amount = -taken.requested
        current = Decimal(str(ingredient.stock_volume or 0))
        db.session.add(StockMovement(
            sale_id=sale_id,
            sale_item_id=sale_item_id,
            entity_type=ENTITY_INGREDIENT,
            entity_id=ingredient.id,
            movement_type=MOVEMENT_VOID_SHRINKAGE,
            stock_field="stock_volume",
            requested=amount,
            applied_delta=Decimal("0"),
            stock_before=current,
            stock_after=current,
            note=note or line.name,
        ))
        outcome.changes.append(StockChange(
            entity_type=ENTITY_INGREDIENT,
            entity_id=ingredient.id,
            requested=amount,
            applied_delta=Decimal("0"),
            stock_before=current,
            stock_after=current,
            stock_field="stock_volume",
        ))

    logger.warning(
        "Voided mixture %r (sale_item_id=%s) not restored; %s ml per bottle logged as shrinkage",
        line.name, sale_item_id, line.container_volume,
    )
    return outcome

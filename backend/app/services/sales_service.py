"""
Sales Service - commit and void for heterogeneous carts

WHY: The sale header is the financial record; once it is persisted as
completed it is final, whatever stock bookkeeping does afterwards. Stock
moves through the ledger (clamp-at-zero), and per-line stock problems
come back as warnings on a successful result instead of failing checkout.

Commit modes (SALE_COMMIT_ATOMIC):
- True: receipt number, header, lines and every stock mutation share one
  DB transaction. A storage failure anywhere writes nothing.
- False: the financial record commits first; each line's stock mutation
  then commits on its own. A storage failure on a line rolls back that
  line only and becomes a warning.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Department, Product, ProductVariant, Sale, SaleItem
from ..models.sales import SALE_STATUS_COMPLETED, SALE_STATUS_VOIDED, PAYMENT_METHODS
from ..line_items import (
    TIER_WHOLESALE,
    IngredientPortion,
    LineRequest,
    MixtureLine,
    MixtureRequest,
    ProductLine,
    SaleLineItem,
    ServiceLine,
    VariantLine,
    line_from_sale_item,
    parse_line_item,
)
from ..validation import ValidationError, coerce_int, enforce_price_cents
from app.time_utils import utcnow
from . import ingredient_resolver, pricing_service, stock_ledger
from .concurrency import lock_for_update, run_with_retry
from .document_service import invoice_number_for, next_receipt_number


logger = logging.getLogger(__name__)


class SaleError(Exception):
    """Raised for sale operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class SaleNotFoundError(SaleError):
    pass


class AlreadyVoidedError(SaleError):
    pass


class StorageError(SaleError):
    """Persisting the financial record failed; nothing about the sale is final."""
    pass


@dataclass
class SaleResult:
    sale: Sale
    warnings: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "sale": self.sale.to_dict(),
            "items": [item.to_dict() for item in self.sale.items],
            "warnings": list(self.warnings),
        }


# =============================================================================
# INPUT
# =============================================================================

def _optional_str(header: dict, key: str, max_len: int = 255) -> str | None:
    raw = header.get(key)
    if raw is None:
        return None
    value = str(raw).strip()
    if len(value) > max_len:
        raise ValidationError(f"{key} exceeds max length {max_len}")
    return value or None


def _parse_header(header: dict) -> dict:
    if not isinstance(header, dict):
        raise ValidationError("sale must be an object")

    if header.get("department_id") is None:
        raise ValidationError("department_id is required")
    department_id = coerce_int(header.get("department_id"), "department_id")
    if department_id <= 0:
        raise ValidationError("department_id must be a positive integer")

    payment_method = str(header.get("payment_method") or "cash").strip().lower()
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of {', '.join(PAYMENT_METHODS)}",
            details={"payment_method": payment_method},
        )

    discount = coerce_int(header.get("discount_cents", 0) or 0, "discount_cents")
    if discount < 0:
        raise ValidationError("discount_cents must be >= 0")

    amount_paid = header.get("amount_paid_cents")
    if amount_paid is not None:
        amount_paid = coerce_int(amount_paid, "amount_paid_cents")
        enforce_price_cents(amount_paid, "amount_paid_cents")

    return {
        "department_id": department_id,
        "payment_method": payment_method,
        "discount_cents": discount,
        "amount_paid_cents": amount_paid,
        "cashier_id": _optional_str(header, "cashier_id", 64),
        "cashier_name": _optional_str(header, "cashier_name"),
        "customer_id": _optional_str(header, "customer_id", 64),
        "notes": _optional_str(header, "notes", 2000),
    }


def _parse_items(items, max_ingredients: int) -> list[LineRequest]:
    if not isinstance(items, list) or not items:
        raise ValidationError("A sale needs at least one item")

    requests = []
    for i, payload in enumerate(items):
        try:
            requests.append(parse_line_item(payload, max_ingredients=max_ingredients))
        except ValidationError as exc:
            raise ValidationError(f"items[{i}]: {exc}", details={"index": i, **exc.details}) from exc
    return requests


def _catalogue_price(given: int | None, *fallbacks: int | None, label: str) -> int:
    for price in (given, *fallbacks):
        if price is not None:
            enforce_price_cents(price, "unit_price_cents")
            return price
    raise ValidationError(f"{label} has no price; unit_price_cents is required")


def _prepare_product(req: ProductLine) -> ProductLine:
    product = db.session.get(Product, req.product_id)
    if product is None:
        # Financial side can still go through when the till sent a price;
        # the ledger reports the missing row as a warning.
        unit_price = _catalogue_price(req.unit_price_cents, label=f"Product {req.product_id} (not found)")
        return ProductLine(
            name=req.name or f"Product #{req.product_id}",
            quantity=req.quantity,
            unit_price_cents=unit_price,
            product_id=req.product_id,
            volume=req.volume,
        )

    if product.is_volume_tracked and req.volume is None:
        raise ValidationError(
            f"{product.name} is sold by volume; volume is required",
            details={"product_id": product.id},
        )

    return ProductLine(
        name=req.name or product.name,
        quantity=req.quantity,
        unit_price_cents=_catalogue_price(req.unit_price_cents, product.price_cents, label=product.name),
        product_id=product.id,
        volume=req.volume if product.is_volume_tracked else None,
    )


def _prepare_variant(req: VariantLine) -> VariantLine:
    variant = db.session.get(ProductVariant, req.variant_id)
    if variant is None:
        unit_price = _catalogue_price(req.unit_price_cents, label=f"Variant {req.variant_id} (not found)")
        return VariantLine(
            name=req.name or f"Variant #{req.variant_id}",
            quantity=req.quantity,
            unit_price_cents=unit_price,
            variant_id=req.variant_id,
            product_id=req.product_id,
        )

    parent = variant.product
    parent_price = parent.price_cents if parent is not None else None
    display = f"{parent.name} ({variant.name})" if parent is not None else variant.name
    return VariantLine(
        name=req.name or display,
        quantity=req.quantity,
        unit_price_cents=_catalogue_price(
            req.unit_price_cents, variant.price_cents, parent_price, label=display,
        ),
        variant_id=variant.id,
        product_id=variant.product_id,
    )


def _prepare_mixture(req: MixtureRequest, department_id: int, config) -> MixtureLine:
    """
    Price the blend and pin each ingredient to a row in this department.

    Resolution here is read-only; the ids it finds are recorded in
    mixture_json. Void works from the SALE movements, not from these ids.
    """
    quote = pricing_service.price(req.container_volume, req.ingredient_names, req.customer_tier, config)

    portions = []
    for name, ingredient_id in req.ingredients:
        ingredient = ingredient_resolver.resolve(department_id, name, ingredient_id)
        portions.append(IngredientPortion(
            name=name,
            volume=quote.per_ingredient_volume,
            ingredient_id=ingredient.id if ingredient is not None else None,
        ))

    volume_label = f"{req.container_volume.normalize():f}"
    return MixtureLine(
        name=req.name or f"Blend {volume_label}ml: {', '.join(req.ingredient_names)}"[:255],
        quantity=req.quantity,
        unit_price_cents=quote.unit_price_cents,
        container_volume=req.container_volume,
        customer_tier=req.customer_tier,
        container_cost_cents=quote.container_cost_cents,
        portions=tuple(portions),
        product_id=req.product_id,
    )


def _prepare_lines(requests: list[LineRequest], department_id: int) -> list[SaleLineItem]:
    config = None
    lines: list[SaleLineItem] = []
    for req in requests:
        if isinstance(req, MixtureRequest):
            if config is None:
                config = pricing_service.get_pricing_config(department_id)
            lines.append(_prepare_mixture(req, department_id, config))
        elif isinstance(req, VariantLine):
            lines.append(_prepare_variant(req))
        elif isinstance(req, ProductLine):
            lines.append(_prepare_product(req))
        else:
            enforce_price_cents(req.unit_price_cents, "unit_price_cents")
            lines.append(req)
    return lines


# =============================================================================
# PERSISTENCE
# =============================================================================

def _sale_item_for(line: SaleLineItem, sale_id: int) -> SaleItem:
    item = SaleItem(
        sale_id=sale_id,
        name=line.name,
        kind=line.kind,
        quantity=line.quantity,
        unit_price_cents=line.unit_price_cents,
        subtotal_cents=line.subtotal_cents,
    )
    if isinstance(line, ProductLine):
        item.product_id = line.product_id
        item.volume = line.volume
    elif isinstance(line, VariantLine):
        item.variant_id = line.variant_id
        item.product_id = line.product_id
    elif isinstance(line, MixtureLine):
        item.product_id = line.product_id
        item.volume = line.container_volume
        item.customer_tier = line.customer_tier
        item.container_cost_cents = line.container_cost_cents
        item.mixture_json = [portion.to_json() for portion in line.portions]
    return item


def _write_financial_record(header: dict, lines: list[SaleLineItem], totals: dict) -> tuple[Sale, list[SaleItem]]:
    """Receipt number, header and line rows. Flushes; never commits."""
    receipt_number = next_receipt_number()
    is_invoice = any(
        isinstance(line, MixtureLine) and line.customer_tier == TIER_WHOLESALE
        for line in lines
    )

    now = utcnow()
    sale = Sale(
        department_id=header["department_id"],
        receipt_number=receipt_number,
        invoice_number=invoice_number_for(receipt_number) if is_invoice else None,
        is_invoice=is_invoice,
        status=SALE_STATUS_COMPLETED,
        payment_method=header["payment_method"],
        cashier_id=header["cashier_id"],
        cashier_name=header["cashier_name"],
        customer_id=header["customer_id"],
        notes=header["notes"],
        created_at=now,
        completed_at=now,
        **totals,
    )
    db.session.add(sale)
    db.session.flush()

    items = [_sale_item_for(line, sale.id) for line in lines]
    db.session.add_all(items)
    db.session.flush()
    return sale, items


def _line_warning(index: int, item: SaleItem, code: str, message: str, **extra) -> dict:
    return {"sale_item_id": item.id, "line": index, "code": code, "message": message, **extra}


def _deduct_line(index: int, line: SaleLineItem, item: SaleItem, sale: Sale) -> list[dict]:
    try:
        outcome = stock_ledger.deduct(line, sale.department_id, sale_id=sale.id, sale_item_id=item.id)
    except stock_ledger.StockNotFoundError as exc:
        logger.warning("Sale %s line %s: %s %s", sale.receipt_number, index, exc, exc.details)
        return [_line_warning(index, item, "stock_not_found", str(exc), **exc.details)]

    warnings = [_line_warning(index, item, w.pop("code"), w.pop("message"), **w) for w in outcome.warnings]
    for change in outcome.changes:
        if change.clamped:
            warnings.append(_line_warning(
                index, item, "stock_clamped",
                f"{change.entity_type} {change.entity_id} had {change.stock_before}; stock floored at zero",
                entity_type=change.entity_type,
                entity_id=change.entity_id,
            ))
    return warnings


def _totals(lines: list[SaleLineItem], header: dict) -> dict:
    subtotal = sum(line.subtotal_cents for line in lines)
    discount = header["discount_cents"]
    if discount > subtotal:
        raise ValidationError(
            "discount_cents cannot exceed the subtotal",
            details={"subtotal_cents": subtotal, "discount_cents": discount},
        )
    total = subtotal - discount

    amount_paid = header["amount_paid_cents"]
    if amount_paid is None:
        amount_paid = total
    elif amount_paid < total and header["payment_method"] != "credit":
        raise ValidationError(
            "amount_paid_cents is less than the sale total",
            details={"total_cents": total, "amount_paid_cents": amount_paid},
        )

    return {
        "subtotal_cents": subtotal,
        "discount_cents": discount,
        "total_cents": total,
        "amount_paid_cents": amount_paid,
        "change_cents": max(0, amount_paid - total),
    }


# =============================================================================
# COMMIT
# =============================================================================

def commit_sale(header: dict, items: list[dict]) -> SaleResult:
    """
    Record a completed sale and take its stock off the shelf.

    Raises ValidationError before anything is written, StorageError when
    the financial record cannot be persisted. Everything else that can go
    wrong with stock comes back in SaleResult.warnings.
    """
    cfg = current_app.config
    parsed = _parse_header(header)
    requests = _parse_items(items, cfg.get("MAX_MIXTURE_INGREDIENTS", 10))

    if db.session.get(Department, parsed["department_id"]) is None:
        raise ValidationError("Department not found", details={"department_id": parsed["department_id"]})

    lines = _prepare_lines(requests, parsed["department_id"])
    totals = _totals(lines, parsed)

    try:
        if cfg.get("SALE_COMMIT_ATOMIC", True):
            result = _commit_atomic(parsed, lines, totals)
        else:
            result = _commit_per_line(parsed, lines, totals)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Sale could not be persisted")
        raise StorageError("Sale could not be persisted", details={"error": str(exc)}) from exc

    logger.info(
        "Sale %s committed: %s lines, total %s cents, %s warnings",
        result.sale.receipt_number, len(lines), result.sale.total_cents, len(result.warnings),
    )
    return result


def _commit_atomic(header: dict, lines: list[SaleLineItem], totals: dict) -> SaleResult:
    def _op():
        sale, items = _write_financial_record(header, lines, totals)
        warnings = []
        for i, (line, item) in enumerate(zip(lines, items)):
            warnings.extend(_deduct_line(i, line, item, sale))
        db.session.commit()
        return SaleResult(sale=sale, warnings=warnings)

    return run_with_retry(_op)


def _commit_per_line(header: dict, lines: list[SaleLineItem], totals: dict) -> SaleResult:
    def _record():
        sale, items = _write_financial_record(header, lines, totals)
        db.session.commit()
        return sale, items

    sale, items = run_with_retry(_record)

    # Financial record is final from here on; stock is best-effort per line.
    warnings = []
    for i, (line, item) in enumerate(zip(lines, items)):
        try:
            warnings.extend(_deduct_line(i, line, item, sale))
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Stock deduction failed for sale %s line %s", sale.receipt_number, i)
            warnings.append(_line_warning(i, item, "storage_error", str(exc)))

    return SaleResult(sale=sale, warnings=warnings)


# =============================================================================
# VOID
# =============================================================================

def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise SaleNotFoundError("Sale not found", details={"sale_id": sale_id})
    return sale


def void_sale(
    sale_id: int,
    reason: str,
    actor_id=None,
    restore_mixtures: bool | None = None,
) -> SaleResult:
    """
    Void a sale: flag it, keep its totals, put stock back.

    Product and variant lines are always restored. Mixture lines are
    restored only when restore_mixtures is true (default from
    VOID_RESTORES_MIXTURES); otherwise each portion is logged as shrinkage
    and ingredient stock stays as it is. Either way only what the sale
    actually deducted is touched.
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A void reason is required")
    if len(reason) > 255:
        raise ValidationError("reason exceeds max length 255")

    if restore_mixtures is None:
        restore_mixtures = bool(current_app.config.get("VOID_RESTORES_MIXTURES", False))

    def _op():
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise SaleNotFoundError("Sale not found", details={"sale_id": sale_id})

        if sale.status == SALE_STATUS_VOIDED:
            raise AlreadyVoidedError(
                "Sale already voided",
                details={"sale_id": sale.id, "voided_at": sale.voided_at.isoformat() if sale.voided_at else None},
            )

        items = db.session.query(SaleItem).filter_by(sale_id=sale.id).order_by(SaleItem.id.asc()).all()

        warnings = []
        for i, item in enumerate(items):
            warnings.extend(_restore_line(i, item, sale, restore_mixtures))

        sale.status = SALE_STATUS_VOIDED
        sale.voided_by = str(actor_id) if actor_id is not None else None
        sale.voided_at = utcnow()
        sale.void_reason = reason

        db.session.commit()
        return SaleResult(sale=sale, warnings=warnings)

    try:
        result = run_with_retry(_op)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Void of sale %s could not be persisted", sale_id)
        raise StorageError("Void could not be persisted", details={"error": str(exc)}) from exc

    logger.info(
        "Sale %s voided by %s (%s warnings)", result.sale.receipt_number, actor_id, len(result.warnings),
    )
    return result


def _restore_line(index: int, item: SaleItem, sale: Sale, restore_mixtures: bool) -> list[dict]:
    line = line_from_sale_item(item)

    if isinstance(line, ServiceLine):
        return []

    # Replays what this line's SALE movements took; nothing is re-resolved
    deducted = stock_ledger.sale_deductions(item.id)
    if isinstance(line, MixtureLine) and not restore_mixtures:
        outcome = stock_ledger.record_shrinkage(
            line, deducted, sale_id=sale.id, sale_item_id=item.id,
            note=f"Void {sale.receipt_number}: not restored",
        )
    else:
        outcome = stock_ledger.restore(line, deducted, sale_id=sale.id, sale_item_id=item.id)

    for warning in outcome.warnings:
        logger.warning("Void %s line %s: %s", sale.receipt_number, index, warning["message"])
    return [_line_warning(index, item, w.pop("code"), w.pop("message"), **w) for w in outcome.warnings]

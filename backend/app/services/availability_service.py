# Overview: Read-only, advisory stock check run by the till before a sale is submitted.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ..extensions import db
from ..models import Product, ProductVariant
from ..line_items import (
    LineRequest,
    MixtureLine,
    MixtureRequest,
    ProductLine,
    ServiceLine,
    VariantLine,
)


"""
Availability is advisory:
- Nothing here writes. Results may be stale by the time the sale commits.
- Mixtures are always reported available: per-ingredient sufficiency is
  settled by the ledger at deduction time.
- The commit path never raises InsufficientStockError; deduction clamps at zero.
"""


class InsufficientStockError(Exception):
    """Raised by strict availability checks only (never by commit)."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    current: Decimal | None = None
    requested: Decimal | None = None
    message: str | None = None

    def to_dict(self) -> dict:
        return {
            "available": self.available,
            "current": float(self.current) if self.current is not None else None,
            "requested": float(self.requested) if self.requested is not None else None,
            "message": self.message,
        }


def _compare(current, requested, label: str) -> AvailabilityResult:
    current = Decimal(str(current or 0))
    requested = Decimal(str(requested))
    if current >= requested:
        return AvailabilityResult(available=True, current=current, requested=requested)
    return AvailabilityResult(
        available=False,
        current=current,
        requested=requested,
        message=f"Insufficient stock for {label}: {current} available, {requested} requested",
    )


def _check_product(line: ProductLine) -> AvailabilityResult:
    product = db.session.get(Product, line.product_id)
    if product is None:
        return AvailabilityResult(available=False, message=f"Product {line.product_id} not found")

    label = product.name or line.name
    if product.is_volume_tracked:
        if line.volume is None:
            return AvailabilityResult(
                available=False,
                current=Decimal(str(product.stock_volume or 0)),
                message=f"{label} is sold by volume; a volume is required",
            )
        return _compare(product.stock_volume, line.volume, label)
    return _compare(product.stock, line.quantity, label)


def _check_variant(line: VariantLine) -> AvailabilityResult:
    variant = db.session.get(ProductVariant, line.variant_id)
    if variant is None:
        return AvailabilityResult(available=False, message=f"Variant {line.variant_id} not found")
    return _compare(variant.stock, line.quantity, variant.name or line.name)


def check(line: LineRequest) -> AvailabilityResult:
    if isinstance(line, ProductLine):
        return _check_product(line)
    if isinstance(line, VariantLine):
        return _check_variant(line)
    if isinstance(line, (MixtureRequest, MixtureLine, ServiceLine)):
        return AvailabilityResult(available=True)
    raise TypeError(f"Unsupported line item: {type(line).__name__}")


def check_cart(lines: list[LineRequest]) -> list[AvailabilityResult]:
    return [check(line) for line in lines]


def ensure_available(lines: list[LineRequest]) -> list[AvailabilityResult]:
    """Strict variant of check_cart for callers that want a hard stop."""
    results = check_cart(lines)
    unavailable = [
        {"index": i, **result.to_dict()}
        for i, result in enumerate(results)
        if not result.available
    ]
    if unavailable:
        raise InsufficientStockError(
            "Insufficient stock for one or more items",
            details={"items": unavailable},
        )
    return results

from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


TRACKING_QUANTITY = "quantity"
TRACKING_VOLUME = "volume"
TRACKING_MODES = (TRACKING_QUANTITY, TRACKING_VOLUME)


def _volume_out(value):
    return float(value) if value is not None else None


class Product(db.Model):
    """
    Sellable item.

    TRACKING MODE:
    - quantity: discrete on-hand count in `stock`
    - volume: continuous on-hand millilitres in `stock_volume`

    The mode is chosen at creation and never changes; the stock engine only
    ever writes the field the mode selects.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("department_id", "sku", name="uq_products_department_sku"),
        db.Index("ix_products_department_name", "department_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=True)

    tracking_mode = db.Column(db.String(16), nullable=False, default=TRACKING_QUANTITY)
    stock = db.Column(db.Integer, nullable=False, default=0)
    stock_volume = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    department = db.relationship("Department", backref=db.backref("products", lazy=True))

    @property
    def is_volume_tracked(self) -> bool:
        return self.tracking_mode == TRACKING_VOLUME

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} mode={self.tracking_mode}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "department_id": self.department_id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "tracking_mode": self.tracking_mode,
            "stock": self.stock,
            "stock_volume": _volume_out(self.stock_volume),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductVariant(db.Model):
    """Discrete sub-SKU (size/colour) with its own count, independent of the parent."""
    __tablename__ = "product_variants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    price_cents = db.Column(db.Integer, nullable=True)
    stock = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("variants", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "sku": self.sku,
            "price_cents": self.price_cents,
            "stock": self.stock,
            "created_at": to_utc_z(self.created_at),
        }


class Ingredient(db.Model):
    """
    Blend ingredient (e.g. a scent oil) held in bulk, measured in millilitres.

    DEPARTMENT SCOPING:
    Names are NOT unique: the same scent may be stocked by two departments,
    and case-variant duplicates can exist inside one department from legacy
    imports. Resolution therefore always filters by department_id first.

    WEIGH-IN:
    Bulk bottles are weighed; stock_volume = (current - empty) / density.
    """
    __tablename__ = "ingredients"
    __table_args__ = (
        db.Index("ix_ingredients_department_name", "department_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    stock_volume = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    empty_container_weight_g = db.Column(db.Numeric(10, 2), nullable=True)
    current_weight_g = db.Column(db.Numeric(10, 2), nullable=True)
    density = db.Column(db.Numeric(6, 3), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    department = db.relationship("Department", backref=db.backref("ingredients", lazy=True))

    def __repr__(self) -> str:
        return f"<Ingredient id={self.id} name={self.name!r} department_id={self.department_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "department_id": self.department_id,
            "name": self.name,
            "description": self.description,
            "stock_volume": _volume_out(self.stock_volume),
            "is_active": self.is_active,
            "empty_container_weight_g": _volume_out(self.empty_container_weight_g),
            "current_weight_g": _volume_out(self.current_weight_g),
            "density": _volume_out(self.density),
            "created_at": to_utc_z(self.created_at),
        }


class StockMovement(db.Model):
    """
    Append-only audit of every stock field mutation.

    requested is what the caller asked for; applied_delta is what the stock
    field actually moved by (differs when deduction clamps at zero, and is 0
    for VOID_SHRINKAGE rows where a poured mixture was not restored).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=True, index=True)

    entity_type = db.Column(db.String(16), nullable=False)  # product, variant, ingredient
    entity_id = db.Column(db.Integer, nullable=False)
    movement_type = db.Column(db.String(32), nullable=False, index=True)
    # Column that moved: stock (count) or stock_volume (ml)
    stock_field = db.Column(db.String(16), nullable=False, default="stock")

    requested = db.Column(db.Numeric(12, 2), nullable=False)
    applied_delta = db.Column(db.Numeric(12, 2), nullable=False)
    stock_before = db.Column(db.Numeric(12, 2), nullable=True)
    stock_after = db.Column(db.Numeric(12, 2), nullable=True)

    note = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "sale_item_id": self.sale_item_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "movement_type": self.movement_type,
            "stock_field": self.stock_field,
            "requested": _volume_out(self.requested),
            "applied_delta": _volume_out(self.applied_delta),
            "stock_before": _volume_out(self.stock_before),
            "stock_after": _volume_out(self.stock_after),
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }

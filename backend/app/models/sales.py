from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_PENDING = "pending"
SALE_STATUS_VOIDED = "voided"

PAYMENT_METHODS = ("cash", "card", "mobile_money", "credit")


class Sale(db.Model):
    """
    Sale header: the financial record.

    WHY: Once a sale is committed it is final for reporting, whatever
    happened to stock bookkeeping afterwards. Voiding flips status and
    records who/why/when; it never deletes the row or touches the totals.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_department_status_created", "department_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False, index=True)

    # Human-readable sequence numbers (e.g., "RCP-000123", "INV-000007")
    receipt_number = db.Column(db.String(64), nullable=False, unique=True)
    invoice_number = db.Column(db.String(64), nullable=True, unique=True)
    is_invoice = db.Column(db.Boolean, nullable=False, default=False)

    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_COMPLETED, index=True)

    # All amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    change_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_method = db.Column(db.String(32), nullable=False)

    cashier_id = db.Column(db.String(64), nullable=True)
    cashier_name = db.Column(db.String(255), nullable=True)
    customer_id = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Void audit trail
    voided_by = db.Column(db.String(64), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    department = db.relationship("Department", backref=db.backref("sales", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "department_id": self.department_id,
            "receipt_number": self.receipt_number,
            "invoice_number": self.invoice_number,
            "is_invoice": self.is_invoice,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "change_cents": self.change_cents,
            "payment_method": self.payment_method,
            "cashier_id": self.cashier_id,
            "cashier_name": self.cashier_name,
            "customer_id": self.customer_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "voided_by": self.voided_by,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "void_reason": self.void_reason,
            "version_id": self.version_id,
        }


class SaleItem(db.Model):
    """
    One line of a sale.

    `kind` says which stock representation the line moves:
    - product: products.stock, or products.stock_volume when volume-tracked
    - variant: product_variants.stock
    - mixture: ingredients.stock_volume, per portion in mixture_json
    - service: nothing

    mixture_json holds the portions exactly as deducted:
        [{"name": "Oud", "ingredient_id": 4, "volume": "15.0"}, ...]
    so a void reverses recorded amounts instead of re-deriving them.
    """
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    kind = db.Column(db.String(16), nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    volume = db.Column(db.Numeric(12, 2), nullable=True)

    unit_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    # Non-owning references (no FK): catalogue rows may be deleted later and
    # the till may sell a line whose row is already gone. `name` is the snapshot.
    product_id = db.Column(db.Integer, nullable=True, index=True)
    variant_id = db.Column(db.Integer, nullable=True, index=True)

    customer_tier = db.Column(db.String(16), nullable=True)
    container_cost_cents = db.Column(db.Integer, nullable=True)
    mixture_json = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("items", lazy=True, order_by="SaleItem.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "name": self.name,
            "kind": self.kind,
            "quantity": self.quantity,
            "volume": float(self.volume) if self.volume is not None else None,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "customer_tier": self.customer_tier,
            "container_cost_cents": self.container_cost_cents,
            "mixture": list(self.mixture_json) if self.mixture_json is not None else None,
            "created_at": to_utc_z(self.created_at),
        }

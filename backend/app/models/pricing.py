from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


class PricingConfig(db.Model):
    """
    Department-scoped mixture pricing.

    container_cost_tiers: [{"min": 0, "max": 10, "cost_cents": 30000}, ...]
        Inclusive on both ends; the first matching tier wins. Tiers are
        expected to be exhaustive and non-overlapping (admin's job).
    retail_size_prices: [{"volume": 10, "price_cents": 800000}, ...]
        Fixed retail prices for standard container sizes. Wholesale never
        uses this table.

    Written by administrators; read-only to the sale engine.
    """
    __tablename__ = "pricing_configs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False, unique=True)

    retail_rate_cents_per_ml = db.Column(db.Integer, nullable=False)
    wholesale_rate_cents_per_ml = db.Column(db.Integer, nullable=False)

    container_cost_tiers = db.Column(db.JSON, nullable=False, default=list)
    retail_size_prices = db.Column(db.JSON, nullable=False, default=list)
    default_container_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    department = db.relationship("Department", backref=db.backref("pricing_config", uselist=False))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "department_id": self.department_id,
            "retail_rate_cents_per_ml": self.retail_rate_cents_per_ml,
            "wholesale_rate_cents_per_ml": self.wholesale_rate_cents_per_ml,
            "container_cost_tiers": list(self.container_cost_tiers or []),
            "retail_size_prices": list(self.retail_size_prices or []),
            "default_container_cost_cents": self.default_container_cost_cents,
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }

# Overview: Flask API routes for department mixture pricing tables and checkout price quotes.

# backend/app/routes/pricing.py

from flask import Blueprint, request, jsonify, current_app

from ..line_items import CUSTOMER_TIERS, TIER_RETAIL
from ..services import pricing_service
from ..services.pricing_service import PricingError
from ..validation import ValidationError, coerce_int, coerce_volume


pricing_bp = Blueprint("pricing", __name__, url_prefix="/api/pricing")


def _config_dict(config) -> dict:
    data = config.to_dict()
    data["is_default"] = config.id is None
    return data


@pricing_bp.get("/config/<int:department_id>")
def get_config_route(department_id: int):
    try:
        config = pricing_service.get_pricing_config(department_id)
        return jsonify({"config": _config_dict(config)}), 200

    except Exception:
        current_app.logger.exception("Failed to get pricing config")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.put("/config/<int:department_id>")
def put_config_route(department_id: int):
    """Create or patch a department's pricing table. Unset fields keep their current/default value."""
    try:
        data = request.get_json(silent=True) or {}
        config = pricing_service.upsert_pricing_config(department_id, data)
        return jsonify({"config": _config_dict(config)}), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except PricingError as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    except Exception:
        current_app.logger.exception("Failed to save pricing config")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.post("/quote")
def quote_route():
    """
    Checkout preview for a mixture.

    Body: {department_id, container_volume, customer_tier, ingredients: [names]}
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("department_id") is None:
            return jsonify({"error": "department_id required"}), 400
        department_id = coerce_int(data["department_id"], "department_id")

        if data.get("container_volume") is None:
            return jsonify({"error": "container_volume required"}), 400
        container_volume = coerce_volume(data["container_volume"], "container_volume")

        tier = str(data.get("customer_tier") or TIER_RETAIL).strip().lower()
        if tier not in CUSTOMER_TIERS:
            return jsonify({"error": f"customer_tier must be one of {', '.join(CUSTOMER_TIERS)}"}), 400

        raw = data.get("ingredients") or []
        if not isinstance(raw, list):
            return jsonify({"error": "ingredients must be a list"}), 400
        names = [
            str(entry.get("name") if isinstance(entry, dict) else entry or "").strip()
            for entry in raw
        ]
        if any(not name for name in names):
            return jsonify({"error": "ingredient names cannot be blank"}), 400

        quote = pricing_service.quote_mixture(
            department_id,
            container_volume,
            names,
            tier,
            max_ingredients=current_app.config.get("MAX_MIXTURE_INGREDIENTS", 10),
        )
        return jsonify({"quote": quote.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to quote mixture")
        return jsonify({"error": "Internal server error"}), 500

# Overview: Flask API routes for stock: advisory availability, ingredient weigh-ins, low-stock alerts.

# backend/app/routes/inventory.py

from flask import Blueprint, request, jsonify, current_app

from ..line_items import parse_line_item
from ..services import availability_service, inventory_service
from ..services.availability_service import InsufficientStockError
from ..services.inventory_service import InventoryError
from ..validation import ValidationError, coerce_int


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _is_truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes"}


@inventory_bp.post("/availability")
def availability_route():
    """
    Pre-flight stock check for a cart. Read-only.

    Body: {"items": [...]} in the sale line format.
    ?strict=1 turns any unavailable line into a 409.
    """
    try:
        data = request.get_json(silent=True) or {}
        items = data.get("items")
        if not isinstance(items, list) or not items:
            return jsonify({"error": "items must be a non-empty list"}), 400

        max_ingredients = current_app.config.get("MAX_MIXTURE_INGREDIENTS", 10)
        lines = []
        for i, payload in enumerate(items):
            try:
                lines.append(parse_line_item(payload, max_ingredients=max_ingredients))
            except ValidationError as e:
                return jsonify({"error": f"items[{i}]: {e}", "details": e.details}), 400

        if _is_truthy(request.args.get("strict")):
            results = availability_service.ensure_available(lines)
        else:
            results = availability_service.check_cart(lines)

        return jsonify({
            "available": all(r.available for r in results),
            "items": [r.to_dict() for r in results],
        }), 200

    except InsufficientStockError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except Exception:
        current_app.logger.exception("Failed to check availability")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/ingredients/<int:ingredient_id>/weigh-in")
def weigh_in_route(ingredient_id: int):
    try:
        data = request.get_json(silent=True) or {}
        for field in ("empty_container_weight_g", "current_weight_g"):
            if data.get(field) is None:
                return jsonify({"error": f"{field} required"}), 400

        ingredient = inventory_service.record_weigh_in(
            ingredient_id,
            data["empty_container_weight_g"],
            data["current_weight_g"],
            density=data.get("density"),
        )
        return jsonify({"ingredient": ingredient.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except InventoryError as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    except Exception:
        current_app.logger.exception("Failed to record weigh-in")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/low-stock")
def low_stock_route():
    try:
        raw = request.args.get("department_id")
        if not raw:
            return jsonify({"error": "department_id required"}), 400
        department_id = coerce_int(raw, "department_id")

        return jsonify(inventory_service.low_stock_alerts(department_id)), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to compute low-stock alerts")
        return jsonify({"error": "Internal server error"}), 500

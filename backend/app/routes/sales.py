# Overview: Flask API routes for sale commit and void; parses input and returns JSON responses.

# backend/app/routes/sales.py

from flask import Blueprint, request, jsonify, current_app

from ..services import sales_service
from ..services.sales_service import (
    AlreadyVoidedError,
    SaleNotFoundError,
    StorageError,
)
from ..validation import ValidationError


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
def commit_sale_route():
    """
    Commit a completed sale.

    Body: {"sale": {department_id, payment_method, discount_cents,
    amount_paid_cents, cashier_id, ...}, "items": [...]}

    201 with {sale, items, warnings}. Stock problems on individual lines
    are warnings, not errors: the sale is recorded either way.
    """
    try:
        data = request.get_json(silent=True) or {}
        header = data.get("sale")
        if header is None:
            # Flat body: header fields at the top level next to "items"
            header = {k: v for k, v in data.items() if k != "items"}

        result = sales_service.commit_sale(header, data.get("items"))
        return jsonify(result.to_dict()), 201

    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except StorageError as e:
        return jsonify({"error": str(e)}), 500
    except Exception:
        current_app.logger.exception("Failed to commit sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({
            "sale": sale.to_dict(),
            "items": [item.to_dict() for item in sale.items],
        }), 200

    except SaleNotFoundError as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    except Exception:
        current_app.logger.exception("Failed to get sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/void")
def void_sale_route(sale_id: int):
    """
    Void a sale.

    Body: {"reason": "...", "actor_id": "...", "restore_mixtures": bool?}
    restore_mixtures defaults to the VOID_RESTORES_MIXTURES setting.
    """
    try:
        data = request.get_json(silent=True) or {}
        restore_mixtures = data.get("restore_mixtures")
        if restore_mixtures is not None and not isinstance(restore_mixtures, bool):
            return jsonify({"error": "restore_mixtures must be a boolean"}), 400

        result = sales_service.void_sale(
            sale_id,
            reason=data.get("reason"),
            actor_id=data.get("actor_id"),
            restore_mixtures=restore_mixtures,
        )
        return jsonify({
            "sale": result.sale.to_dict(),
            "warnings": result.warnings,
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except SaleNotFoundError as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    except AlreadyVoidedError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except StorageError as e:
        return jsonify({"error": str(e)}), 500
    except Exception:
        current_app.logger.exception("Failed to void sale")
        return jsonify({"error": "Internal server error"}), 500

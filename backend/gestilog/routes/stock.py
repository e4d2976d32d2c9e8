# Overview: Flask API routes for the stock ledger (entries, exits, adjustments, history).

from flask import Blueprint, request, jsonify, g, current_app

from ..exceptions import GestilogError
from ..services import inventory_service
from ..time_utils import parse_iso_datetime
from ..decorators import require_context


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _movement_response(movement, status: int = 201):
    return jsonify({
        "movement": movement.to_dict(),
        "product": movement.product.to_dict(),
    }), status


@stock_bp.post("/in")
@require_context
def stock_in_route():
    """Body: product_id, quantity, unit_price (optional), reason, reference_document, supplier_reference"""
    data = request.get_json(silent=True) or {}
    try:
        movement = inventory_service.stock_in(
            g.store_id,
            data.get("product_id"),
            data.get("quantity"),
            data.get("unit_price"),
            data.get("reason"),
            reference_document=data.get("reference_document"),
            supplier_reference=data.get("supplier_reference"),
            user_id=g.user_id,
        )
        return _movement_response(movement)
    except GestilogError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record stock entry")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.post("/out")
@require_context
def stock_out_route():
    """Body: product_id, quantity, reason (required), reference_document"""
    data = request.get_json(silent=True) or {}
    try:
        movement = inventory_service.stock_out(
            g.store_id,
            data.get("product_id"),
            data.get("quantity"),
            data.get("reason"),
            reference_document=data.get("reference_document"),
            user_id=g.user_id,
        )
        return _movement_response(movement)
    except GestilogError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record stock exit")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.post("/adjustments")
@require_context
def stock_adjust_route():
    """Body: product_id, new_quantity, reason (required)"""
    data = request.get_json(silent=True) or {}
    try:
        movement = inventory_service.stock_adjust(
            g.store_id,
            data.get("product_id"),
            data.get("new_quantity"),
            data.get("reason"),
            user_id=g.user_id,
        )
        return _movement_response(movement)
    except GestilogError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/movements")
@require_context
def list_movements_route():
    """Query params: product_id, type, date_from, date_to (ISO-8601), page, limit"""
    try:
        date_from = parse_iso_datetime(request.args.get("date_from"))
        date_to = parse_iso_datetime(request.args.get("date_to"))
    except ValueError:
        return jsonify({"error": "Dates must be ISO-8601"}), 400

    try:
        result = inventory_service.list_movements(
            g.store_id,
            product_id=request.args.get("product_id", type=int),
            movement_type=request.args.get("type"),
            date_from=date_from,
            date_to=date_to,
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", 50, type=int),
        )
    except GestilogError as e:
        return jsonify(e.to_dict()), e.status_code

    result["items"] = [m.to_dict() for m in result["items"]]
    return jsonify(result), 200

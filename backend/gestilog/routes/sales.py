# Overview: Flask API routes for sale documents; parses input and returns JSON responses.

"""Sales API routes"""

from flask import Blueprint, request, jsonify, g, current_app

from ..exceptions import GestilogError
from ..services import sales_service
from ..decorators import require_context


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("/")
@require_context
def create_sale_route():
    """
    Create a sale document with its lines.

    Body: document_type, lines[{product_id, designation, quantity, unit_price,
    tax_rate, line_discount_pct}], customer_id, payment_method,
    payment_reference, check_due_date, amount_paid, discount_pct, tax_rate, notes
    """
    try:
        data = request.get_json(silent=True) or {}
        sale = sales_service.create_sale(g.store_id, data, user_id=g.user_id)
        return jsonify({"sale": sale.to_dict(include_lines=True)}), 201

    except GestilogError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/")
@require_context
def list_sales_route():
    try:
        result = sales_service.list_sales(
            g.store_id,
            search=request.args.get("search"),
            document_type=request.args.get("document_type"),
            status=request.args.get("status"),
            customer_id=request.args.get("customer_id", type=int),
            payment_method=request.args.get("payment_method"),
            date_from=request.args.get("date_from"),
            date_to=request.args.get("date_to"),
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", 50, type=int),
        )
        result["items"] = [s.to_dict() for s in result["items"]]
        return jsonify(result), 200

    except GestilogError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_context
def get_sale_route(sale_id: int):
    """Get sale with lines."""
    sale = sales_service.get_sale(g.store_id, sale_id)
    if not sale:
        return jsonify({"error": "Sale not found"}), 404
    return jsonify({"sale": sale.to_dict(include_lines=True)}), 200


@sales_bp.post("/<int:sale_id>/cancel")
@require_context
def cancel_sale_route(sale_id: int):
    """Cancel a valid sale, restoring stock and unwinding customer credit."""
    try:
        data = request.get_json(silent=True) or {}
        sale = sales_service.cancel_sale(g.store_id, sale_id, data.get("reason"), user_id=g.user_id)
        return jsonify({"sale": sale.to_dict()}), 200

    except GestilogError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "Internal server error"}), 500

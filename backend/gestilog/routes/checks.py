# Overview: Flask API routes for the check register and check status changes.

from flask import Blueprint, request, jsonify, g, current_app

from ..exceptions import GestilogError
from ..services import check_service
from ..decorators import require_context


checks_bp = Blueprint("checks", __name__, url_prefix="/api/checks")


@checks_bp.get("/")
@require_context
def list_checks_route():
    """
    Check register ordered by due date.

    Query params: check_status, search, date_from, date_to (on due date), page, limit
    """
    try:
        result = check_service.list_checks(
            g.store_id,
            check_status=request.args.get("check_status"),
            search=request.args.get("search"),
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
        current_app.logger.exception("Failed to list checks")
        return jsonify({"error": "Internal server error"}), 500


@checks_bp.get("/due")
@require_context
def checks_due_route():
    try:
        checks = check_service.checks_due_for_deposit(g.store_id, request.args.get("as_of"))
        return jsonify({"items": [s.to_dict() for s in checks]}), 200
    except GestilogError as e:
        return jsonify(e.to_dict()), e.status_code


@checks_bp.patch("/<int:sale_id>/status")
@require_context
def update_check_status_route(sale_id: int):
    """Body: {"check_status": "pending" | "deposited" | "paid" | "unpaid"}"""
    try:
        data = request.get_json(silent=True) or {}
        sale = check_service.update_check_status(
            g.store_id, sale_id, data.get("check_status"), user_id=g.user_id
        )
        return jsonify({
            "sale": sale.to_dict(),
            "settlements": [s.to_dict() for s in sale.settlements],
        }), 200

    except GestilogError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update check status")
        return jsonify({"error": "Internal server error"}), 500

# Overview: Flask API routes for revenue reporting.

from flask import Blueprint, request, jsonify, g, current_app

from ..pricing import round_money
from ..services import reporting_service
from ..time_utils import parse_iso_datetime
from ..decorators import require_context


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/revenue")
@require_context
def revenue_route():
    """
    Recognized revenue and expenses for [date_from, date_to).

    Query params: date_from, date_to (ISO-8601, optional)
    """
    try:
        date_from = parse_iso_datetime(request.args.get("date_from"))
        date_to = parse_iso_datetime(request.args.get("date_to"))
    except ValueError:
        return jsonify({"error": "Dates must be ISO-8601"}), 400

    revenue = reporting_service.recognized_revenue(g.store_id, date_from, date_to)
    expenses = reporting_service.expenses_total(g.store_id, date_from, date_to)

    return jsonify({
        "amount_untaxed": float(round_money(revenue["amount_untaxed"])),
        "amount_tax": float(round_money(revenue["amount_tax"])),
        "amount_total": float(round_money(revenue["amount_total"])),
        "document_count": revenue["document_count"],
        "expenses_total": float(round_money(expenses)),
        "currency": current_app.config.get("CURRENCY_CODE", "MAD"),
    }), 200

# Overview: Flask API routes for customers and their credit repayments.

from flask import Blueprint, request, jsonify, g, current_app

from ..exceptions import GestilogError
from ..models import Customer
from ..services import customer_service, payment_service
from ..validation import ModelValidationPolicy, validate_payload, enforce_rules_customer
from ..decorators import require_context

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "phone", "email", "address", "tax_id", "notes", "authorized_credit_limit"},
    required_on_create={"name"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("/")
@require_context
def list_customers_route():
    result = customer_service.list_customers(
        g.store_id,
        search=request.args.get("search"),
        with_balance=request.args.get("with_balance", "").lower() in ("1", "true", "yes"),
        page=request.args.get("page", 1, type=int),
        limit=request.args.get("limit", 50, type=int),
    )
    result["items"] = [c.to_dict() for c in result["items"]]
    return jsonify(result), 200


@customers_bp.post("/")
@require_context
def create_customer_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
        enforce_rules_customer(patch)
        customer = customer_service.create_customer(g.store_id, patch, user_id=g.user_id)
        return jsonify({"customer": customer.to_dict()}), 201
    except GestilogError as e:
        return jsonify(e.to_dict()), e.status_code


@customers_bp.get("/<int:customer_id>")
@require_context
def get_customer_route(customer_id: int):
    try:
        customer = customer_service.get_customer(g.store_id, customer_id)
        return jsonify({"customer": customer.to_dict()}), 200
    except GestilogError as e:
        return jsonify(e.to_dict()), e.status_code


@customers_bp.patch("/<int:customer_id>")
@require_context
def update_customer_route(customer_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
        enforce_rules_customer(patch)
        customer = customer_service.update_customer(g.store_id, customer_id, patch, user_id=g.user_id)
        return jsonify({"customer": customer.to_dict()}), 200
    except GestilogError as e:
        return jsonify(e.to_dict()), e.status_code


@customers_bp.post("/<int:customer_id>/credit-payments")
@require_context
def pay_credit_route(customer_id: int):
    """
    Record a repayment of outstanding credit.

    Body: amount, method (default cash), reference, check_due_date, cash_received
    """
    try:
        data = request.get_json(silent=True) or {}
        result = payment_service.pay_customer_credit(
            g.store_id,
            customer_id,
            data.get("amount"),
            method=data.get("method"),
            reference=data.get("reference"),
            due_date=data.get("check_due_date"),
            cash_received=data.get("cash_received"),
            user_id=g.user_id,
        )
        return jsonify(result.to_dict()), 201

    except GestilogError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record credit payment")
        return jsonify({"error": "Internal server error"}), 500
